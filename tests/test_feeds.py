import json

from folio.feeds import (
    FeedRegistry,
    LlmsGenerator,
    RobotsGenerator,
    RSSGenerator,
    SearchIndexGenerator,
    SitemapGenerator,
    create_default_feed_registry,
    search_text,
)
from folio.models import Entry

SITE = {"title": "Tom & Jerry", "description": "A site", "url": "https://example.com/"}


def make_entry(slug, created_at="2024-01-01", tags=None, **kwargs):
    return Entry(
        slug=slug,
        url=f"/{slug}/",
        title=kwargs.pop("title", slug.title()),
        created_at=created_at,
        updated_at=kwargs.pop("updated_at", created_at),
        type="markdown",
        html="",
        filename=f"{slug}.md",
        tags=tags or [],
        **kwargs,
    )


def test_rss_feed_escapes_and_limits_items():
    entries = [make_entry(f"post-{i:02d}", f"2024-01-{i:02d}") for i in range(1, 26)]
    entries.append(make_entry("fish", "2023-05-01", title="Fish & <Chips>", tags=["food"]))
    rss = RSSGenerator().generate(entries, SITE)

    assert rss.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<title>Tom &amp; Jerry</title>" in rss
    assert rss.count("<item>") == 20
    assert "<lastBuildDate>Thu, 25 Jan 2024 00:00:00 +0000</lastBuildDate>" in rss
    assert "<link>https://example.com/post-25/</link>" in rss
    assert "post-05" not in rss
    assert "Fish" not in rss


def test_rss_feed_item_details():
    entry = make_entry(
        "fish", "2024-03-05", title="Fish & <Chips>", tags=["food"], description="Tasty"
    )
    rss = RSSGenerator(title_suffix="food").generate([entry], SITE)
    assert "<title>Tom &amp; Jerry - food</title>" in rss
    assert "<item><title>Fish &amp; &lt;Chips&gt;</title>" in rss
    assert "<pubDate>Tue, 05 Mar 2024 00:00:00 +0000</pubDate>" in rss
    assert "<category>food</category>" in rss
    assert "<description>Tasty</description>" in rss


def test_rss_feed_is_stable_for_same_entries():
    entries = [make_entry("a", "2024-01-01"), make_entry("b", "2024-01-01")]
    assert RSSGenerator().generate(entries, SITE) == RSSGenerator().generate(
        list(reversed(entries)), SITE
    )


def test_sitemap_lists_home_entries_and_tags():
    entries = [make_entry("hello", "2024-01-01", tags=["Web Dev"], updated_at="2024-02-01")]
    sitemap = SitemapGenerator().generate(entries, SITE)
    assert "<loc>https://example.com/</loc>" in sitemap
    assert "<loc>https://example.com/hello/</loc><lastmod>2024-02-01</lastmod>" in sitemap
    assert "<loc>https://example.com/tag/web-dev/</loc>" in sitemap


def test_search_index_is_compact_and_truncated():
    body = "# Title\n\n" + "word " * 2000
    entries = [make_entry("old", "2023-01-01"), make_entry("new", "2024-01-01", raw_content=body)]
    text = SearchIndexGenerator().generate(entries, SITE)
    records = json.loads(text)

    assert ": " not in text
    assert [r["slug"] for r in records] == ["new", "old"]
    assert set(records[0]) == {
        "id",
        "title",
        "slug",
        "url",
        "date",
        "createdAt",
        "updatedAt",
        "tags",
        "description",
        "content",
    }
    assert len(records[0]["content"]) == 5000
    assert records[0]["content"].startswith("Title word")


def test_search_text_strips_markup():
    assert search_text("**Bold** `code` [link](x)\n\n# Head") == "Bold code link(x) Head"


def test_robots_and_llms():
    entries = [make_entry("hello", "2024-01-01", title="Hello")]
    robots = RobotsGenerator().generate(entries, SITE)
    assert robots == "User-agent: *\nAllow: /\n\nSitemap: https://example.com/sitemap.xml\n"

    llms = LlmsGenerator().generate(entries, SITE)
    assert llms.startswith("# Tom & Jerry\n\n> A site\n")
    assert "- [Hello](https://example.com/hello/)" in llms
    assert "https://example.com/sitemap.xml" in llms


def test_registry_generates_all_except_skipped(tmp_path):
    registry = create_default_feed_registry()
    generated = registry.generate_all(tmp_path, [make_entry("a")], SITE, skip=["robots.txt"])
    assert generated == ["rss.xml", "sitemap.xml", "search.json", "llms.txt"]
    assert (tmp_path / "search.json").exists()
    assert not (tmp_path / "robots.txt").exists()
    assert registry.get("sitemap.xml").filename == "sitemap.xml"
    assert registry.get("missing.xml") is None


def test_custom_registry():
    registry = FeedRegistry()
    registry.register(RobotsGenerator())
    assert [g.filename for g in registry] == ["robots.txt"]
