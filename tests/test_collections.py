from folio.collections import (
    EntryCollection,
    build_taxonomy,
    page_url,
    pagination_data,
)
from folio.models import Entry
from folio.navigation import build_navigation


def make_entry(slug, created_at="2024-01-01", tags=None, **kwargs):
    return Entry(
        slug=slug,
        url=f"/{slug}/",
        title=kwargs.pop("title", slug.title()),
        created_at=created_at,
        updated_at=created_at,
        type="markdown",
        html=f"<p>{slug}</p>",
        filename=kwargs.pop("filename", f"{slug}.md"),
        tags=tags or [],
        **kwargs,
    )


def test_entry_collection_filters_and_sorts():
    entries = EntryCollection(
        [
            make_entry("old", "2023-01-01", tags=["python"]),
            make_entry("new", "2024-06-01", tags=["python", "web"], section="posts"),
            make_entry("mid", "2024-01-01", categories=["guides"], series="Intro"),
        ]
    )
    assert [e.slug for e in entries.sorted()] == ["new", "mid", "old"]
    assert [e.slug for e in entries.with_tag("python")] == ["old", "new"]
    assert [e.slug for e in entries.with_category("guides")] == ["mid"]
    assert [e.slug for e in entries.in_series("Intro")] == ["mid"]
    assert [e.slug for e in entries.in_section("posts")] == ["new"]
    assert [e.slug for e in entries.latest(2)] == ["new", "mid"]


def test_entry_collection_pages():
    entries = EntryCollection(make_entry(f"p{i:02d}", f"2024-01-{i:02d}") for i in range(1, 24))
    assert entries.total_pages(10) == 3
    assert [e.slug for e in entries.page(1, 10)][:2] == ["p23", "p22"]
    assert len(entries.page(3, 10)) == 3
    assert len(entries.page(4, 10)) == 0


def test_taxonomy_index_groups_and_slugifies_urls():
    entries = [
        make_entry("a", tags=["Python", "Web Dev"]),
        make_entry("b", tags=["Python"], categories=["Guides"], series="Getting Started"),
    ]
    tags = build_taxonomy(entries, "tags")
    assert list(tags) == ["Python", "Web Dev"]
    assert [e.slug for e in tags["Python"]] == ["a", "b"]
    assert tags.url_for("Web Dev") == "/tag/web-dev/"

    categories = build_taxonomy(entries, "categories")
    assert categories.url_for("Guides") == "/category/guides/"

    series = build_taxonomy(entries, "series")
    assert list(series) == ["Getting Started"]
    assert series.url_for("Getting Started") == "/series/getting-started/"


def test_taxonomy_slugs_are_unique_and_never_empty():
    entries = [make_entry("a", tags=["C", "C++", "!!!", "???"])]
    tags = build_taxonomy(entries, "tags")

    assert tags.url_for("C") == "/tag/c/"
    assert tags.url_for("C++") == "/tag/c-1/"
    bang, question = tags.slug_for("!!!"), tags.slug_for("???")
    assert bang.startswith("term-") and question.startswith("term-")
    assert bang != question
    assert len({tags.url_for(term) for term in tags}) == 4

    assert tags.term_for("c-1") == "C++"
    assert tags.term_for(bang) == "!!!"
    assert tags.term_for("missing") is None


def test_pagination_data():
    assert pagination_data(5, 10)["pages"] == [1, "...", 4, 5, 6, "...", 10]
    assert pagination_data(1, 3)["pages"] == [1, 2, 3]
    first = pagination_data(1, 10)
    assert first["pages"] == [1, 2, "...", 10]
    assert not first["has_prev"]
    assert first["has_next"]
    last = pagination_data(10, 10)
    assert last["pages"] == [1, "...", 9, 10]
    assert last["has_prev"] and not last["has_next"]


def test_page_url():
    assert page_url(1) == "/"
    assert page_url(2) == "/page/2/"


def test_navigation_skips_root_index_and_uses_titles():
    entries = {
        "index": make_entry("index", filename="index.md"),
        "docs/intro": make_entry("docs/intro", title="Introduction", filename="docs/intro.md"),
        "docs/api/ref": make_entry("docs/api/ref", title="Reference", filename="docs/api/ref.md"),
        "about": make_entry("about", title="About", filename="about.md"),
    }
    nav = build_navigation(entries)
    assert [(n.kind, n.title) for n in nav] == [("folder", "docs"), ("file", "About")]
    docs = nav[0]
    assert [(n.kind, n.title) for n in docs.children] == [
        ("file", "Introduction"),
        ("folder", "api"),
    ]
    assert docs.children[1].children[0].url == "/docs/api/ref/"
    assert build_navigation(entries, mode="flat") == []
