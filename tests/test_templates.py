import pytest
from markupsafe import Markup

from folio.errors import BuildError, MissingTemplateError
from folio.models import Entry, TocNode
from folio.templates import (
    BUILTIN_THEMES_DIR,
    TemplateEngine,
    render_toc,
    resolve_theme_dir,
    select_template,
)


def make_entry(slug="posts/hello", section=None, front_matter=None):
    return Entry(
        slug=slug,
        url=f"/{slug}/",
        title="Hello",
        created_at="2024-01-01",
        updated_at="2024-01-01",
        type="markdown",
        html="<p>Hello</p>",
        filename=f"{slug}.md",
        section=section,
        front_matter=front_matter or {},
    )


def create_theme(tmp_path, files):
    theme = tmp_path / "theme"
    for name, text in files.items():
        path = theme / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return theme


def test_select_template_chain():
    templates = {"index", "entry", "docs", "landing", "page"}
    assert select_template(make_entry(front_matter={"template": "landing"}), templates) == "landing"
    assert select_template(make_entry(front_matter={"template": "missing"}), templates) == "entry"
    assert select_template(make_entry("docs/intro", section="docs"), templates) == "docs"
    assert select_template(make_entry("posts/x", section="posts"), templates) == "entry"
    assert select_template(make_entry("index"), templates) == "index"
    assert select_template(make_entry(), {"page", "index"}) == "page"
    assert select_template(make_entry(), {"index"}) == "index"
    assert select_template(make_entry(), set()) is None


def test_render_toc_nests_lists():
    toc = [
        TocNode(2, "A & B", "a-b", [TocNode(3, "Child", "child")]),
        TocNode(2, "C", "c"),
    ]
    assert str(render_toc(toc)) == (
        '<ul><li><a href="#a-b">A &amp; B</a>'
        '<ul><li><a href="#child">Child</a></li></ul></li>'
        '<li><a href="#c">C</a></li></ul>'
    )
    assert str(render_toc([])) == ""


def test_resolve_theme_dir(tmp_path, caplog):
    (tmp_path / "templates" / "custom").mkdir(parents=True)
    assert resolve_theme_dir(tmp_path, "custom") == tmp_path / "templates" / "custom"
    assert resolve_theme_dir(tmp_path, None) == BUILTIN_THEMES_DIR / "default"
    assert resolve_theme_dir(tmp_path, "nope") == BUILTIN_THEMES_DIR / "default"
    assert "Theme 'nope' not found" in caplog.text


def test_engine_requires_index_and_entry(tmp_path):
    theme = create_theme(tmp_path, {"index.html": "index"})
    with pytest.raises(MissingTemplateError) as excinfo:
        TemplateEngine(theme, {})
    assert excinfo.value.name == "entry"


def test_engine_renders_with_globals_and_partials(tmp_path):
    theme = create_theme(
        tmp_path,
        {
            "index.html": "index",
            "entry.html": (
                '{% include "header.html" %}|{{ url_for("/about/") }}|{{ entry.title }}|'
                "{{ content }}|{{ render_toc(toc) }}"
            ),
            "_draft.html": "not a page template",
            "partials/header.html": "<h1>{{ site.title }}</h1>",
        },
    )
    engine = TemplateEngine(theme, {"title": "Site", "url": "https://example.com/"})
    assert engine.templates == frozenset({"index", "entry"})

    html = engine.render(
        "entry",
        {
            "entry": {"title": "<Hi>"},
            "content": Markup("<p>x</p>"),
            "toc": [TocNode(2, "A", "a")],
        },
    )
    assert html == (
        '<h1>Site</h1>|https://example.com/about/|&lt;Hi&gt;|<p>x</p>|'
        '<ul><li><a href="#a">A</a></li></ul>'
    )
    assert ".highlight" in engine.env.globals["pygments_css"]()


def test_engine_wraps_template_errors(tmp_path):
    theme = create_theme(
        tmp_path,
        {
            "index.html": "{{ broken(",
            "entry.html": "{{ entry.missing.attr }}",
        },
    )
    engine = TemplateEngine(theme, {})

    with pytest.raises(BuildError) as excinfo:
        engine.render("index", {}, "__index_1")
    assert "Template syntax error" in excinfo.value.message
    assert str(excinfo.value.source_path) == "__index_1"

    with pytest.raises(BuildError) as excinfo:
        engine.render("entry", {"entry": {}}, "posts/hello.md")
    assert excinfo.value.message.startswith("Undefined variable")


def test_render_optional_theme_documents(tmp_path):
    theme = create_theme(
        tmp_path,
        {
            "index.html": "index",
            "entry.html": "entry",
            "robots.txt": "User-agent: *\nSitemap: {{ site.url }}sitemap.xml\n",
        },
    )
    engine = TemplateEngine(theme, {"url": "https://example.com/"})
    assert engine.render_optional("robots.txt", {}) == (
        "User-agent: *\nSitemap: https://example.com/sitemap.xml"
    )
    assert engine.render_optional("llms.txt", {}) is None


def test_first_available_and_select(tmp_path):
    theme = create_theme(tmp_path, {"index.html": "i", "entry.html": "e", "tag.html": "t"})
    engine = TemplateEngine(theme, {})
    assert engine.first_available(["category", "tag", "index"]) == "tag"
    assert engine.first_available(["series"]) == "index"
    assert engine.has("tag")
    assert engine.select(make_entry(front_matter={"template": "tag"})) == "tag"


def test_builtin_default_theme_is_complete():
    engine = TemplateEngine(BUILTIN_THEMES_DIR / "default", {"title": "Site"})
    assert {"index", "entry", "tag", "404"} <= engine.templates
