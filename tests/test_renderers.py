import logging
import os
from pathlib import Path

from folio.models import Heading
from folio.renderers import (
    MarkdownRenderer,
    build_image_reference,
    parse_containers,
    render_picture,
    render_text,
    resolve_content_path,
)


def make_renderer(tmp_path, width_cache=None):
    root = tmp_path / "content"
    (root / "posts").mkdir(parents=True)
    return root, MarkdownRenderer(root, width_cache or {})


def test_resolve_content_path_forms(tmp_path):
    root = tmp_path / "content"
    page_dir = root / "posts"
    assert resolve_content_path(root, page_dir, "pic.png") == page_dir / "pic.png"
    assert resolve_content_path(root, page_dir, "./pic.png") == page_dir / "pic.png"
    assert resolve_content_path(root, page_dir, "../pic.png") == root / "pic.png"
    assert resolve_content_path(root, page_dir, "/images/pic.png") == root / "images" / "pic.png"
    assert resolve_content_path(root, page_dir, "../../secret.png") is None
    assert resolve_content_path(root, page_dir, "..") is None


def test_headings_get_unique_ids(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, record = renderer.render("## Setup\n\ntext\n\n## Setup\n\n### Café *au* lait\n", "a.md")
    assert '<h2 id="setup">Setup</h2>' in html
    assert '<h2 id="setup-1">Setup</h2>' in html
    assert 'id="cafe-au-lait"' in html
    assert record.headings == [
        Heading(2, "Setup", "setup"),
        Heading(2, "Setup", "setup-1"),
        Heading(3, "Café au lait", "cafe-au-lait"),
    ]


def test_headings_without_slug_get_no_anchor(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, record = renderer.render("# !!!\n\n# ???\n", "a.md")
    assert "<h1>!!!</h1>" in html
    assert "<h1>???</h1>" in html
    assert "id=" not in html
    assert [heading.slug for heading in record.headings] == ["", ""]


def test_code_blocks_are_highlighted(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, _ = renderer.render("```python\nprint('hi')\n```\n", "a.md")
    assert 'class="highlight"' in html

    html, _ = renderer.render("```notalanguage\nx < y\n```\n", "a.md")
    assert '<pre><code class="language-notalanguage">x &lt; y' in html


def test_admonition_with_title_and_markdown_body(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, _ = renderer.render("::: warning Careful now\nInside **bold**\n:::\n\nAfter\n", "a.md")
    assert '<div class="admonition admonition-warning">' in html
    assert '<div class="admonition-title">Careful now</div>' in html
    assert "<strong>bold</strong>" in html
    assert html.index("</div></div>") < html.index("After")


def test_admonitions_nest_and_unclosed_ends_at_eof(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    source = "::: note\nouter\n::: tip\ninner\n:::\nstill outer\n:::\n\n::: danger\nopen"
    html, _ = renderer.render(source, "a.md")
    assert html.count('class="admonition ') == 3
    assert '<div class="admonition-title">NOTE</div>' in html
    assert html.index("admonition-tip") < html.index("still outer")
    assert "admonition-danger" in html
    assert html.rstrip().endswith("</div></div>")


def test_admonition_markers_inside_fences_are_text(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, _ = renderer.render("```\n::: note\n:::\n```\n", "a.md")
    assert "admonition" not in html
    assert "::: note" in html


def test_reference_links_resolve_across_admonitions(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    source = "See [docs][d].\n\n::: note\nAlso [docs][d].\n:::\n\n[d]: https://x.org\n"
    html, _ = renderer.render(source, "a.md")
    assert html.count('<a href="https://x.org">docs</a>') == 2
    assert "[docs][d]" not in html


def test_footnotes_are_collected_once_across_admonitions(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    source = "Text[^n].\n\n::: tip\nAgain[^n].\n:::\n\n[^n]: The note.\n"
    html, _ = renderer.render(source, "a.md")
    assert html.count('<section class="footnotes">') == 1
    assert html.count('href="#fn-1"') == 2
    assert html.index("admonition-tip") < html.index('<section class="footnotes">')
    assert "The note." in html


def test_parse_containers_ignores_unknown_kinds_and_stray_closers():
    nodes = parse_containers(":::\n::: custom\nbody\n")
    assert nodes == [":::\n::: custom\nbody\n"]


def test_local_image_becomes_picture(tmp_path):
    root = tmp_path / "content"
    resolved = Path(os.path.abspath(root / "posts" / "pic.png"))
    _root, renderer = make_renderer(tmp_path, {str(resolved): 1000})
    html, record = renderer.render("![A & B](./pic.png)", "posts/hello.md")

    assert len(record.images) == 1
    ref = record.images[0]
    assert ref.resolved_path == resolved
    assert ref.sizes_to_generate == (400, 800, 1000)
    assert ref.url_base == "posts/"
    assert "<picture>" in html
    assert f"/posts/pic-400-{ref.hash}.webp 400w" in html
    assert f'<img src="/posts/pic-800-{ref.hash}.jpg"' in html
    assert 'alt="A &amp; B"' in html
    assert 'loading="lazy"' in html


def test_image_outside_content_root_is_dropped(tmp_path, caplog):
    _root, renderer = make_renderer(tmp_path)
    with caplog.at_level(logging.WARNING):
        html, record = renderer.render("Before ![x](../../etc/passwd.png) after", "posts/a.md")
    assert record.images == []
    assert "<img" not in html
    assert "Image outside content directory" in caplog.text


def test_external_images_are_left_alone(tmp_path):
    _root, renderer = make_renderer(tmp_path)
    html, record = renderer.render("![x](https://example.com/x.png)", "a.md")
    assert record.images == []
    assert 'src="https://example.com/x.png"' in html


def test_render_picture_with_single_size(tmp_path):
    root = tmp_path / "content"
    resolved = Path(os.path.abspath(root / "tiny.png"))
    ref = build_image_reference("tiny.png", resolved, root, {str(resolved): 300})
    html = render_picture(ref, "tiny")
    assert ref.sizes_to_generate == (300,)
    assert f'src="/tiny-300-{ref.hash}.jpg"' in html
    assert "(max-width: 300px) 300px, (max-width: 300px) 300px, 300px" in html


def test_render_text():
    assert render_text("a < b") == "<pre>a &lt; b</pre>"
    assert render_text("<b>", escape=False) == "<pre><b></pre>"
