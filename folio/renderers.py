"""Content renderers for Folio.

Markdown bodies go through mistune with a fixed set of transforms applied by
a custom renderer:

- Headings get a unique anchor id and are recorded for the table of contents.
- Local images are resolved inside the content root, planned into responsive
  variants and emitted as a ``<picture>`` element.
- ``::: kind`` containers become admonition blocks. They are split out by a
  small pushdown pass before mistune sees the text, so containers nest and
  an unclosed container ends at end of input.

Key classes:
- RenderRecord: Side record of one render (headings and image references).
- MarkdownRenderer: Renders one markdown body into HTML plus its record.

Key functions:
- resolve_content_path: Resolve an image reference inside the content root.
- render_text: Render a plain-text body.
"""

from __future__ import annotations

import functools
import html
import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

import mistune
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .html_utils import escape_html
from .images import compute_sizes
from .models import Heading, ImageReference
from .utils import is_external_url, normalize_web_path, path_hash, slugify

logger = logging.getLogger(__name__)

ADMONITION_TYPES = ("note", "tip", "warning", "danger", "info")

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]

_TAG_RE = re.compile(r"<[^>]+>")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_CONTAINER_OPEN_RE = re.compile(r"^ {0,3}(:{3,})\s*([A-Za-z]+)(?:\s+(.*?))?\s*$")
_CONTAINER_CLOSE_RE = re.compile(r"^ {0,3}(:{3,})\s*$")


def resolve_content_path(content_root: Path, page_dir: Path, raw: str) -> Path | None:
    """Resolve a local reference against the content root.

    Root-absolute references (``/x``) resolve from the content root;
    explicit-relative (``./x``, ``../x``) and implicit-relative (``x``)
    references resolve from the page's directory.

    Args:
        content_root: Absolute content root.
        page_dir: Absolute directory of the referencing page.
        raw: The reference as written.

    Returns:
        The normalized absolute path, or None if it does not land strictly
        inside the content root.
    """
    root = os.path.abspath(content_root)
    if raw.startswith("/"):
        candidate = os.path.join(root, raw.lstrip("/"))
    else:
        candidate = os.path.join(os.path.abspath(page_dir), raw)
    candidate = os.path.abspath(candidate)
    try:
        inside = os.path.commonpath([root, candidate]) == root
    except ValueError:
        # Different drives on Windows
        return None
    if not inside or candidate == root:
        return None
    return Path(candidate)


def build_image_reference(
    src: str,
    resolved_path: Path,
    content_root: Path,
    width_cache: dict[str, int] | None = None,
) -> ImageReference:
    """Plan the variants of one resolved image.

    The width ladder is bounded by the intrinsic width when the width cache
    knows it, otherwise the standard ladder is used.
    """
    output_path = normalize_web_path(
        os.path.relpath(resolved_path, os.path.abspath(content_root))
    )
    output_dir = os.path.dirname(output_path)
    width = (width_cache or {}).get(str(resolved_path))
    return ImageReference(
        src=src,
        resolved_path=resolved_path,
        output_path=output_path,
        basename=resolved_path.stem,
        hash=path_hash(resolved_path),
        url_base=f"{output_dir}/" if output_dir else "",
        sizes_to_generate=tuple(compute_sizes(width)),
    )


def render_picture(ref: ImageReference, alt: str) -> str:
    """Render the responsive ``<picture>`` element for an image reference."""
    sizes = ref.sizes_to_generate
    median = ref.median_width
    sizes_attr = (
        f"(max-width: {sizes[0]}px) {sizes[0]}px, "
        f"(max-width: {median}px) {median}px, {sizes[-1]}px"
    )
    webp_srcset = ", ".join(f"{ref.variant_url(w, 'webp')} {w}w" for w in sizes)
    jpeg_srcset = ", ".join(f"{ref.variant_url(w, 'jpg')} {w}w" for w in sizes)
    return (
        "<picture>\n"
        f'  <source srcset="{webp_srcset}" type="image/webp" sizes="{sizes_attr}">\n'
        f'  <source srcset="{jpeg_srcset}" type="image/jpeg" sizes="{sizes_attr}">\n'
        f'  <img src="{ref.variant_url(median, "jpg")}" alt="{alt}" '
        'loading="lazy" decoding="async">\n'
        "</picture>"
    )


@dataclass
class RenderRecord:
    """Side record filled while rendering one document.

    Attributes:
        headings: Every heading in document order.
        images: Every local image reference that resolved inside the root.
    """

    headings: list[Heading] = field(default_factory=list)
    images: list[ImageReference] = field(default_factory=list)
    _slug_counts: dict[str, int] = field(default_factory=dict, repr=False)

    def unique_slug(self, base: str) -> str:
        """Return ``base``, suffixed with ``-1``, ``-2``, ... on repeats.

        An empty base stays empty; such headings get no anchor.
        """
        if not base:
            return base
        if base in self._slug_counts:
            self._slug_counts[base] += 1
            return f"{base}-{self._slug_counts[base]}"
        self._slug_counts[base] = 0
        return base


class _FolioRenderer(mistune.HTMLRenderer):
    """Markdown renderer applying the heading, image and code transforms.

    Attributes:
        record: Side record shared by every chunk of one document.
    """

    def __init__(
        self,
        record: RenderRecord,
        content_root: Path,
        page_path: str,
        width_cache: dict[str, int] | None = None,
    ):
        super().__init__(escape=False)
        self.record = record
        self.content_root = Path(os.path.abspath(content_root))
        self.page_path = page_path
        self.page_dir = (self.content_root / page_path).parent
        self.width_cache = width_cache if width_cache is not None else {}

    def heading(self, text: str, level: int, **attrs) -> str:
        content = html.unescape(_TAG_RE.sub("", text)).strip()
        explicit = attrs.get("id")
        slug = explicit or self.record.unique_slug(slugify(content))
        self.record.headings.append(Heading(level=level, content=content, slug=slug))
        if not slug:
            return f"<h{level}>{text}</h{level}>\n"
        return f'<h{level} id="{slug}">{text}</h{level}>\n'

    def image(self, text: str, url: str, title: str | None = None) -> str:
        if is_external_url(url):
            return super().image(text, url, title)

        raw = unquote(url)
        resolved = resolve_content_path(self.content_root, self.page_dir, raw)
        if resolved is None:
            logger.warning(
                "Image outside content directory (ignored): %s in %s", raw, self.page_path
            )
            return ""

        ref = build_image_reference(raw, resolved, self.content_root, self.width_cache)
        self.record.images.append(ref)
        alt = escape_html(html.unescape(_TAG_RE.sub("", text)))
        return render_picture(ref, alt)

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a code block with Pygments syntax highlighting.

        Unknown languages fall back to an escaped ``<pre><code>`` block.
        """
        lang = info.split()[0] if info else None
        if lang:
            try:
                lexer = get_lexer_by_name(lang, stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                formatter = HtmlFormatter(nowrap=False, cssclass="highlight")
                return highlight(code, lexer, formatter)
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        lang_class = f' class="language-{lang}"' if lang else ""
        return f"<pre><code{lang_class}>{escaped}</code></pre>\n"


@dataclass
class _Frame:
    """An open admonition container.

    ``marker_len`` is the close condition: a bare ``:::`` line at least as
    long as the opening marker closes the frame.
    """

    kind: str
    title: str
    marker_len: int
    children: list = field(default_factory=list)


def parse_containers(text: str) -> list:
    """Split markdown into plain chunks and nested admonition frames.

    Container markers inside fenced code blocks are ignored. A closing
    marker with no open frame is kept as text, and unknown container kinds
    stay plain text. Frames still open at end of input are closed there.

    Returns:
        A list whose items are either markdown strings or ``_Frame``
        records holding the same kind of list.
    """
    root = _Frame(kind="", title="", marker_len=0)
    stack = [root]
    buffer: list[str] = []
    fence: str | None = None

    def flush() -> None:
        if buffer:
            stack[-1].children.append("".join(buffer))
            buffer.clear()

    for line in text.splitlines(keepends=True):
        if fence is not None:
            buffer.append(line)
            if re.match(rf"^ {{0,3}}{re.escape(fence[0])}{{{len(fence)},}}\s*$", line):
                fence = None
            continue

        fence_match = _FENCE_RE.match(line)
        if fence_match:
            fence = fence_match.group(1)
            buffer.append(line)
            continue

        open_match = _CONTAINER_OPEN_RE.match(line)
        if open_match and open_match.group(2).lower() in ADMONITION_TYPES:
            flush()
            frame = _Frame(
                kind=open_match.group(2).lower(),
                title=open_match.group(3) or "",
                marker_len=len(open_match.group(1)),
            )
            stack[-1].children.append(frame)
            stack.append(frame)
            continue

        close_match = _CONTAINER_CLOSE_RE.match(line)
        if (
            close_match
            and len(stack) > 1
            and len(close_match.group(1)) >= stack[-1].marker_len
        ):
            flush()
            stack.pop()
            continue

        buffer.append(line)

    flush()
    return root.children


def _shared_env(markdown: mistune.Markdown, body: str) -> dict:
    """Block-parse the whole document to collect its link and footnote definitions."""
    state = markdown.block.state_cls()
    state.process(_normalize_newlines(body))
    markdown.block.parse(state)
    return state.env


def _normalize_newlines(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text if text.endswith("\n") else text + "\n"


def _render_chunk(markdown: mistune.Markdown, env: dict, text: str) -> str:
    """Render one chunk against the document's shared parse environment."""
    state = markdown.block.state_cls()
    state.env = env
    state.process(_normalize_newlines(text))
    for hook in markdown.before_parse_hooks:
        hook(markdown, state)
    markdown.block.parse(state)
    for hook in markdown.before_render_hooks:
        hook(markdown, state)
    return markdown.render_state(state)


def _finish_document(markdown: mistune.Markdown, output: str, env: dict) -> str:
    """Run the after-render hooks (footnotes) once for the whole document."""
    state = markdown.block.state_cls()
    state.env = env
    for hook in markdown.after_render_hooks:
        output = hook(markdown, output, state)
    return output


def _render_nodes(nodes: list, render: Callable[[str], str]) -> str:
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, str):
            if node.strip():
                parts.append(render(node))
            continue
        title = escape_html(node.title) if node.title else node.kind.upper()
        parts.append(
            f'<div class="admonition admonition-{node.kind}">\n'
            f'<div class="admonition-title">{title}</div>\n'
            '<div class="admonition-content">\n'
        )
        parts.append(_render_nodes(node.children, render))
        parts.append("</div></div>\n")
    return "".join(parts)


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    Attributes:
        content_root: Root every local image must resolve inside.
        width_cache: Intrinsic widths keyed by resolved image path, filled by
            the loader's pre-scan.
    """

    def __init__(self, content_root: Path, width_cache: dict[str, int] | None = None):
        self.content_root = content_root
        self.width_cache = width_cache if width_cache is not None else {}

    def render(self, body: str, page_path: str) -> tuple[str, RenderRecord]:
        """Render Markdown content to HTML.

        Args:
            body: Markdown source without front matter.
            page_path: Web path of the page relative to the content root.

        Returns:
            Tuple of (rendered HTML, side record).
        """
        record = RenderRecord()
        renderer = _FolioRenderer(record, self.content_root, page_path, self.width_cache)
        markdown = mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
        if ":::" not in body:
            return markdown(body), record
        env = _shared_env(markdown, body)
        html = _render_nodes(parse_containers(body), functools.partial(_render_chunk, markdown, env))
        return _finish_document(markdown, html, env), record


def render_text(body: str, escape: bool = True) -> str:
    """Render a plain-text body as a ``<pre>`` block."""
    return f"<pre>{escape_html(body) if escape else body}</pre>"
