"""Content processing for Folio.

This module turns content files (Markdown, plain text and HTML) into
``Entry`` objects and loads a whole content tree into a ``LoadResult``.

Key classes:
- EntryBuilder: Builds one Entry from one file.
- ContentLoader: Walks the content root and collects every Entry.
- LoadResult: Everything one load produced, replaced wholesale on reload.

Key functions:
- build_toc: Nest a flat heading list into a table-of-contents tree.
- generate_url: Derive an entry URL from its content-relative path.
- detect_html_intent: Decide whether an HTML file is raw or templated.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import unquote

from .errors import BrokenImageError, ContentRootError, DuplicateSlugError
from .extractors import (
    extract_frontmatter,
    extract_tags,
    extract_taxonomies,
    resolve_metadata,
)
from .html_utils import extract_headings_from_html, is_complete_html_document
from .images import read_image_width
from .models import (
    RESERVED_FIELDS,
    BrokenImage,
    Entry,
    Heading,
    ImageReference,
    NavNode,
    TocNode,
)
from .navigation import build_navigation
from .renderers import MarkdownRenderer, render_text, resolve_content_path
from .utils import (
    is_content_file,
    is_drafts_dir,
    is_external_url,
    is_in_drafts_folder,
    normalize_web_path,
    should_ignore,
    strip_content_extension,
)

logger = logging.getLogger(__name__)

TOC_MIN_LEVEL = 2
TOC_MAX_LEVEL = 4

_MARKDOWN_IMAGE_RE = re.compile(r"!\[.*?\]\((.*?)\)")


def build_toc(
    headings: list[Heading],
    min_level: int = TOC_MIN_LEVEL,
    max_level: int = TOC_MAX_LEVEL,
) -> list[TocNode]:
    """Nest headings into a table-of-contents tree.

    Headings outside ``[min_level, max_level]`` or without a slug are left
    out. Each heading becomes a child of the closest preceding heading with
    a lower level.

    Examples:
        >>> toc = build_toc([Heading(2, "A", "a"), Heading(3, "A1", "a1"),
        ...                  Heading(2, "B", "b")])
        >>> [(n.content, [c.content for c in n.children]) for n in toc]
        [('A', ['A1']), ('B', [])]
    """
    toc: list[TocNode] = []
    root = TocNode(level=0, content="", slug="", children=toc)
    stack = [root]
    for heading in headings:
        if heading.level < min_level or heading.level > max_level:
            continue
        if not heading.slug:
            continue
        while len(stack) > 1 and stack[-1].level >= heading.level:
            stack.pop()
        node = TocNode(level=heading.level, content=heading.content, slug=heading.slug)
        stack[-1].children.append(node)
        stack.append(node)
    return toc


def generate_url(web_path: str) -> str:
    """Derive the URL of an entry from its content-relative web path.

    Examples:
        >>> generate_url("posts/hello.md")
        '/posts/hello/'

        >>> generate_url("docs/index.md")
        '/docs/'

        >>> generate_url("index.md")
        '/index/'
    """
    url = strip_content_extension(web_path)
    url = re.sub(r"/index$", "", url)
    return "/" + url + ("/" if url else "")


def normalize_permalink(permalink: Any) -> str:
    """Give an explicit permalink a leading and a trailing slash."""
    url = str(permalink)
    if not url.startswith("/"):
        url = "/" + url
    if not url.endswith("/"):
        url = url + "/"
    return url


def slug_from_url(url: str) -> str:
    """Return the URL without its surrounding slashes, or ``index`` at the root."""
    return url[1:].rstrip("/") or "index"


def detect_html_intent(html: str, frontmatter: dict[str, Any]) -> str:
    """Classify an HTML file as ``"raw"`` or ``"templated"``.

    ``template: none`` (or ``false``) forces raw, any other template name
    forces templated, and otherwise a complete document is raw.
    """
    template = frontmatter.get("template")
    if template is False or template == "none":
        return "raw"
    if template:
        return "templated"
    if is_complete_html_document(html):
        return "raw"
    return "templated"


def custom_fields(frontmatter: dict[str, Any]) -> dict[str, Any]:
    """Return the front-matter fields whose names are not reserved."""
    return {
        key: value
        for key, value in frontmatter.items()
        if isinstance(key, str) and key not in RESERVED_FIELDS
    }


class EntryBuilder:
    """Builds Entry objects from source files.

    Attributes:
        content_root: Directory containing the content files.
        mode: "structured" sets each entry's section from its top folder;
            "flat" leaves sections empty.
        reading_speed: Words per minute for reading time.
        escape_text_files: Whether plain-text bodies are HTML-escaped.
        width_cache: Intrinsic image widths shared with the renderer.
    """

    def __init__(
        self,
        content_root: Path,
        mode: str = "structured",
        reading_speed: int = 200,
        escape_text_files: bool = True,
        width_cache: dict[str, int] | None = None,
    ):
        self.content_root = Path(os.path.abspath(content_root))
        self.mode = mode
        self.reading_speed = reading_speed
        self.escape_text_files = escape_text_files
        self.width_cache = width_cache if width_cache is not None else {}
        self.renderer = MarkdownRenderer(self.content_root, self.width_cache)

    def build(self, full_path: Path, relative_path: str, raw: str | None = None) -> Entry | None:
        """Build an Entry from a source file.

        Args:
            full_path: Absolute path of the file.
            relative_path: Path relative to the content root.
            raw: File contents if already read.

        Returns:
            The Entry, or None for drafts.
        """
        web_path = normalize_web_path(relative_path)
        if raw is None:
            raw = full_path.read_text(encoding="utf-8")
        frontmatter, body = extract_frontmatter(raw)
        if frontmatter.get("draft") is True:
            return None

        if frontmatter.get("permalink"):
            url = normalize_permalink(frontmatter["permalink"])
            logger.debug("Using permalink %s for %s", url, web_path)
        else:
            url = generate_url(web_path)

        ext = full_path.suffix.lower()
        is_markdown = ext == ".md"
        stats = full_path.stat()
        metadata = resolve_metadata(
            body,
            full_path.name,
            frontmatter,
            is_markdown,
            str(full_path),
            stats,
            self.reading_speed,
        )
        categories, series = extract_taxonomies(frontmatter)
        image = frontmatter.get("image")

        entry = Entry(
            slug=slug_from_url(url),
            url=url,
            title=metadata.title,
            created_at=metadata.created_at,
            updated_at=metadata.updated_at,
            type="markdown",
            html="",
            filename=web_path,
            tags=extract_tags(frontmatter),
            categories=categories,
            series=series,
            raw_content=body,
            description=str(frontmatter.get("description") or ""),
            og_image=str(image) if image else None,
            word_count=metadata.word_count,
            reading_time=metadata.reading_time,
            section=self._section(web_path),
            front_matter=frontmatter,
            extras=custom_fields(frontmatter),
        )

        if ext == ".html":
            self._fill_html(entry, body, frontmatter)
        elif is_markdown:
            self._fill_markdown(entry, body, web_path)
        else:
            entry.type = "text"
            entry.html = render_text(body, escape=self.escape_text_files)
        return entry

    def _section(self, web_path: str) -> str | None:
        if self.mode != "structured":
            return None
        parts = web_path.split("/")
        return parts[0] if len(parts) > 1 else None

    def _fill_html(self, entry: Entry, body: str, frontmatter: dict[str, Any]) -> None:
        entry.type = "html"
        entry.html = body
        if detect_html_intent(body, frontmatter) == "raw":
            entry.rendered_html = body
            return
        entry.headings = extract_headings_from_html(body)
        entry.toc = build_toc(entry.headings)

    def _fill_markdown(self, entry: Entry, body: str, web_path: str) -> None:
        html, record = self.renderer.render(body, web_path)
        entry.html = html
        entry.headings = record.headings
        entry.toc = build_toc(record.headings)
        entry.images = record.images
        if entry.og_image is None and record.images:
            first = record.images[0]
            entry.og_image = first.variant_url(first.median_width, "jpg")


@dataclass
class LoadResult:
    """Everything one content load produced.

    A LoadResult is never mutated after ``ContentLoader.load`` returns it;
    live reloads build a new one and swap it in.

    Attributes:
        entries: Entries keyed by slug, in discovery order.
        slug_paths: Source web path that claimed each slug.
        navigation: Navigation tree (empty in flat mode).
        image_references: Image references keyed by source web path.
        broken_images: References whose image file does not exist.
        width_cache: Intrinsic widths keyed by resolved image path.
        failed: Number of files that could not be loaded.
    """

    content_root: Path
    mode: str = "structured"
    entries: dict[str, Entry] = field(default_factory=dict)
    slug_paths: dict[str, str] = field(default_factory=dict)
    navigation: list[NavNode] = field(default_factory=list)
    image_references: dict[str, list[ImageReference]] = field(default_factory=dict)
    broken_images: list[BrokenImage] = field(default_factory=list)
    width_cache: dict[str, int] = field(default_factory=dict)
    failed: int = 0

    def all_images(self) -> list[ImageReference]:
        return [ref for refs in self.image_references.values() for ref in refs]

    def sorted_entries(self) -> list[Entry]:
        """Entries newest first, ties broken by slug."""
        by_slug = sorted(self.entries.values(), key=lambda e: e.slug)
        return sorted(by_slug, key=lambda e: str(e.created_at), reverse=True)


class ContentLoader:
    """Loads every entry under a content root.

    Attributes:
        content_root: Directory to walk.
        config: Site configuration mapping.
        live: Live mode skips duplicate slugs with a warning instead of
            failing, and treats a missing content root as empty.
    """

    def __init__(self, content_root: Path, config: dict[str, Any] | None = None, live: bool = False):
        self.content_root = Path(os.path.abspath(content_root))
        self.config = config or {}
        self.live = live

    def load(self) -> LoadResult:
        """Walk the content root and build every entry.

        Returns:
            A new LoadResult.

        Raises:
            ContentRootError: The content root is missing or unreadable (batch).
            DuplicateSlugError: Two files map to the same slug (batch).
            BrokenImageError: An image is missing and ``strict_images`` is set.
        """
        mode = self.config.get("structure", "structured")
        result = LoadResult(content_root=self.content_root, mode=mode)
        builder = EntryBuilder(
            self.content_root,
            mode=mode,
            reading_speed=self.config.get("reading_speed", 200),
            escape_text_files=self.config.get("escape_text_files", True),
            width_cache=result.width_cache,
        )

        if not self.content_root.is_dir():
            if self.live:
                logger.warning("Content directory not found: %s", self.content_root)
                return result
            raise ContentRootError(f"Content directory not found: {self.content_root}")

        try:
            files = list(self._iter_files(self.content_root, ""))
        except OSError as exc:
            if self.live:
                logger.error("Error reading content directory: %s", exc)
                return LoadResult(content_root=self.content_root, mode=mode)
            raise ContentRootError(f"Cannot read content directory {self.content_root}: {exc}") from exc

        for full_path, relative_path in files:
            self._load_file(builder, result, full_path, relative_path)

        result.navigation = build_navigation(result.entries, mode)
        logger.info("Loaded %d entries from %s", len(result.entries), self.content_root)
        return result

    def _iter_files(self, directory: Path, relative: str) -> Iterator[tuple[Path, str]]:
        """Yield (path, relative path) of content files, depth first, by name."""
        for item in sorted(os.scandir(directory), key=lambda d: d.name):
            if should_ignore(item.name):
                continue
            rel = f"{relative}/{item.name}" if relative else item.name
            if item.is_dir():
                if is_drafts_dir(item.name):
                    logger.debug("Skipping drafts folder: %s", rel)
                    continue
                yield from self._iter_files(Path(item.path), rel)
            elif is_content_file(item.name) and not is_in_drafts_folder(rel):
                yield Path(item.path), rel

    def _load_file(
        self, builder: EntryBuilder, result: LoadResult, full_path: Path, relative_path: str
    ) -> None:
        web_path = normalize_web_path(relative_path)
        if full_path.name.startswith("_"):
            logger.warning(
                "%s uses underscore prefix (intended for template partials, not content)",
                web_path,
            )

        try:
            raw = None
            if full_path.suffix.lower() == ".md":
                raw = full_path.read_text(encoding="utf-8")
                self._prescan_images(extract_frontmatter(raw)[1], full_path, result.width_cache)
            entry = builder.build(full_path, relative_path, raw)
        except Exception as exc:
            result.failed += 1
            logger.error("Error loading content '%s': %s", web_path, exc)
            return

        if entry is None:
            return

        if entry.slug in result.slug_paths:
            existing = result.slug_paths[entry.slug]
            if self.live:
                logger.warning(
                    "Skipping duplicate URL %s: %s (already used in %s)",
                    entry.url,
                    web_path,
                    existing,
                )
                return
            raise DuplicateSlugError(entry.slug, entry.url, web_path, existing)

        result.entries[entry.slug] = entry
        result.slug_paths[entry.slug] = web_path

        if entry.images:
            result.image_references[web_path] = entry.images
            for ref in entry.images:
                if ref.resolved_path.exists():
                    continue
                result.broken_images.append(BrokenImage(web_path, ref.src, ref.resolved_path))
                if self.config.get("strict_images") and not self.live:
                    raise BrokenImageError(web_path, ref.src, ref.resolved_path)
                logger.warning("Broken image in %s: %s", web_path, ref.src)

    def _prescan_images(self, body: str, full_path: Path, width_cache: dict[str, int]) -> None:
        """Read the intrinsic widths of a page's images before it renders."""
        for match in _MARKDOWN_IMAGE_RE.finditer(body):
            target = match.group(1).strip().split()
            if not target:
                continue
            src = unquote(target[0].strip("<>"))
            if is_external_url(src):
                continue
            resolved = resolve_content_path(self.content_root, full_path.parent, src)
            if resolved is None or str(resolved) in width_cache:
                continue
            if resolved.is_file():
                width = read_image_width(resolved)
                if width:
                    width_cache[str(resolved)] = width
