"""Data model for Folio.

Dataclasses shared by the loader, the image pipeline, the build
orchestrator and the live server.

Key classes:
- Heading: A heading recorded while rendering, used for TOC generation.
- TocNode: A heading placed in the table-of-contents tree.
- ImageReference: A local image referenced by an entry, with its variant plan.
- Entry: Canonical in-memory record of one content file.
- NavNode: A folder or file node of the navigation tree.
- RedirectRule: One validated redirect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import is_external_url

# Names an entry computes itself. Front-matter keys with these names never
# reach the entry's extra fields.
RESERVED_FIELDS = frozenset(
    {
        "slug",
        "url",
        "filename",
        "title",
        "date",
        "createdAt",
        "updatedAt",
        "tags",
        "categories",
        "series",
        "html",
        "rawContent",
        "description",
        "ogImage",
        "wordCount",
        "readingTime",
        "section",
        "type",
        "toc",
        "headings",
        "relativePath",
        "dateISO",
        "createdAtISO",
        "updatedAtISO",
        "renderedHtml",
        # snake_case spellings of the same fields, as templates see them
        "created_at",
        "updated_at",
        "raw_content",
        "og_image",
        "word_count",
        "reading_time",
        "relative_path",
        "rendered_html",
        "extras",
    }
)

STANDARD_IMAGE_SIZES = (400, 800, 1200)
VARIANT_FORMATS = ("webp", "jpg")


@dataclass
class Heading:
    """A heading recorded while rendering an entry.

    Attributes:
        level: Heading level (1-6).
        content: Text content of the heading.
        slug: Anchor id emitted on the heading tag; empty if it has none.
    """

    level: int
    content: str
    slug: str


@dataclass
class TocNode:
    """A heading placed in the table-of-contents tree."""

    level: int
    content: str
    slug: str
    children: list[TocNode] = field(default_factory=list)


@dataclass(frozen=True)
class ImageReference:
    """A local image referenced from an entry.

    Attributes:
        src: The reference exactly as written in the source.
        resolved_path: Absolute path of the image inside the content root.
        output_path: Web path of the image relative to the content root.
        basename: File name without extension.
        hash: Short hash of the resolved path string.
        url_base: Web directory of the variants, empty or ending in ``/``.
        sizes_to_generate: Strictly ascending variant widths.
    """

    src: str
    resolved_path: Path
    output_path: str
    basename: str
    hash: str
    url_base: str
    sizes_to_generate: tuple[int, ...]

    @property
    def median_width(self) -> int:
        return self.sizes_to_generate[len(self.sizes_to_generate) // 2]

    def variant_name(self, width: int, ext: str) -> str:
        return f"{self.basename}-{width}-{self.hash}.{ext}"

    def variant_url(self, width: int, ext: str) -> str:
        return f"/{self.url_base}{self.variant_name(width, ext)}"

    def variant_names(self) -> list[str]:
        """Return every variant file name this reference expects."""
        return [
            self.variant_name(width, ext)
            for width in self.sizes_to_generate
            for ext in VARIANT_FORMATS
        ]


@dataclass
class BrokenImage:
    """An image reference whose file does not exist."""

    page: str
    src: str
    resolved_path: Path


@dataclass
class Entry:
    """Canonical record of one loaded content file.

    Entries are built once per load and never mutated afterwards; a reload
    replaces the whole set.

    Attributes:
        slug: Unique key, the URL without surrounding slashes, or ``index``.
        url: Path with leading and trailing slash.
        title: Resolved title.
        created_at: ISO calendar date (or the front-matter value verbatim).
        updated_at: ISO calendar date (or the front-matter value verbatim).
        type: "markdown", "text" or "html".
        html: Rendered body HTML that goes into a template.
        rendered_html: Complete document for raw HTML entries, otherwise None.
        filename: Web path of the source relative to the content root.
        extras: Front-matter fields outside the reserved names.
    """

    slug: str
    url: str
    title: str
    created_at: str
    updated_at: str
    type: str
    html: str
    filename: str
    tags: list[str] = field(default_factory=list)
    categories: list[str] | None = None
    series: str | None = None
    rendered_html: str | None = None
    raw_content: str = ""
    description: str = ""
    og_image: str | None = None
    word_count: int = 0
    reading_time: int = 0
    section: str | None = None
    toc: list[TocNode] = field(default_factory=list)
    headings: list[Heading] = field(default_factory=list)
    images: list[ImageReference] = field(default_factory=list)
    front_matter: dict[str, Any] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def date(self) -> str:
        return self.created_at

    @property
    def is_raw(self) -> bool:
        """True if the entry is a complete HTML document served as-is."""
        return self.rendered_html is not None

    def to_context(self) -> dict[str, Any]:
        """Return the entry as a template context mapping.

        Extra fields are spread next to the known ones; a known field always
        wins over an extra of the same name.
        """
        context: dict[str, Any] = {
            "slug": self.slug,
            "url": self.url,
            "title": self.title,
            "date": self.created_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tags": self.tags,
            "categories": self.categories or [],
            "series": self.series,
            "type": self.type,
            "html": self.html,
            "description": self.description,
            "og_image": self.og_image,
            "word_count": self.word_count,
            "reading_time": self.reading_time,
            "section": self.section,
            "toc": self.toc,
            "headings": self.headings,
            "filename": self.filename,
            "front_matter": self.front_matter,
        }
        for key, value in self.extras.items():
            context.setdefault(key, value)
        return context


@dataclass
class NavNode:
    """A node of the navigation tree.

    Folder nodes carry children and no URL; file nodes carry a URL and no
    children.
    """

    kind: str  # "folder" | "file"
    title: str
    url: str | None = None
    children: list[NavNode] = field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.kind == "folder"


@dataclass(frozen=True)
class RedirectRule:
    """A validated redirect from a root-absolute path."""

    source: str
    target: str
    status_code: int = 301

    @property
    def is_external(self) -> bool:
        return is_external_url(self.target)

    @property
    def is_permanent(self) -> bool:
        return self.status_code in (301, 308)
