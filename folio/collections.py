"""Entry collections, taxonomy indexes and pagination for Folio."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping, Sequence

from .models import Entry
from .utils import content_hash, slugify

POSTS_PER_PAGE = 10

# URL segment of each taxonomy's pages
TAXONOMY_PREFIXES = {"tags": "tag", "categories": "category", "series": "series"}


class EntryCollection(Sequence[Entry]):
    """Lightweight helper for working with lists of Entries in templates and code."""

    def __init__(self, entries: Iterable[Entry]):
        self._entries = list(entries)
        self._sorted_cache: EntryCollection | None = None

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, item):
        return self._entries[item]

    def with_tag(self, tag: str) -> EntryCollection:
        return EntryCollection(e for e in self._entries if tag in e.tags)

    def with_category(self, category: str) -> EntryCollection:
        return EntryCollection(e for e in self._entries if category in (e.categories or []))

    def in_series(self, series: str) -> EntryCollection:
        return EntryCollection(e for e in self._entries if e.series == series)

    def in_section(self, section: str) -> EntryCollection:
        return EntryCollection(e for e in self._entries if e.section == section)

    def sorted(self) -> EntryCollection:
        """Sort entries by creation date, newest first.

        Entries with the same date keep slug order, so the result does not
        depend on discovery order.
        """
        if self._sorted_cache is None:
            by_slug = sorted(self._entries, key=lambda e: e.slug)
            self._sorted_cache = EntryCollection(
                sorted(by_slug, key=lambda e: str(e.created_at), reverse=True)
            )
        return self._sorted_cache

    def latest(self, count: int = 5) -> EntryCollection:
        return EntryCollection(self.sorted()[:count])

    def page(self, number: int, per_page: int = POSTS_PER_PAGE) -> EntryCollection:
        """Return one 1-based page of the sorted entries."""
        start = (number - 1) * per_page
        return EntryCollection(self.sorted()[start : start + per_page])

    def total_pages(self, per_page: int = POSTS_PER_PAGE) -> int:
        return math.ceil(len(self._entries) / per_page)

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"EntryCollection({len(self._entries)} entries)"


class TaxonomyIndex(Mapping[str, EntryCollection]):
    """Mapping of term name to the entries filed under it.

    Attributes:
        kind: "tags", "categories" or "series".
    """

    def __init__(self, kind: str, mapping: dict[str, Iterable[Entry]]):
        self.kind = kind
        self._mapping = {k: EntryCollection(v) for k, v in sorted(mapping.items())}
        self._slugs: dict[str, str] = {}
        self._terms: dict[str, str] = {}
        for term in self._mapping:
            slug = _unique_slug(term_slug(term), self._terms)
            self._slugs[term] = slug
            self._terms[slug] = term

    def __getitem__(self, key: str) -> EntryCollection:
        return self._mapping[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def slug_for(self, term: str) -> str:
        """Return the URL segment of a term, unique within this taxonomy."""
        return self._slugs.get(term) or term_slug(term)

    def term_for(self, slug: str) -> str | None:
        return self._terms.get(slug)

    def url_for(self, term: str) -> str:
        """Return the URL of a term's page, e.g. ``/tag/python/``."""
        return f"/{TAXONOMY_PREFIXES[self.kind]}/{self.slug_for(term)}/"

    def __repr__(self) -> str:  # pragma: no cover - for debugging
        return f"TaxonomyIndex({self.kind}, {len(self._mapping)} terms)"


def term_slug(term: str) -> str:
    """Slugify a term; terms with no slug-safe characters get a hash slug."""
    return slugify(term) or "term-" + content_hash(term.encode("utf-8"))


def _unique_slug(base: str, taken: Mapping[str, str]) -> str:
    slug, counter = base, 1
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def _terms(entry: Entry, kind: str) -> list[str]:
    if kind == "tags":
        return entry.tags
    if kind == "categories":
        return entry.categories or []
    return [entry.series] if entry.series else []


def build_taxonomy(entries: Iterable[Entry], kind: str) -> TaxonomyIndex:
    """Group entries by the terms of one taxonomy."""
    mapping: dict[str, list[Entry]] = {}
    for entry in entries:
        for term in _terms(entry, kind):
            mapping.setdefault(term, []).append(entry)
    return TaxonomyIndex(kind, mapping)


def pagination_data(current_page: int, total_pages: int) -> dict:
    """Describe the page links around the current page.

    Up to 7 pages are listed in full; beyond that the first and last page
    and the current page's neighbours are listed, with ``"..."`` gaps.

    Examples:
        >>> pagination_data(5, 10)["pages"]
        [1, '...', 4, 5, 6, '...', 10]
    """
    pages: list[int | str] = []
    if total_pages <= 7:
        pages.extend(range(1, total_pages + 1))
    else:
        pages.append(1)
        if current_page > 3:
            pages.append("...")
        for number in range(max(2, current_page - 1), min(total_pages - 1, current_page + 1) + 1):
            pages.append(number)
        if current_page < total_pages - 2:
            pages.append("...")
        pages.append(total_pages)

    return {
        "current_page": current_page,
        "total_pages": total_pages,
        "pages": pages,
        "has_prev": current_page > 1,
        "has_next": current_page < total_pages,
        "prev_page": current_page - 1,
        "next_page": current_page + 1,
    }


def page_url(number: int) -> str:
    """URL of a listing page; page 1 is the site root."""
    return "/" if number <= 1 else f"/page/{number}/"
