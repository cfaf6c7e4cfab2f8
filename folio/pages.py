"""Page rendering for Folio.

``PageRenderer`` turns one loaded content set into HTML pages: entry pages,
paginated listings, taxonomy term pages and the 404 page. The batch build
writes every page it produces to disk; the live server renders pages by
page id on demand and caches them.

Page ids are entry slugs for entry pages and synthetic ids for the rest:
``__index_<n>`` for listing page n, ``__tag_<slug>``, ``__category_<slug>``
and ``__series_<slug>`` for taxonomy term pages.
"""

from __future__ import annotations

from typing import Any

from markupsafe import Markup

from .collections import (
    POSTS_PER_PAGE,
    TAXONOMY_PREFIXES,
    EntryCollection,
    TaxonomyIndex,
    build_taxonomy,
    page_url,
    pagination_data,
)
from .content import LoadResult
from .models import Entry
from .templates import TAXONOMY_TEMPLATE_CHAINS, TemplateEngine

RELATED_LIMIT = 3

INDEX_PAGE_PREFIX = "__index_"

DEFAULT_404_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>404 - Page Not Found</title>
  <link rel="stylesheet" href="/assets/style.css">
</head>
<body>
  <main>
    <h1>404 - Page Not Found</h1>
    <p>The page you're looking for doesn't exist.</p>
    <p><a href="/">Go home</a></p>
  </main>
</body>
</html>
"""


def taxonomy_page_id(index: TaxonomyIndex, term: str) -> str:
    """Return the page id of a taxonomy term page, e.g. ``__tag_python``."""
    return f"__{TAXONOMY_PREFIXES[index.kind]}_{index.slug_for(term)}"


class PageRenderer:
    """Renders the pages of one loaded content set.

    A renderer is bound to a single ``LoadResult``; a reload creates a new
    renderer alongside the new result.

    Attributes:
        engine: Template engine of the active theme.
        result: The loaded content.
        site: Site configuration.
        entries: All entries, newest first.
        taxonomies: Taxonomy index per kind ("tags", "categories", "series").
    """

    def __init__(self, engine: TemplateEngine, result: LoadResult, site: dict[str, Any]):
        self.engine = engine
        self.result = result
        self.site = site
        self.entries = EntryCollection(result.sorted_entries())
        self.taxonomies: dict[str, TaxonomyIndex] = {
            kind: build_taxonomy(self.entries, kind) for kind in TAXONOMY_PREFIXES
        }
        self._positions = {entry.slug: i for i, entry in enumerate(self.entries)}

    @property
    def total_pages(self) -> int:
        return max(1, self.entries.total_pages(POSTS_PER_PAGE))

    def base_context(self, page_type: str) -> dict[str, Any]:
        """Variables every page template receives."""
        return {
            "site": self.site,
            "config": self.site,
            "navigation": self.result.navigation,
            "page_type": page_type,
            "tags": self.taxonomies["tags"],
            "categories": self.taxonomies["categories"],
            "series_index": self.taxonomies["series"],
        }

    # Entry pages

    def related_entries(self, entry: Entry, limit: int = RELATED_LIMIT) -> list[Entry]:
        """Entries sharing the most tags with ``entry``, newest first on ties."""
        if not entry.tags:
            return []
        wanted = set(entry.tags)
        scored = []
        for other in self.entries:
            if other.slug == entry.slug:
                continue
            shared = len(wanted.intersection(other.tags))
            if shared:
                scored.append((-shared, self._positions[other.slug], other))
        scored.sort(key=lambda item: (item[0], item[1]))
        return [other for _, _, other in scored[:limit]]

    def adjacent_entries(self, entry: Entry) -> tuple[Entry | None, Entry | None]:
        """Return (previous, next) in chronological order."""
        position = self._positions.get(entry.slug)
        if position is None:
            return None, None
        older = self.entries[position + 1] if position + 1 < len(self.entries) else None
        newer = self.entries[position - 1] if position > 0 else None
        return older, newer

    def render_entry(self, entry: Entry) -> str:
        """Render an entry page; raw HTML documents are returned untouched."""
        if entry.is_raw:
            return entry.rendered_html or ""
        prev_entry, next_entry = self.adjacent_entries(entry)
        context = self.base_context("entry")
        context.update(
            {
                "entry": entry.to_context(),
                "content": Markup(entry.html),
                "front_matter": entry.front_matter,
                "prev_entry": prev_entry.to_context() if prev_entry else None,
                "next_entry": next_entry.to_context() if next_entry else None,
                "related_entries": [e.to_context() for e in self.related_entries(entry)],
                "toc": entry.toc,
                "has_toc": bool(entry.toc),
            }
        )
        return self.engine.render(self.engine.select(entry), context, entry.filename)

    # Listing pages

    def render_index(self, page: int = 1) -> str:
        """Render listing page ``page`` (1-based)."""
        context = self.base_context("index")
        context.update(
            {
                "entries": [e.to_context() for e in self.entries.page(page, POSTS_PER_PAGE)],
                "has_entries_list": True,
                "pagination": pagination_data(page, self.total_pages),
                "page_url": page_url,
            }
        )
        return self.engine.render("index", context, f"{INDEX_PAGE_PREFIX}{page}")

    def render_taxonomy(self, kind: str, term: str) -> str:
        """Render the page listing every entry filed under one term."""
        index = self.taxonomies[kind]
        label = TAXONOMY_PREFIXES[kind]
        context = self.base_context(label)
        context.update(
            {
                label: term,
                "term": term,
                "entries": [e.to_context() for e in index[term].sorted()],
                "has_entries_list": True,
                "feed_url": index.url_for(term) + "rss.xml",
            }
        )
        template = self.engine.first_available(TAXONOMY_TEMPLATE_CHAINS[kind])
        return self.engine.render(template, context, taxonomy_page_id(index, term))

    def render_not_found(self) -> str:
        if not self.engine.has("404"):
            return DEFAULT_404_HTML
        return self.engine.render("404", self.base_context("404"), "404")

    # Page ids

    def page_ids(self) -> list[str]:
        """Every page id this content set can render."""
        ids = [entry.slug for entry in self.entries]
        ids.extend(f"{INDEX_PAGE_PREFIX}{n}" for n in range(1, self.total_pages + 1))
        for kind, index in self.taxonomies.items():
            ids.extend(taxonomy_page_id(index, term) for term in index)
        return ids

    def render_page_id(self, page_id: str) -> str | None:
        """Render a page by id, or return None if the id is unknown."""
        if page_id.startswith(INDEX_PAGE_PREFIX):
            number = page_id[len(INDEX_PAGE_PREFIX) :]
            if number.isdigit() and 1 <= int(number) <= self.total_pages:
                return self.render_index(int(number))
            return None
        for kind, label in TAXONOMY_PREFIXES.items():
            prefix = f"__{label}_"
            if page_id.startswith(prefix):
                term = self.taxonomies[kind].term_for(page_id[len(prefix) :])
                return self.render_taxonomy(kind, term) if term is not None else None
        entry = self.result.entries.get(page_id)
        return self.render_entry(entry) if entry is not None else None

    def page_id_for_path(self, path: str) -> str | None:
        """Map a request path to the page id that renders it.

        Examples: ``/`` is ``__index_1``, ``/page/2/`` is ``__index_2``,
        ``/tag/python/`` is ``__tag_python`` and ``/posts/hello/`` is
        ``posts/hello``.
        """
        parts = [part for part in path.split("/") if part]
        if not parts:
            return f"{INDEX_PAGE_PREFIX}1"
        if len(parts) == 2 and parts[0] == "page" and parts[1].isdigit():
            page_id = f"{INDEX_PAGE_PREFIX}{int(parts[1])}"
            return page_id if 1 < int(parts[1]) <= self.total_pages else None
        if len(parts) == 2:
            for kind, label in TAXONOMY_PREFIXES.items():
                if parts[0] == label and self.taxonomies[kind].term_for(parts[1]) is not None:
                    return f"__{label}_{parts[1]}"
        slug = "/".join(parts)
        return slug if slug in self.result.entries else None
