"""Feed generation for Folio.

This module generates the site-wide documents derived from the entry set:
the RSS feed, the sitemap, the JSON search index and the default
``robots.txt`` and ``llms.txt``. The live server serves the same documents
from memory through the cache manager.

Classes:
    FeedGenerator: Base class for feed generators.
    RSSGenerator: Generates RSS 2.0 feeds (site-wide or per taxonomy term).
    SitemapGenerator: Generates sitemap.xml.
    SearchIndexGenerator: Generates search.json.
    RobotsGenerator: Generates the default robots.txt.
    LlmsGenerator: Generates the default llms.txt.
    FeedRegistry: Registry for managing feed generators.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import Any

from .collections import EntryCollection, build_taxonomy
from .html_utils import escape_html, join_root_url
from .models import Entry

RSS_ITEM_LIMIT = 20
LLMS_RECENT_LIMIT = 10
SEARCH_CONTENT_LIMIT = 5000

_SEARCH_STRIP_RE = re.compile(r"[#*`\[\]]")
_WS_RE = re.compile(r"\s+")


def _base_url(site: dict[str, Any]) -> str:
    return str(site.get("url") or "https://example.com").rstrip("/")


def _rfc822(value: str) -> str | None:
    try:
        day = date.fromisoformat(str(value)[:10])
    except ValueError:
        return None
    return day.strftime("%a, %d %b %Y 00:00:00 +0000")


class FeedGenerator(ABC):
    """Abstract base class for feed generators."""

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output filename for this feed."""
        ...

    @abstractmethod
    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        """Generate feed content from entries.

        Args:
            entries: Entries to include.
            site: Site configuration.

        Returns:
            Feed content as a string.
        """
        ...

    def write(self, output_dir: Path, entries: Iterable[Entry], site: dict[str, Any]) -> Path:
        """Generate and write the feed into ``output_dir``."""
        output_path = output_dir / self.filename
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.generate(entries, site), encoding="utf-8")
        return output_path


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed of the most recent entries.

    The channel's build date is the newest entry's date, so unchanged
    content always yields an identical feed.

    Attributes:
        title_suffix: Appended to the site title, for per-term feeds.
    """

    def __init__(self, title_suffix: str | None = None):
        self.title_suffix = title_suffix

    @property
    def filename(self) -> str:
        return "rss.xml"

    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        base_url = _base_url(site)
        title = str(site.get("title") or "My Site")
        if self.title_suffix:
            title = f"{title} - {self.title_suffix}"
        recent = EntryCollection(entries).latest(RSS_ITEM_LIMIT)

        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape_html(title)}</title>",
            f"<link>{escape_html(base_url)}/</link>",
            f"<description>{escape_html(str(site.get('description') or ''))}</description>",
            "<language>en</language>",
        ]
        if recent:
            build_date = _rfc822(recent[0].created_at)
            if build_date:
                rss.append(f"<lastBuildDate>{build_date}</lastBuildDate>")

        for entry in recent:
            link = join_root_url(base_url, entry.url)
            description = entry.description or entry.raw_content[:200]
            item = [
                f"<item><title>{escape_html(entry.title)}</title>",
                f"<link>{escape_html(link)}</link>",
                f'<guid isPermaLink="true">{escape_html(link)}</guid>',
                f"<description>{escape_html(description)}</description>",
            ]
            pub_date = _rfc822(entry.created_at)
            if pub_date:
                item.append(f"<pubDate>{pub_date}</pubDate>")
            item.extend(f"<category>{escape_html(tag)}</category>" for tag in entry.tags)
            item.append("</item>")
            rss.append("".join(item))

        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml listing the home page, every entry and every tag page."""

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        base_url = _base_url(site)
        collection = EntryCollection(entries)

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
            f"  <url><loc>{escape_html(base_url)}/</loc>"
            "<changefreq>daily</changefreq><priority>1.0</priority></url>",
        ]
        for entry in collection.sorted():
            loc = escape_html(join_root_url(base_url, entry.url))
            lines.append(
                f"  <url><loc>{loc}</loc><lastmod>{escape_html(str(entry.updated_at))}</lastmod>"
                "<changefreq>monthly</changefreq><priority>0.8</priority></url>"
            )
        tags = build_taxonomy(collection, "tags")
        for tag in tags:
            loc = escape_html(join_root_url(base_url, tags.url_for(tag)))
            lines.append(
                f"  <url><loc>{loc}</loc>"
                "<changefreq>weekly</changefreq><priority>0.5</priority></url>"
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


def search_text(content: str) -> str:
    """Reduce a body to plain searchable text of at most 5000 characters."""
    text = _SEARCH_STRIP_RE.sub("", content)
    return _WS_RE.sub(" ", text).strip()[:SEARCH_CONTENT_LIMIT]


class SearchIndexGenerator(FeedGenerator):
    """Generates a flat, compact JSON search index, newest entries first."""

    @property
    def filename(self) -> str:
        return "search.json"

    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        records = [
            {
                "id": entry.slug,
                "title": entry.title,
                "slug": entry.slug,
                "url": entry.url,
                "date": entry.created_at,
                "createdAt": entry.created_at,
                "updatedAt": entry.updated_at,
                "tags": entry.tags,
                "description": entry.description,
                "content": search_text(entry.raw_content),
            }
            for entry in EntryCollection(entries).sorted()
        ]
        return json.dumps(records, ensure_ascii=False, separators=(",", ":"))


class RobotsGenerator(FeedGenerator):
    """Generates a permissive robots.txt pointing at the sitemap."""

    @property
    def filename(self) -> str:
        return "robots.txt"

    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        return f"User-agent: *\nAllow: /\n\nSitemap: {_base_url(site)}/sitemap.xml\n"


class LlmsGenerator(FeedGenerator):
    """Generates llms.txt: the site summary and its most recent pages."""

    @property
    def filename(self) -> str:
        return "llms.txt"

    def generate(self, entries: Iterable[Entry], site: dict[str, Any]) -> str:
        base_url = _base_url(site)
        lines = [
            f"# {site.get('title') or 'My Site'}",
            "",
            f"> {site.get('description') or ''}",
            "",
            "## Recent Pages",
        ]
        for entry in EntryCollection(entries).latest(LLMS_RECENT_LIMIT):
            lines.append(f"- [{entry.title}]({join_root_url(base_url, entry.url)})")
        lines.extend(["", "## Full Sitemap", f"{base_url}/sitemap.xml", ""])
        return "\n".join(lines)


class FeedRegistry:
    """Registry for managing feed generators."""

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def get(self, filename: str) -> FeedGenerator | None:
        for generator in self._generators:
            if generator.filename == filename:
                return generator
        return None

    def __iter__(self):
        return iter(self._generators)

    def generate_all(
        self,
        output_dir: Path,
        entries: Iterable[Entry],
        site: dict[str, Any],
        skip: Iterable[str] = (),
    ) -> list[str]:
        """Generate all registered feeds.

        Args:
            output_dir: Directory to write feed files to.
            entries: Entries to include.
            site: Site configuration.
            skip: Filenames another source already provides.

        Returns:
            List of filenames that were generated.
        """
        entries_list = list(entries)
        skipped = set(skip)
        generated = []
        for generator in self._generators:
            if generator.filename in skipped:
                continue
            generator.write(output_dir, entries_list, site)
            generated.append(generator.filename)
        return generated


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with the site-wide feed generators."""
    registry = FeedRegistry()
    registry.register(RSSGenerator())
    registry.register(SitemapGenerator())
    registry.register(SearchIndexGenerator())
    registry.register(RobotsGenerator())
    registry.register(LlmsGenerator())
    return registry
