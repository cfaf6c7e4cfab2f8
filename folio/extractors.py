"""Metadata extraction for Folio.

Splits front matter from a content body and resolves the metadata every
entry carries. Each resolver is a pure function of its inputs and applies an
ordered fallback chain where the first match wins.

Key functions:
- extract_frontmatter: Split YAML front matter from the body.
- resolve_title: front matter -> first markdown H1 -> filename -> untitled hash.
- resolve_created_at: front matter -> filename date -> birth time -> mtime.
- resolve_updated_at: front matter -> mtime.
- calculate_reading_stats: Word count and reading time in minutes.
- resolve_metadata: All of the above at once.
"""

from __future__ import annotations

import logging
import math
import os
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import yaml

from .utils import extract_date_prefix, path_hash, strip_content_extension

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)

_H1_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_IMAGE_RE = re.compile(r"!\[.*?\]\(.*?\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(.*?\)")
_MARKUP_RE = re.compile(r"[#*`_~]")
_WS_RE = re.compile(r"\s+")

DEFAULT_READING_SPEED = 200


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Extract YAML frontmatter from content.

    A block that is not valid YAML, or whose YAML is not a mapping, is
    treated as if the file had no front matter at all.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (frontmatter dict, remaining content).
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        logger.warning("Ignoring malformed front matter: %s", exc)
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end() :]


def extract_title_from_content(content: str, is_markdown: bool) -> str | None:
    """Return the text of the first ``# `` heading in a markdown body."""
    if not is_markdown:
        return None
    match = _H1_RE.search(content)
    return match.group(1).strip() if match else None


def resolve_title(
    frontmatter: dict[str, Any],
    content: str,
    filename: str,
    is_markdown: bool,
    full_path: str,
) -> str:
    """Resolve an entry title.

    Order: front-matter ``title``, then the first markdown H1, then the file
    name minus its content extension (dates and dashes kept verbatim), then
    ``untitled-<hash of full path>``.
    """
    title = frontmatter.get("title")
    if title is not None and not isinstance(title, str):
        title = str(title)
    if not title and is_markdown:
        title = extract_title_from_content(content, is_markdown)
    if not title:
        title = strip_content_extension(os.path.basename(filename))
    if not title or not title.strip():
        title = f"untitled-{path_hash(full_path)}"
        logger.warning("File has no name: %s, using %s", full_path, title)
    return title


def format_date(value: Any) -> str:
    """Render a front-matter date value as a string.

    Dates and datetimes become ISO calendar dates (datetimes in UTC); any
    other value is kept verbatim as text.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _timestamp_to_date(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).date().isoformat()


def is_valid_birthtime(stats: os.stat_result) -> bool:
    """Check whether a file's birth time can be trusted.

    A birth time of zero or less, one equal to the change time, or one later
    than the modify time marks a copied or restored file. Platforms that do
    not report a birth time never have a valid one.
    """
    birthtime = getattr(stats, "st_birthtime", None)
    if birthtime is None:
        return False
    if birthtime <= 0:
        return False
    if birthtime == stats.st_ctime:
        return False
    if birthtime > stats.st_mtime:
        return False
    return True


def resolve_created_at(
    frontmatter: dict[str, Any], filename: str, stats: os.stat_result
) -> str:
    value = frontmatter.get("createdAt") or frontmatter.get("date")
    if value:
        return format_date(value)
    prefix = extract_date_prefix(filename)
    if prefix:
        return prefix
    if is_valid_birthtime(stats):
        return _timestamp_to_date(stats.st_birthtime)
    return _timestamp_to_date(stats.st_mtime)


def resolve_updated_at(frontmatter: dict[str, Any], stats: os.stat_result) -> str:
    value = frontmatter.get("updatedAt") or frontmatter.get("updated")
    if value:
        return format_date(value)
    return _timestamp_to_date(stats.st_mtime)


def calculate_reading_stats(
    content: str, reading_speed: int = DEFAULT_READING_SPEED
) -> tuple[int, int]:
    """Count words and estimate reading time.

    Images are removed, links reduced to their text and markdown punctuation
    stripped before counting.

    Args:
        content: Body text.
        reading_speed: Words per minute; non-positive values use the default.

    Returns:
        Tuple of (word count, reading time in whole minutes, rounded up).

    Examples:
        >>> calculate_reading_stats("one two three", reading_speed=2)
        (3, 2)
    """
    plain = _IMAGE_RE.sub("", content)
    plain = _LINK_RE.sub(r"\1", plain)
    plain = _MARKUP_RE.sub("", plain)
    plain = _WS_RE.sub(" ", plain).strip()
    words = len([word for word in plain.split(" ") if word])
    speed = reading_speed if reading_speed and reading_speed > 0 else DEFAULT_READING_SPEED
    return words, math.ceil(words / speed)


def _as_list(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        items = [str(item) for item in value if item is not None and item != ""]
    else:
        items = [str(value)]
    return list(dict.fromkeys(items))


def extract_tags(frontmatter: dict[str, Any]) -> list[str]:
    """Return front-matter tags as a de-duplicated list, in source order."""
    return _as_list(frontmatter.get("tags"))


def extract_taxonomies(
    frontmatter: dict[str, Any],
) -> tuple[list[str] | None, str | None]:
    """Return (categories, series) from front matter.

    Categories are None when absent; a single category string becomes a
    one-element list.
    """
    categories = None
    if frontmatter.get("categories"):
        categories = _as_list(frontmatter["categories"])
    series = frontmatter.get("series")
    return categories, (str(series) if series else None)


@dataclass
class Metadata:
    """Resolved metadata of one content file."""

    title: str
    created_at: str
    updated_at: str
    word_count: int
    reading_time: int


def resolve_metadata(
    content: str,
    filename: str,
    frontmatter: dict[str, Any],
    is_markdown: bool,
    full_path: str,
    stats: os.stat_result,
    reading_speed: int = DEFAULT_READING_SPEED,
) -> Metadata:
    """Resolve title, dates and reading stats for one file.

    Args:
        content: Body without front matter.
        filename: Base name of the file.
        frontmatter: Parsed front matter.
        is_markdown: Whether the body is markdown (enables the H1 title rule).
        full_path: Absolute path, used for the untitled hash.
        stats: Result of ``os.stat`` on the file.
        reading_speed: Words per minute.

    Returns:
        Metadata for the file. ``created_at <= updated_at`` is not enforced.
    """
    word_count, reading_time = calculate_reading_stats(content, reading_speed)
    return Metadata(
        title=resolve_title(frontmatter, content, filename, is_markdown, full_path),
        created_at=resolve_created_at(frontmatter, filename, stats),
        updated_at=resolve_updated_at(frontmatter, stats),
        word_count=word_count,
        reading_time=reading_time,
    )
