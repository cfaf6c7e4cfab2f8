"""Path and identity utilities for Folio.

Small pure helpers shared by the whole pipeline: slugs, web paths, content
hashes and filename checks.

Key functions:
    slugify: Unicode-safe slug for headings and taxonomy names.
    normalize_web_path: Convert an OS path into a forward-slash web path.
    path_hash: Short hash of a path string, used to name image variants.
    content_hash: Short hash of a byte sequence, used to fingerprint assets.
    extract_date_prefix: Read a YYYY-MM-DD filename prefix.
    ensure_clean_dir: Ensure a directory exists and is empty.
"""

from __future__ import annotations

import hashlib
import os
import re
import shutil
import unicodedata
from pathlib import Path, PurePath

CONTENT_EXTENSIONS = (".md", ".txt", ".html")
RASTER_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".avif")
TEXT_OUTPUT_EXTENSIONS = (".html", ".css", ".js", ".json", ".xml", ".txt", ".svg")

HASH_LENGTH = 8

_CONTENT_EXT_RE = re.compile(r"\.(md|txt|html)$", re.IGNORECASE)
_DATE_PREFIX_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug.

    Accents are folded to their base letters, anything that is not a word
    character, whitespace or a dash is dropped, and runs of whitespace and
    dashes collapse to a single dash.

    Args:
        text: Text to convert.

    Returns:
        Lower-case slug, possibly empty.

    Examples:
        >>> slugify("Héllo, World!")
        'hello-world'
    """
    value = unicodedata.normalize("NFKD", text.lower())
    value = "".join(ch for ch in value if not unicodedata.combining(ch))
    value = re.sub(r"[^\w\s-]", "", value)
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"-+", "-", value)
    return value.strip("-")


def normalize_web_path(path: str | PurePath) -> str:
    """Convert a relative filesystem path to a forward-slash web path."""
    return str(path).replace(os.sep, "/").replace("\\", "/")


def strip_content_extension(name: str) -> str:
    """Remove a trailing .md, .txt or .html extension, keeping everything else."""
    return _CONTENT_EXT_RE.sub("", name)


def path_hash(path: str | PurePath) -> str:
    """Return the short md5 hash of a path *string*.

    The hash identifies a location, not file contents: the same path always
    yields the same hash across runs, and identical files at different paths
    get different hashes.
    """
    return hashlib.md5(str(path).encode("utf-8")).hexdigest()[:HASH_LENGTH]


def content_hash(data: bytes) -> str:
    """Return the short md5 hash of a byte sequence."""
    return hashlib.md5(data).hexdigest()[:HASH_LENGTH]


def extract_date_prefix(filename: str) -> str | None:
    """Extract a YYYY-MM-DD prefix from a filename.

    The prefix is returned verbatim; it is not validated as a calendar date.

    Examples:
        >>> extract_date_prefix("2024-01-15-hello.md")
        '2024-01-15'

        >>> extract_date_prefix("hello.md") is None
        True
    """
    match = _DATE_PREFIX_RE.match(os.path.basename(filename))
    return match.group(1) if match else None


def should_ignore(name: str) -> bool:
    """Check if a file or folder name is a dotfile."""
    return name.startswith(".")


def is_drafts_dir(name: str) -> bool:
    return name.lower() == "drafts"


def is_in_drafts_folder(relative_path: str | PurePath) -> bool:
    """Check if any segment of a relative path is a drafts folder."""
    parts = re.split(r"[\\/]+", str(relative_path))
    return any(is_drafts_dir(part) for part in parts)


def is_content_file(name: str) -> bool:
    """Check if a filename is a Markdown, text or HTML content file."""
    return name.lower().endswith(CONTENT_EXTENSIONS)


def is_markdown(path: str | PurePath) -> bool:
    return str(path).lower().endswith(".md")


def is_raster_image(name: str) -> bool:
    """Check if a filename is a raster image the variant pipeline handles."""
    return name.lower().endswith(RASTER_EXTENSIONS)


def is_text_output(name: str) -> bool:
    """Check if an output file is text-like and worth compressing."""
    return name.lower().endswith(TEXT_OUTPUT_EXTENSIONS)


def is_external_url(url: str) -> bool:
    return url.startswith(("http://", "https://", "//"))


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    If the directory exists, removes all contents. Creates the
    directory if it doesn't exist.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path), ignore_errors=True)
        if path.exists():
            # Fallback for stubborn directories
            for item in path.rglob("*"):
                if item.is_file():
                    item.unlink()
            for item in sorted(
                [p for p in path.rglob("*") if p.is_dir()], reverse=True
            ):
                item.rmdir()
            path.rmdir()
    path.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, content: str) -> None:
    """Write a UTF-8 text file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
