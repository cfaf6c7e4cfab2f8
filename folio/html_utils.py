"""HTML utility functions for Folio.

This module provides HTML inspection and rewriting helpers: escaping,
complete-document sniffing, heading extraction and asset URL rewriting.

Functions:
    escape_html: Escape special HTML characters in a string.
    is_complete_html_document: Detect a top-level doctype/html/head/body.
    extract_headings_from_html: Collect h1-h6 headings from an HTML fragment.
    rewrite_asset_urls: Point asset references at fingerprinted names.
    join_root_url: Join a base URL with a path.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from bs4 import BeautifulSoup, Doctype

from .models import Heading

# URL attribute regex pattern for finding href and src attributes
_URL_ATTR_RE = re.compile(
    r'(?P<prefix>\b(?:href|src)=["\'])(?P<url>[^"\']+)(?P<suffix>["\'])'
)

_DOCUMENT_TAGS = ("html", "head", "body")
_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Args:
        text: The string to escape.

    Returns:
        The escaped string, safe for inclusion in HTML.

    Examples:
        >>> escape_html('<script>alert("XSS")</script>')
        '&lt;script&gt;alert(&quot;XSS&quot;)&lt;/script&gt;'

        >>> escape_html('Tom & Jerry')
        'Tom &amp; Jerry'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
    )


def is_complete_html_document(html: str) -> bool:
    """Check whether HTML is a full document rather than a body fragment.

    Only top-level nodes count: a doctype, or an ``html``, ``head`` or
    ``body`` element at the root. A ``<body>`` nested inside a fragment's
    ``<div>`` does not make the fragment a document.

    Examples:
        >>> is_complete_html_document("<!DOCTYPE html><html></html>")
        True

        >>> is_complete_html_document("<p>Hello</p>")
        False
    """
    soup = BeautifulSoup(html, "html.parser")
    for node in soup.contents:
        if isinstance(node, Doctype):
            return True
        if getattr(node, "name", None) in _DOCUMENT_TAGS:
            return True
    return False


def extract_headings_from_html(html: str) -> list[Heading]:
    """Collect headings from HTML in document order.

    The heading's ``id`` attribute becomes its slug; headings without an id
    are still returned (with an empty slug) but never enter a TOC.
    Headings with no text are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    headings: list[Heading] = []
    for tag in soup.find_all(_HEADING_TAGS):
        content = tag.get_text().strip()
        if not content:
            continue
        headings.append(
            Heading(level=int(tag.name[1]), content=content, slug=tag.get("id") or "")
        )
    return headings


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Examples:
        >>> join_root_url('https://example.com', '/about/')
        'https://example.com/about/'

        >>> join_root_url('https://example.com/', 'about/')
        'https://example.com/about/'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def rewrite_asset_urls(html: str, asset_map: Mapping[str, str]) -> str:
    """Rewrite href/src attributes that name a fingerprinted asset.

    Args:
        html: HTML content to process.
        asset_map: Original root-relative asset URL to fingerprinted URL,
            e.g. ``{"/style.css": "/style.a1b2c3d4.css"}``.

    Returns:
        HTML with matching asset references replaced. Query strings and
        fragments on a matching URL are preserved.
    """
    if not asset_map:
        return html

    def repl(match: re.Match) -> str:
        url = match.group("url")
        path, sep, rest = _split_url(url)
        target = asset_map.get(path)
        if target is None:
            return match.group(0)
        return f"{match.group('prefix')}{target}{sep}{rest}{match.group('suffix')}"

    return _URL_ATTR_RE.sub(repl, html)


def _split_url(url: str) -> tuple[str, str, str]:
    for sep in ("?", "#"):
        if sep in url:
            path, rest = url.split(sep, 1)
            return path, sep, rest
    return url, "", ""
