"""Theme asset pipeline for Folio.

This module copies a theme's static files into ``<output>/assets/`` and,
when fingerprinting is enabled, gives stylesheets and scripts
content-hash names so they can be cached indefinitely.

Key components:
- AssetPipeline: Copies and fingerprints theme assets, returning the
  asset map used to rewrite emitted HTML.
- rewrite_html_tree: Applies an asset map to every HTML file in a tree.

Fingerprinting runs in two passes: the first hashes every stylesheet and
script, the second copies them and rewrites references between them, so
a stylesheet that imports another sees its final name.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from pathlib import Path

from .html_utils import rewrite_asset_urls
from .utils import content_hash, should_ignore

logger = logging.getLogger(__name__)

FINGERPRINT_EXTENSIONS = (".css", ".js")
ASSETS_URL_PREFIX = "/assets/"

# Theme entries that are never copied as assets
_SKIPPED_DIRS = ("partials",)
_THEME_DOCUMENTS = ("robots.txt", "llms.txt")


def fingerprinted_name(relative_path: str, digest: str) -> str:
    """Insert a hash before the extension.

    Examples:
        >>> fingerprinted_name("css/site.css", "a1b2c3d4")
        'css/site.a1b2c3d4.css'
    """
    stem, ext = os.path.splitext(relative_path)
    return f"{stem}.{digest}{ext}"


def is_theme_asset(relative_path: str) -> bool:
    """Return True if a theme-relative path is published under ``/assets/``."""
    parts = relative_path.strip("/").split("/")
    if not parts[-1] or any(should_ignore(part) for part in parts):
        return False
    if parts[0] in _SKIPPED_DIRS or parts[-1].startswith("_"):
        return False
    if parts[-1].lower().endswith(".html"):
        return False
    return not (len(parts) == 1 and parts[0] in _THEME_DOCUMENTS)


class AssetPipeline:
    """Copies a theme's static assets into the output tree.

    Templates (``*.html``), partials, dotfiles and ``_``-prefixed files stay
    behind; everything else lands under ``<output>/assets/`` at the same
    relative path.

    Attributes:
        theme_dir: Directory of the active theme.
        output_dir: Root of the output tree.
        fingerprint: Whether stylesheets and scripts get content-hash names.
    """

    def __init__(self, theme_dir: Path, output_dir: Path, fingerprint: bool = False):
        self.theme_dir = theme_dir
        self.output_dir = output_dir
        self.fingerprint = fingerprint

    def iter_assets(self) -> list[str]:
        """Return the theme-relative web paths of every copyable asset, sorted."""
        if not self.theme_dir.is_dir():
            return []
        found = []
        for dirpath, dirnames, filenames in os.walk(self.theme_dir):
            dirnames[:] = sorted(
                d for d in dirnames if not should_ignore(d) and d not in _SKIPPED_DIRS
            )
            rel_dir = os.path.relpath(dirpath, self.theme_dir)
            for filename in sorted(filenames):
                rel = filename if rel_dir == "." else f"{rel_dir}/{filename}"
                rel = rel.replace(os.sep, "/")
                if is_theme_asset(rel):
                    found.append(rel)
        return found

    def run(self) -> dict[str, str]:
        """Copy all assets.

        Returns:
            Asset map of original URL to fingerprinted URL, e.g.
            ``{"/assets/style.css": "/assets/style.a1b2c3d4.css"}``. Empty
            when fingerprinting is off.
        """
        assets = self.iter_assets()
        target = self.output_dir / "assets"
        asset_map: dict[str, str] = {}
        names: dict[str, str] = {}

        if self.fingerprint:
            for rel in assets:
                if rel.lower().endswith(FINGERPRINT_EXTENSIONS):
                    digest = content_hash((self.theme_dir / rel).read_bytes())
                    names[rel] = fingerprinted_name(rel, digest)
                    asset_map[ASSETS_URL_PREFIX + rel] = ASSETS_URL_PREFIX + names[rel]

        for rel in assets:
            source = self.theme_dir / rel
            dest = target / names.get(rel, rel)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if rel in names:
                text = source.read_text(encoding="utf-8")
                dest.write_text(rewrite_references(text, rel, names), encoding="utf-8")
                logger.debug("Fingerprinted: %s", names[rel])
            else:
                shutil.copy2(source, dest)

        if assets:
            logger.info("Copied %d theme assets from %s", len(assets), self.theme_dir.name)
        return asset_map


def rewrite_references(text: str, current: str, names: dict[str, str]) -> str:
    """Point references inside a stylesheet or script at fingerprinted names.

    Both root-absolute (``/assets/x.css``) and relative (``x.css``,
    ``./x.css``) references are recognized when quoted or inside ``url()``.
    """
    base_dir = os.path.dirname(current)
    for rel, new_rel in names.items():
        if rel == current:
            continue
        relative = os.path.relpath(rel, base_dir or ".").replace(os.sep, "/")
        new_relative = os.path.relpath(new_rel, base_dir or ".").replace(os.sep, "/")
        for old, new in (
            (ASSETS_URL_PREFIX + rel, ASSETS_URL_PREFIX + new_rel),
            ("./" + relative, "./" + new_relative),
            (relative, new_relative),
        ):
            pattern = re.compile(r"(?<=[\"'(])" + re.escape(old) + r"(?=[\"')?#])")
            text = pattern.sub(new, text)
    return text


def rewrite_html_tree(root: Path, asset_map: dict[str, str]) -> int:
    """Rewrite asset URLs in every HTML file under root.

    Returns:
        Number of files that changed.
    """
    if not asset_map:
        return 0
    changed = 0
    for path in sorted(root.rglob("*.html")):
        html = path.read_text(encoding="utf-8")
        rewritten = rewrite_asset_urls(html, asset_map)
        if rewritten != html:
            path.write_text(rewritten, encoding="utf-8")
            changed += 1
    return changed
