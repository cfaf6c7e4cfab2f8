"""Site building functionality for Folio.

This module contains the batch build: it loads configuration, content and
the theme, then emits the complete output tree in strictly sequenced
phases.

Key functions:
- build_site: Main function to build the entire site.
- load_config: Loads site configuration from folio.yaml.

Everything that can make a build fail (invalid redirects, duplicate slugs,
a missing content root or mandatory template) is checked before the output
directory is cleaned, so a failed build leaves no partial output behind.
"""

from __future__ import annotations

import copy
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .assets import AssetPipeline, rewrite_html_tree
from .collections import POSTS_PER_PAGE, page_url
from .compression import precompress_tree
from .content import ContentLoader, LoadResult
from .feeds import RSSGenerator, create_default_feed_registry
from .images import (
    OptimizeResult,
    collect_valid_hashes,
    dedupe_references,
    prune_orphans,
    run_optimize_images,
    variant_dir,
)
from .models import Entry, RedirectRule
from .pages import PageRenderer
from .redirects import load_redirects, validate_redirects, write_redirects
from .templates import TemplateEngine, resolve_theme_dir
from .utils import (
    ensure_clean_dir,
    is_content_file,
    is_drafts_dir,
    is_raster_image,
    should_ignore,
    write_text,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "folio.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "My Site",
    "description": "A site built with folio",
    "url": "https://example.com",
    "author": "Anonymous",
    "content_dir": "content",
    "output_dir": "build",
    "cache_dir": ".cache",
    "theme": "default",
    "structure": "structured",
    "reading_speed": 200,
    "escape_text_files": True,
    "strict_images": False,
    "fingerprint_assets": False,
    "compress_output": True,
    "disable_pre_render": False,
    "pre_compress_content": False,
    "strict_pre_render": True,
    "allow_external_redirects": False,
    "allowed_redirect_domains": [],
    "port": 3009,
    "ws_port": None,
    "debounce_seconds": 0.5,
    "log_level": "INFO",
}

# Documents a theme may provide itself instead of the generated defaults
THEME_DOCUMENTS = ("robots.txt", "llms.txt")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        entries: Every entry that was built, newest first.
        output_dir: Directory where the site was built.
        config: Effective site configuration.
        pages_written: Number of HTML pages emitted (entries, listings, terms).
        images: Image optimization counts.
        redirects_written: Redirect fallback files written.
        redirects_skipped: Redirect fallbacks skipped because a page exists.
        compressed: Number of files given compressed copies.
        asset_map: Original to fingerprinted asset URLs.
    """

    entries: list[Entry]
    output_dir: Path
    config: dict[str, Any]
    pages_written: int = 0
    images: OptimizeResult = field(default_factory=OptimizeResult)
    redirects_written: int = 0
    redirects_skipped: int = 0
    compressed: int = 0
    asset_map: dict[str, str] = field(default_factory=dict)


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from folio.yaml.

    Values from the file are merged over ``DEFAULT_CONFIG``; unknown keys
    are kept and reach templates through ``site``. A file that cannot be
    parsed is reported and the defaults are used.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            logger.warning("Could not parse %s, using defaults: %s", CONFIG_FILENAME, exc)
            loaded = {}
        if isinstance(loaded, dict):
            config.update(loaded)
        else:
            logger.warning("%s must contain a mapping, using defaults", CONFIG_FILENAME)
    if not config.get("ws_port"):
        config["ws_port"] = int(config["port"]) + 1
    return config


def load_redirect_rules(project_root: Path, config: dict[str, Any]) -> list[RedirectRule] | None:
    """Load and validate the redirect map; None if the project has none."""
    data = load_redirects(project_root)
    if data is None:
        return None
    return validate_redirects(data, config)


def build_site(project_root: Path, output_dir_override: Path | None = None) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        output_dir_override: Optional path to write the build output instead
            of config output_dir.

    Returns:
        BuildResult describing what was written.

    Raises:
        RedirectValidationError: The redirect map has invalid rules.
        ContentRootError: The content directory is missing or unreadable.
        DuplicateSlugError: Two content files map to the same URL.
        BrokenImageError: An image is missing and strict_images is on.
        MissingTemplateError: The theme lacks index.html or entry.html.
        BuildError: A page failed to render.
    """
    project_root = Path(project_root)
    config = load_config(project_root)
    content_dir = project_root / config["content_dir"]
    output_dir = output_dir_override or (project_root / config["output_dir"])
    cache_dir = project_root / config["cache_dir"]

    rules = load_redirect_rules(project_root, config)
    loaded = ContentLoader(content_dir, config).load()
    theme_dir = resolve_theme_dir(project_root, config.get("theme"))
    engine = TemplateEngine(theme_dir, config)
    renderer = PageRenderer(engine, loaded, config)

    ensure_clean_dir(output_dir)
    build = BuildResult(entries=list(renderer.entries), output_dir=output_dir, config=config)

    build.asset_map = AssetPipeline(
        theme_dir, output_dir, fingerprint=bool(config.get("fingerprint_assets"))
    ).run()
    build.images = publish_images(loaded, cache_dir, output_dir)

    build.pages_written += _write_entry_pages(renderer, output_dir)
    build.pages_written += _write_listing_pages(renderer, output_dir)
    build.pages_written += _write_taxonomy_pages(renderer, output_dir)
    _write_site_documents(renderer, engine, output_dir)

    if rules is not None:
        build.redirects_written, build.redirects_skipped = write_redirects(
            rules, output_dir, occupied_urls=[e.url for e in renderer.entries]
        )
    build.pages_written += _write_raw_pages(renderer, output_dir)
    copy_static_content(content_dir, output_dir)

    if config.get("fingerprint_assets") and build.asset_map:
        rewrite_html_tree(output_dir, build.asset_map)
    if config.get("compress_output"):
        build.compressed, _failed = precompress_tree(output_dir)

    logger.info(
        "Built %d entries (%d pages) into %s", len(build.entries), build.pages_written, output_dir
    )
    return build


def publish_images(loaded: LoadResult, cache_dir: Path, output_dir: Path) -> OptimizeResult:
    """Optimize referenced images into the cache and copy their variants out.

    Variants are generated in the cache directory, where they survive
    between builds, so an unchanged image costs no encoding on rebuild.
    Orphaned variants are then pruned from the cache.
    """
    refs = dedupe_references(loaded.all_images())
    result = run_optimize_images(refs, cache_dir)
    for ref in refs:
        source_dir = variant_dir(ref, cache_dir)
        target_dir = variant_dir(ref, output_dir)
        for name in ref.variant_names():
            source = source_dir / name
            if source.exists():
                target_dir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target_dir / name)
    prune_orphans(cache_dir, collect_valid_hashes(refs))
    for broken in loaded.broken_images:
        logger.warning("Broken image in %s: %s", broken.page, broken.src)
    return result


def _page_path(output_dir: Path, url: str) -> Path:
    return output_dir / url.strip("/") / "index.html"


def _write_entry_pages(renderer: PageRenderer, output_dir: Path) -> int:
    written = 0
    for entry in renderer.entries:
        if entry.is_raw:
            continue
        write_text(_page_path(output_dir, entry.url), renderer.render_entry(entry))
        written += 1
    return written


def _write_listing_pages(renderer: PageRenderer, output_dir: Path) -> int:
    total = renderer.total_pages
    for number in range(1, total + 1):
        write_text(_page_path(output_dir, page_url(number)), renderer.render_index(number))
    logger.debug("Wrote %d listing pages of %d entries", total, POSTS_PER_PAGE)
    return total


def _write_taxonomy_pages(renderer: PageRenderer, output_dir: Path) -> int:
    written = 0
    for kind, index in renderer.taxonomies.items():
        for term in index:
            url = index.url_for(term)
            write_text(_page_path(output_dir, url), renderer.render_taxonomy(kind, term))
            RSSGenerator(title_suffix=term).write(
                output_dir / url.strip("/"), index[term], renderer.site
            )
            written += 1
    return written


def _write_site_documents(renderer: PageRenderer, engine: TemplateEngine, output_dir: Path) -> None:
    """Write the feed, sitemap, search index, robots.txt, llms.txt and 404 page."""
    themed = []
    context = {"site": renderer.site, "entries": [e.to_context() for e in renderer.entries]}
    for filename in THEME_DOCUMENTS:
        rendered = engine.render_optional(filename, context)
        if rendered is not None:
            write_text(output_dir / filename, rendered)
            themed.append(filename)
    create_default_feed_registry().generate_all(
        output_dir, renderer.entries, renderer.site, skip=themed
    )
    write_text(output_dir / "404.html", renderer.render_not_found())


def _write_raw_pages(renderer: PageRenderer, output_dir: Path) -> int:
    """Write raw HTML documents exactly as they were loaded."""
    written = 0
    for entry in renderer.entries:
        if entry.is_raw:
            write_text(_page_path(output_dir, entry.url), entry.rendered_html or "")
            written += 1
    return written


def copy_static_content(content_dir: Path, output_dir: Path) -> int:
    """Copy non-content, non-image files from the content tree verbatim.

    Dotfiles and drafts folders are skipped. Raster images are published
    as variants instead, and content files as pages.

    Returns:
        Number of files copied.
    """
    copied = 0
    for dirpath, dirnames, filenames in os.walk(content_dir):
        dirnames[:] = sorted(
            d for d in dirnames if not should_ignore(d) and not is_drafts_dir(d)
        )
        for filename in sorted(filenames):
            if should_ignore(filename) or is_content_file(filename) or is_raster_image(filename):
                continue
            source = Path(dirpath) / filename
            dest = output_dir / source.relative_to(content_dir)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
            copied += 1
    return copied
