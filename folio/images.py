"""Responsive image variants for Folio.

Every local image an entry references is published as a ladder of widths in
two formats, WebP and progressive JPEG, named
``<basename>-<width>-<hash>.<ext>``. The hash is derived from the image's
resolved path, so names are stable across runs; freshness is decided by
modify times only.

Key functions:
    compute_sizes: Width ladder bounded by an image's intrinsic width.
    read_image_width: Intrinsic width of an image file.
    optimize_image: Encode every variant of one image.
    needs_optimization: Whether any expected variant is missing or stale.
    optimize_images: Deduplicated, bounded-concurrency batch optimization.
    prune_orphans: Delete cached variants no live entry references.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from .models import STANDARD_IMAGE_SIZES, ImageReference
from .utils import path_hash

logger = logging.getLogger(__name__)

CONCURRENCY = max(2, math.floor((os.cpu_count() or 1) * 0.75))

WEBP_QUALITY = 80
WEBP_METHOD = 6
JPEG_QUALITY = 80

VARIANT_RE = re.compile(r"^(.+)-(\d+)-([a-f0-9]{8})\.(webp|jpg)$")


def compute_sizes(width: int | None) -> list[int]:
    """Return the variant widths for an image of the given intrinsic width.

    Standard widths below the intrinsic width are kept and the intrinsic
    width itself is added, so an image is never upscaled and its largest
    variant is full size. Unknown widths use the standard ladder.

    Examples:
        >>> compute_sizes(1000)
        [400, 800, 1000]

        >>> compute_sizes(300)
        [300]

        >>> compute_sizes(None)
        [400, 800, 1200]
    """
    if not width:
        return list(STANDARD_IMAGE_SIZES)
    sizes = [size for size in STANDARD_IMAGE_SIZES if size < width]
    if width not in sizes:
        sizes.append(width)
    return sorted(sizes)


def read_image_width(path: Path) -> int | None:
    """Return the intrinsic width of an image, or None if it cannot be read."""
    try:
        with Image.open(path) as img:
            return img.width
    except OSError as exc:
        logger.debug("Could not read image size of %s: %s", path, exc)
        return None


def _resize(img: Image.Image, width: int) -> Image.Image:
    if width >= img.width:
        return img.copy()
    height = max(1, round(img.height * width / img.width))
    return img.resize((width, height), Image.Resampling.LANCZOS)


def optimize_image(
    image_path: Path, output_dir: Path, sizes: list[int] | tuple[int, ...] | None = None
) -> list[Path]:
    """Encode the WebP and JPEG variants of one image.

    Args:
        image_path: Resolved source path. Its string form names the variants.
        output_dir: Directory the variants are written into.
        sizes: Widths to produce; derived from the intrinsic width if empty.

    Returns:
        Paths of the written variant files.

    Raises:
        OSError: If the source cannot be decoded or a variant cannot be written.
    """
    image_path = Path(image_path)
    name = image_path.stem
    digest = path_hash(image_path)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    with Image.open(image_path) as img:
        if not sizes:
            sizes = compute_sizes(img.width)
        for width in sizes:
            variant = _resize(img, width)

            webp_path = output_dir / f"{name}-{width}-{digest}.webp"
            webp = variant if variant.mode in ("RGB", "RGBA") else variant.convert("RGBA")
            webp.save(webp_path, "WEBP", quality=WEBP_QUALITY, method=WEBP_METHOD)
            written.append(webp_path)

            jpeg_path = output_dir / f"{name}-{width}-{digest}.jpg"
            jpeg = variant if variant.mode == "RGB" else variant.convert("RGB")
            jpeg.save(
                jpeg_path,
                "JPEG",
                quality=JPEG_QUALITY,
                progressive=True,
                optimize=True,
            )
            written.append(jpeg_path)
    return written


def variant_dir(ref: ImageReference, output_dir: Path) -> Path:
    return output_dir / ref.url_base if ref.url_base else output_dir


def needs_optimization(ref: ImageReference, output_dir: Path) -> bool:
    """Check whether any variant of an image is missing or older than its source.

    The source modify time is the only freshness signal; the hash in a
    variant name never is.
    """
    try:
        source_mtime = ref.resolved_path.stat().st_mtime
    except OSError:
        return False
    target_dir = variant_dir(ref, output_dir)
    for name in ref.variant_names():
        try:
            if (target_dir / name).stat().st_mtime < source_mtime:
                return True
        except FileNotFoundError:
            return True
    return False


def dedupe_references(refs: Iterable[ImageReference]) -> list[ImageReference]:
    """Keep the first reference per resolved path."""
    seen: dict[Path, ImageReference] = {}
    for ref in refs:
        seen.setdefault(ref.resolved_path, ref)
    return list(seen.values())


@dataclass
class OptimizeResult:
    """Counts from one batch optimization run."""

    processed: int = 0
    skipped: int = 0
    failed: int = 0


def _optimize_one(ref: ImageReference, output_dir: Path) -> list[Path]:
    return optimize_image(
        ref.resolved_path, variant_dir(ref, output_dir), list(ref.sizes_to_generate)
    )


async def optimize_images(
    refs: Iterable[ImageReference],
    output_dir: Path,
    concurrency: int = CONCURRENCY,
) -> OptimizeResult:
    """Optimize every image that needs it, a fixed-size batch at a time.

    References are deduplicated by resolved path and filtered to existing
    files that have a missing or stale variant. A failing image is logged
    and counted; it never stops the rest of its batch.

    Args:
        refs: Image references from all loaded entries.
        output_dir: Root the variants are written under.
        concurrency: Batch size, at least 2.

    Returns:
        Counts of processed, up-to-date and failed images.
    """
    unique = [ref for ref in dedupe_references(refs) if ref.resolved_path.is_file()]
    pending = [ref for ref in unique if needs_optimization(ref, output_dir)]
    result = OptimizeResult(skipped=len(unique) - len(pending))
    if not pending:
        return result

    batch_size = max(2, concurrency)
    logger.info("Optimizing %d images (%d up to date)", len(pending), result.skipped)
    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(_optimize_one, ref, output_dir) for ref in batch),
            return_exceptions=True,
        )
        for ref, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                result.failed += 1
                logger.error("Error optimizing %s: %s", ref.resolved_path, outcome)
            else:
                result.processed += 1
    return result


def run_optimize_images(
    refs: Iterable[ImageReference], output_dir: Path, concurrency: int = CONCURRENCY
) -> OptimizeResult:
    """Synchronous entry point for :func:`optimize_images`."""
    return asyncio.run(optimize_images(refs, output_dir, concurrency))


def collect_valid_hashes(refs: Iterable[ImageReference]) -> set[str]:
    """Return the hashes of references whose source file still exists."""
    return {ref.hash for ref in refs if ref.resolved_path.exists()}


def prune_orphans(cache_dir: Path, valid_hashes: set[str]) -> int:
    """Delete cached variants whose hash no live entry references.

    Files not named like a variant are left alone. Directories emptied by
    the pruning are removed; the cache directory itself is kept.

    Returns:
        Number of files deleted.
    """
    if not cache_dir.exists():
        return 0
    removed = 0
    for dirpath, _dirnames, filenames in os.walk(cache_dir, topdown=False):
        current = Path(dirpath)
        for filename in filenames:
            match = VARIANT_RE.match(filename)
            if match and match.group(3) not in valid_hashes:
                (current / filename).unlink()
                removed += 1
        if current != cache_dir and not any(current.iterdir()):
            current.rmdir()
    if removed:
        logger.info("Removed %d orphaned image variants", removed)
    return removed
