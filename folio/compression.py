"""Output compression for Folio.

Text-like outputs are published with two sibling compressed copies, ``.gz``
and ``.br``. Gzip output carries no timestamp so repeated builds produce
identical bytes.
"""

from __future__ import annotations

import gzip
import logging
import os
from pathlib import Path

import brotli

from .utils import is_text_output

logger = logging.getLogger(__name__)

GZIP_LEVEL = 9
BROTLI_QUALITY = 11


def gzip_bytes(data: bytes) -> bytes:
    return gzip.compress(data, compresslevel=GZIP_LEVEL, mtime=0)


def brotli_bytes(data: bytes) -> bytes:
    return brotli.compress(data, quality=BROTLI_QUALITY)


# Content-Encoding name -> (file suffix, compressor)
CODECS = {
    "br": (".br", brotli_bytes),
    "gzip": (".gz", gzip_bytes),
}


def compress(data: bytes, codec: str) -> bytes:
    """Compress bytes with a codec named by its Content-Encoding token."""
    return CODECS[codec][1](data)


def precompress_tree(root: Path) -> tuple[int, int]:
    """Write ``.gz`` and ``.br`` copies of every text-like file under root.

    A file that fails to compress is logged and counted; the walk continues.

    Returns:
        Tuple of (files compressed, files that failed).
    """
    compressed = failed = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in sorted(filenames):
            if not is_text_output(filename):
                continue
            path = Path(dirpath) / filename
            try:
                data = path.read_bytes()
                for suffix, compressor in CODECS.values():
                    path.with_name(path.name + suffix).write_bytes(compressor(data))
            except (OSError, brotli.error) as exc:
                failed += 1
                logger.error("Error compressing %s: %s", path, exc)
                continue
            compressed += 1
    return compressed, failed
