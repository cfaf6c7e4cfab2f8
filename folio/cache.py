"""In-memory caches for Folio.

One ``CacheManager`` is created at startup and passed to everything that
reads or fills a cache. It knows nothing about entries; callers key it by
page id (an entry slug or a synthetic id such as ``__index_2``) or by
document name.
"""

from __future__ import annotations

import hashlib
import threading

from .compression import compress


class CacheManager:
    """Rendered pages, compressed buffers and dynamic documents.

    Attributes:
        rendered: Rendered HTML by page id.
        compressed: Compressed bytes by ``"<codec>:<etag>"``.
        dynamic: Generated documents (search index, feed, sitemap) by name.
        generation: Bumped by every ``clear_all``; a fill tagged with an older
            generation is discarded.
    """

    def __init__(self):
        self.rendered: dict[str, str] = {}
        self.compressed: dict[str, bytes] = {}
        self.dynamic: dict[str, str] = {}
        self.generation = 0
        self._lock = threading.Lock()

    @staticmethod
    def etag(content: str | bytes) -> str:
        data = content.encode("utf-8") if isinstance(content, str) else content
        return hashlib.md5(data).hexdigest()

    def get_rendered(self, page_id: str) -> str | None:
        return self.rendered.get(page_id)

    def set_rendered(self, page_id: str, html: str, generation: int | None = None) -> bool:
        return self._store(self.rendered, page_id, html, generation)

    def get_dynamic(self, name: str) -> str | None:
        return self.dynamic.get(name)

    def set_dynamic(self, name: str, content: str, generation: int | None = None) -> bool:
        return self._store(self.dynamic, name, content, generation)

    def _store(self, target: dict[str, str], key: str, value: str, generation: int | None) -> bool:
        with self._lock:
            if generation is not None and generation != self.generation:
                return False
            target[key] = value
        return True

    def get_compressed(self, content: str | bytes, codec: str) -> tuple[str, bytes]:
        """Return (etag, compressed bytes), compressing at most once per content.

        Args:
            content: Uncompressed body.
            codec: "gzip" or "br".
        """
        data = content.encode("utf-8") if isinstance(content, str) else content
        etag = self.etag(data)
        key = f"{codec}:{etag}"
        cached = self.compressed.get(key)
        if cached is None:
            cached = compress(data, codec)
            self.compressed[key] = cached
        return etag, cached

    def delete(self, key: str) -> bool:
        """Remove a page id or document name from every map that holds it."""
        deleted = self.rendered.pop(key, None) is not None
        deleted = (self.dynamic.pop(key, None) is not None) or deleted
        return deleted

    def clear_all(self) -> int:
        """Empty all three maps.

        Returns:
            Number of items removed.
        """
        with self._lock:
            count = len(self.rendered) + len(self.compressed) + len(self.dynamic)
            self.rendered.clear()
            self.compressed.clear()
            self.dynamic.clear()
            self.generation += 1
        return count
