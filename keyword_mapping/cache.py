"""Tag-aware in-memory read cache for research views.

Reads (detail and list views) are cached under one or more tags. Every
mutation revalidates the global research tag and, when it targets a single
record, that record's tag, so no stale view survives a write.
"""

import logging
import threading
import time
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

KEYWORD_RESEARCH_TAG = "keyword_research"


def research_tag(research_id: str) -> str:
    """Cache tag for a single research record."""
    return f"{KEYWORD_RESEARCH_TAG}:{research_id}"


class TaggedCache:
    """TTL cache with size-bounded eviction and tag invalidation.

    Usage::

        cache = TaggedCache(ttl_seconds=300)
        view = cache.get_or_load("detail:abc", load_fn, tags=[research_tag("abc")])
        cache.revalidate_tag(research_tag("abc"))
    """

    def __init__(self, max_size: int = 1000, ttl_seconds: float = 300.0):
        self._entries: dict[str, tuple[float, Any, frozenset[str]]] = {}
        self._max_size = max(1, max_size)
        self._ttl_seconds = ttl_seconds
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            ts, value, _ = entry
            if self._ttl_seconds and time.time() - ts >= self._ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, tags: Iterable[str] = ()) -> None:
        with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_size:
                oldest_key = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[oldest_key]
            self._entries[key] = (time.time(), value, frozenset(tags))

    def get_or_load(
        self, key: str, loader: Callable[[], Any], tags: Iterable[str] = ()
    ) -> Any:
        """Return the cached value or call *loader* and cache a non-None result."""
        cached = self.get(key)
        if cached is not None:
            logger.debug("Cache hit: %s", key)
            return cached
        value = loader()
        if value is not None:
            self.set(key, value, tags)
        return value

    def revalidate_tag(self, tag: str) -> int:
        """Drop every entry carrying *tag*; returns the number dropped."""
        with self._lock:
            stale = [k for k, (_, _, tags) in self._entries.items() if tag in tags]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("Revalidated tag %s (%d entries)", tag, len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def revalidate_research(cache: Optional[TaggedCache], research_id: Optional[str] = None) -> None:
    """Invalidate the list views and, given an id, that record's views."""
    if cache is None:
        return
    cache.revalidate_tag(KEYWORD_RESEARCH_TAG)
    if research_id:
        cache.revalidate_tag(research_tag(research_id))
