"""
Tag-invalidated in-process cache.

Order search results are cached per query and tagged "orders". Any write to
an order (admin action, submission, swap) calls ``invalidate_tag("orders")``
so the next search reads fresh rows.

Storage is a cachetools.TTLCache: entries expire after ``ttl_seconds`` and
the least recently used entry is evicted once ``maxsize`` is reached. The
tag index only ever holds keys that are still live in the TTLCache.

Thread Safety:
    - All operations take one threading.Lock (TTLCache is not thread-safe)
    - Cached values are returned as stored; callers must treat them as
      read-only
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Set

from cachetools import TTLCache

from logging_config import get_logger


logger = get_logger(__name__)

ORDERS_TAG = "orders"


class TaggedCache:
    """
    TTLCache with tag-based invalidation.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        maxsize: int = 1024,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._tags: Dict[str, Set[Hashable]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def _trim_tags(self) -> None:
        """Drop tag references to keys the TTLCache no longer holds."""
        for tag in list(self._tags):
            live = {key for key in self._tags[tag] if key in self._entries}
            if live:
                self._tags[tag] = live
            else:
                del self._tags[tag]

    def get(self, key: Hashable) -> Optional[Any]:
        """Cached value, or None if missing or expired."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: Hashable, value: Any, tags: Iterable[str] = ()) -> None:
        with self._lock:
            self._entries.expire()
            self._entries[key] = value
            self._trim_tags()
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)

    def invalidate_tag(self, tag: str) -> int:
        """
        Drop every entry carrying ``tag``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = self._tags.pop(tag, set())
            removed = 0
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        if removed:
            logger.debug(f"Invalidated {removed} cached entries for tag '{tag}'")
        return removed

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._tags.clear()
            return count

    def tag_size(self, tag: str) -> int:
        """Number of live keys indexed under ``tag``."""
        with self._lock:
            self._entries.expire()
            self._trim_tags()
            return len(self._tags.get(tag, ()))
