"""Query cache for storage reads.

One ``QueryCache`` is created per application (``app.state.query_cache``) and
handed to repositories explicitly. Keys are tuples whose first item names the
query kind, e.g. ``("owner", uid, limit)``; writes drop the keys they affect.

Every invalidation bumps a per-kind generation. A reader notes the generation
before going to storage and stores its result with ``set_if_current`` so that a
read overlapping a write cannot put the pre-write result back.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Hashable, Optional, Tuple

from cachetools import TTLCache  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

CacheKey = Tuple[Hashable, ...]

_MISSING = object()


class QueryCache:
    def __init__(self, maxsize: int = 256, ttl: float = 30.0) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        # storage calls run in the threadpool
        self._lock = threading.Lock()
        self._generations: Dict[Hashable, int] = {}
        self._epoch = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get(self, key: CacheKey, default: Any = None) -> Any:
        with self._lock:
            return self._cache.get(key, default)

    def lookup(self, key: CacheKey) -> Tuple[bool, Any]:
        """``(hit, value)``; distinguishes a cached ``None`` from a miss."""

        with self._lock:
            value = self._cache.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def generation(self, kind: Hashable) -> int:
        with self._lock:
            return self._epoch + self._generations.get(kind, 0)

    def set_if_current(self, key: CacheKey, value: Any, generation: int) -> bool:
        """Store ``value`` unless ``key[0]`` was invalidated since ``generation`` was read."""

        with self._lock:
            if self._epoch + self._generations.get(key[0], 0) != generation:
                return False
            self._cache[key] = value
            return True

    def _bump(self, kind: Hashable) -> None:
        self._generations[kind] = self._generations.get(kind, 0) + 1

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._bump(key[0])
            self._cache.pop(key, None)

    def invalidate_matching(self, kind: str, value: Optional[Hashable] = None) -> int:
        """Drop every key of ``kind`` (and, if given, whose second item is ``value``)."""

        with self._lock:
            self._bump(kind)
            doomed = [
                key
                for key in list(self._cache.keys())
                if key and key[0] == kind and (value is None or (len(key) > 1 and key[1] == value))
            ]
            for key in doomed:
                self._cache.pop(key, None)
        if doomed:
            logger.debug("Invalidated %d cached %s queries", len(doomed), kind)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._cache.clear()
