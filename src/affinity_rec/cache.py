"""
Bounded TTL cache for affinity profiles.

Profiles are cheap to rebuild but callers serving many requests for the
same user can memoize them under (user_id, ratings_version). Invalidation
is the caller's job: bump ratings_version whenever the ratings change.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Hashable

from .config import PROFILE_CACHE_SIZE, PROFILE_CACHE_TTL_SECONDS
from .profile import AffinityProfile

logger = logging.getLogger(__name__)


class ProfileCache:
    """Thread-safe LRU cache with per-entry expiry."""

    def __init__(
        self,
        max_size: int = PROFILE_CACHE_SIZE,
        ttl_seconds: float = PROFILE_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, AffinityProfile]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable) -> AffinityProfile | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            created_at, profile = entry
            if self._clock() - created_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1
            return profile

    def put(self, key: Hashable, profile: AffinityProfile) -> None:
        with self._lock:
            self._entries[key] = (self._clock(), profile)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached profile {evicted!r}")

    def get_or_build(self, key: Hashable, build: Callable[[], AffinityProfile]) -> AffinityProfile:
        profile = self.get(key)
        if profile is None:
            profile = build()
            self.put(key, profile)
        return profile

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict:
        with self._lock:
            total = self.hits + self.misses
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / total * 100, 1) if total > 0 else 0.0,
            }
