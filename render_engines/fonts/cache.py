"""Bounded in-memory cache for font binaries.

Entries are evicted oldest-first when the entry cap or the aggregate byte cap
would be exceeded; a hit moves the entry to the most-recent end. TTL is checked
lazily when an entry is read.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from render_engines.fonts.models import FontCacheStats

logger = logging.getLogger(__name__)

MAX_CACHE_ENTRIES = 20
MAX_CACHE_BYTES = 50 * 1024 * 1024
MAX_FONT_BYTES = 5 * 1024 * 1024
CACHE_TTL_SECONDS = 60 * 60


@dataclass
class _CacheEntry:
    data: bytes
    timestamp: float
    size: int


class FontCache:
    def __init__(
        self,
        max_entries: int = MAX_CACHE_ENTRIES,
        max_bytes: int = MAX_CACHE_BYTES,
        max_entry_bytes: int = MAX_FONT_BYTES,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.max_entry_bytes = max_entry_bytes
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._size_bytes = 0
        # guards _entries and _size_bytes together
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Font cache miss: %s", key)
                return None
            if self._clock() - entry.timestamp > self.ttl_seconds:
                logger.debug("Font cache entry expired: %s", key)
                self._remove(key)
                return None
            self._entries.move_to_end(key)
            logger.debug("Font cache hit: %s", key)
            return entry.data

    def set(self, key: str, data: bytes) -> bool:
        """Insert data under key; returns False when it can never fit."""
        size = len(data)
        if size > self.max_entry_bytes:
            logger.warning(
                "Font %s exceeds max size (%s > %s bytes), not caching", key, size, self.max_entry_bytes
            )
            return False
        with self._lock:
            if key in self._entries:
                self._remove(key)
            while self._entries and (
                len(self._entries) >= self.max_entries or self._size_bytes + size > self.max_bytes
            ):
                oldest = next(iter(self._entries))
                logger.debug("Evicting font cache entry: %s", oldest)
                self._remove(oldest)
            self._entries[key] = _CacheEntry(data=data, timestamp=self._clock(), size=size)
            self._size_bytes += size
        return True

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._size_bytes -= entry.size

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size_bytes = 0

    def keys(self) -> list:
        with self._lock:
            return list(self._entries.keys())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> FontCacheStats:
        with self._lock:
            return FontCacheStats(
                size=len(self._entries),
                size_bytes=self._size_bytes,
                max_size=self.max_entries,
                max_size_bytes=self.max_bytes,
                max_font_bytes=self.max_entry_bytes,
            )
