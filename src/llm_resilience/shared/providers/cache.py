"""Bounded TTL cache backing the degradation chain."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Callable

import structlog

from llm_resilience.shared.providers.types import MISSING, CacheEntry

logger = structlog.get_logger(__name__)


class TTLCache:
    """In-memory key/value store with per-entry TTL (seconds).

    Expiry is lazy: an entry is dropped when it is read after
    ``stored_at + ttl``.  When ``max_entries`` is reached the oldest stored
    entry is evicted first.
    """

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        entry = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("cache_evicted", key=evicted)

    def get(self, key: str, default: Any = MISSING) -> Any:
        """Value for ``key``, or ``default`` when missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if entry.is_expired(now):
                del self._entries[key]
                return default
            return entry.value

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
