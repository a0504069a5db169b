"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/inmemory.py.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ..runtime.contracts import CachePolicy
from ..types import JSONValue
from .base import CacheEntry

logger = logging.getLogger("finlink.cache")


class InMemoryResponseCache:
    """Process-local TTL cache of decoded GET responses keyed by request key."""

    def __init__(
        self,
        policy: CachePolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy or CachePolicy()
        self._clock = clock
        self._rows: dict[str, CacheEntry] = {}

    @property
    def ttl_s(self) -> float:
        return self._policy.ttl_s

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, key: str) -> bool:
        return key in self._rows

    def get(self, key: str) -> tuple[JSONValue, bool]:
        row = self._rows.get(key)
        if row is None:
            return None, False
        if self._clock() >= row.expires_at:
            self._rows.pop(key, None)
            logger.debug("Cache expired: %s", key)
            return None, False
        logger.debug("Cache hit: %s", key)
        return row.value, True

    def put(self, key: str, value: JSONValue, *, ttl_s: float | None = None) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            value=value,
            written_at=now,
            expires_at=now + (self._policy.ttl_s if ttl_s is None else ttl_s),
        )
        self._rows[key] = entry
        logger.debug("Cached: %s", key)
        return entry

    def delete(self, key: str) -> None:
        self._rows.pop(key, None)

    def invalidate_by_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._rows if key.startswith(prefix)]
        for key in doomed:
            del self._rows[key]
        if doomed:
            logger.debug("Invalidated %d cache entries under %s", len(doomed), prefix)
        return len(doomed)

    def sweep(self) -> int:
        """Evict every expired entry; returns the number evicted."""
        now = self._clock()
        expired = [key for key, row in self._rows.items() if now >= row.expires_at]
        for key in expired:
            del self._rows[key]
        return len(expired)

    def clear(self) -> None:
        self._rows.clear()
