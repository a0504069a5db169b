"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/redis.py.
"""

from __future__ import annotations

import json
import logging

from ..types import JSONValue
from .base import CacheMirror, MirroredValue

logger = logging.getLogger("finlink.cache.redis")

_GLOB_SPECIALS = "\\*?[]"


def _escape_glob(value: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIALS else ch for ch in value)


class RedisCacheMirror(CacheMirror):
    """Redis-backed durable mirror so warm reads survive a process restart."""

    backend_id: str = "redis"

    def __init__(self, redis_client, *, prefix: str = "finlink:cache:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def load(self, key: str) -> MirroredValue | None:
        name = self._name(key)
        blob = await self._redis.get(name)
        if blob is None:
            return None
        ttl_ms = await self._redis.pttl(name)
        if ttl_ms is None or ttl_ms <= 0:
            return None
        try:
            row = json.loads(blob)
        except (TypeError, ValueError):
            row = None
        if not isinstance(row, dict) or "value" not in row:
            logger.warning("Discarding undecodable mirror row: %s", name)
            return None
        return MirroredValue(value=row["value"], ttl_s=ttl_ms / 1000.0)

    async def store(self, key: str, value: JSONValue, *, ttl_s: float) -> None:
        payload = json.dumps({"value": value}, ensure_ascii=True)
        await self._redis.psetex(self._name(key), int(max(1.0, ttl_s * 1000)), payload)

    async def delete_prefix(self, prefix: str) -> int:
        pattern = _escape_glob(self._name(prefix)) + "*"
        names = [name async for name in self._redis.scan_iter(match=pattern)]
        if not names:
            return 0
        return int(await self._redis.delete(*names))

    async def clear(self) -> None:
        names = [name async for name in self._redis.scan_iter(match=f"{self._prefix}*")]
        if names:
            await self._redis.delete(*names)
