"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/factory.py.
"""

from __future__ import annotations

import os

from .base import CacheMirror


def _env_first(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _redis_url_from_env() -> str:
    url = _env_first("FINLINK_CACHE_REDIS_URL", "FINLINK_REDIS_URL")
    if url:
        return url
    host = _env_first("FINLINK_REDIS_HOST", default="localhost") or "localhost"
    port = _env_first("FINLINK_REDIS_PORT", default="6379") or "6379"
    db = _env_first("FINLINK_REDIS_DB", default="0") or "0"
    password = _env_first("FINLINK_REDIS_PASSWORD", default="") or ""
    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"


def create_cache_mirror_from_env(*, redis_client=None) -> CacheMirror | None:
    """
    Build the durable cache mirror selected by `FINLINK_CACHE_MIRROR`.

    `none` (default) disables mirroring; `redis` builds a `RedisCacheMirror`
    from `redis_client` or from the `FINLINK_*REDIS*` variables.
    """
    backend = (_env_first("FINLINK_CACHE_MIRROR", default="none") or "none").strip().lower()

    if backend in ("", "none", "off", "memory"):
        return None

    if backend == "redis":
        from .redis import RedisCacheMirror

        prefix = _env_first("FINLINK_CACHE_REDIS_PREFIX", default="finlink:cache:")
        client = redis_client
        if client is None:
            try:
                import redis.asyncio as redis
            except ModuleNotFoundError as exc:  # pragma: no cover
                raise RuntimeError(
                    "Redis cache mirror requires `redis` to be installed."
                ) from exc
            client = redis.Redis.from_url(_redis_url_from_env())
        return RedisCacheMirror(client, prefix=prefix or "finlink:cache:")

    raise ValueError(f"Unknown FINLINK_CACHE_MIRROR: {backend}")
