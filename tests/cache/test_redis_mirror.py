from __future__ import annotations

import asyncio
import fnmatch
import json

import pytest

from finlink.cache import RedisCacheMirror, create_cache_mirror_from_env


def run_async(coro):
    return asyncio.run(coro)


class FakeAsyncRedis:
    """Just enough of `redis.asyncio.Redis` for the mirror."""

    def __init__(self) -> None:
        self.rows: dict[str, str] = {}
        self.ttls_ms: dict[str, int] = {}

    async def get(self, name: str):
        return self.rows.get(name)

    async def pttl(self, name: str) -> int:
        if name not in self.rows:
            return -2
        return self.ttls_ms.get(name, -1)

    async def psetex(self, name: str, ttl_ms: int, value: str) -> None:
        self.rows[name] = value
        self.ttls_ms[name] = ttl_ms

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.rows.pop(name, None) is not None:
                removed += 1
            self.ttls_ms.pop(name, None)
        return removed

    async def scan_iter(self, match: str):
        for name in list(self.rows):
            if fnmatch.fnmatchcase(name, match.replace("\\", "")):
                yield name


def test_store_then_load_returns_value_and_remaining_ttl():
    client = FakeAsyncRedis()
    mirror = RedisCacheMirror(client)

    async def scenario():
        await mirror.store("GET:/dashboard::cache:", {"total": 3}, ttl_s=60.0)
        return await mirror.load("GET:/dashboard::cache:")

    loaded = run_async(scenario())
    assert loaded is not None
    assert loaded.value == {"total": 3}
    assert loaded.ttl_s == 60.0
    assert client.ttls_ms["finlink:cache:GET:/dashboard::cache:"] == 60_000


def test_load_ignores_missing_expired_and_corrupt_rows():
    client = FakeAsyncRedis()
    mirror = RedisCacheMirror(client)
    client.rows["finlink:cache:corrupt"] = "{not json"
    client.ttls_ms["finlink:cache:corrupt"] = 1000
    client.rows["finlink:cache:no-ttl"] = json.dumps({"value": 1})

    async def scenario():
        return (
            await mirror.load("missing"),
            await mirror.load("corrupt"),
            await mirror.load("no-ttl"),
        )

    assert run_async(scenario()) == (None, None, None)


def test_delete_prefix_removes_only_matching_rows():
    client = FakeAsyncRedis()
    mirror = RedisCacheMirror(client, prefix="t:")

    async def scenario():
        await mirror.store("GET:https://x.test/recurrentes:a", [1], ttl_s=10)
        await mirror.store("GET:https://x.test/recurrentes/2:a", [2], ttl_s=10)
        await mirror.store("GET:https://x.test/conceptos:a", [3], ttl_s=10)
        removed = await mirror.delete_prefix("GET:https://x.test/recurrentes")
        return removed

    assert run_async(scenario()) == 2
    assert list(client.rows) == ["t:GET:https://x.test/conceptos:a"]


def test_clear_removes_every_mirrored_row():
    client = FakeAsyncRedis()
    mirror = RedisCacheMirror(client)
    client.rows["other:key"] = "x"

    async def scenario():
        await mirror.store("a", 1, ttl_s=10)
        await mirror.store("b", 2, ttl_s=10)
        await mirror.clear()

    run_async(scenario())
    assert list(client.rows) == ["other:key"]


def test_factory_defaults_to_no_mirror(monkeypatch):
    monkeypatch.delenv("FINLINK_CACHE_MIRROR", raising=False)
    assert create_cache_mirror_from_env() is None


def test_factory_builds_redis_mirror_with_injected_client(monkeypatch):
    monkeypatch.setenv("FINLINK_CACHE_MIRROR", "redis")
    monkeypatch.setenv("FINLINK_CACHE_REDIS_PREFIX", "app:")
    client = FakeAsyncRedis()
    mirror = create_cache_mirror_from_env(redis_client=client)
    assert isinstance(mirror, RedisCacheMirror)

    run_async(mirror.store("k", 1, ttl_s=5))
    assert "app:k" in client.rows


def test_factory_rejects_unknown_backend(monkeypatch):
    monkeypatch.setenv("FINLINK_CACHE_MIRROR", "memcached")
    with pytest.raises(ValueError):
        create_cache_mirror_from_env()
