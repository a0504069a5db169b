"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/base.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..types import JSONValue


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """One cached decoded response body with expiration metadata."""

    value: JSONValue
    written_at: float
    expires_at: float


@dataclass(frozen=True, slots=True)
class MirroredValue:
    """Value loaded back from a durable mirror with its remaining lifetime."""

    value: JSONValue
    ttl_s: float


class CacheMirror(Protocol):
    """Best-effort durable copy of the in-memory response cache."""

    backend_id: str

    async def load(self, key: str) -> MirroredValue | None: ...

    async def store(self, key: str, value: JSONValue, *, ttl_s: float) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def clear(self) -> None: ...
