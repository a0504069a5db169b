"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

This module defines the request/response types exchanged with the orchestrator.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeAlias

from .errors import BodyConsumedError

JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]

Header: TypeAlias = tuple[str, str]
HeadersInput: TypeAlias = Mapping[str, str] | Iterable[Header] | None
CacheMode = Literal["default", "no-store"]
RequestBody: TypeAlias = bytes | str | JSONValue


def normalize_headers(headers: HeadersInput) -> tuple[Header, ...]:
    """Convert mapping/pair-list headers into an ordered tuple of string pairs."""
    if headers is None:
        return ()
    items = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((str(name), str(value)) for name, value in items)


def find_header(headers: Iterable[Header], name: str) -> str | None:
    """Case-insensitive header lookup returning the first match."""
    lower = name.lower()
    for key, value in headers:
        if key.lower() == lower:
            return value
    return None


class AbortSignal:
    """Caller-owned cancellation signal, analogous to a fetch abort signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True, slots=True)
class RequestDescriptor:
    """Immutable description of one outbound request."""

    url: str
    method: str = "GET"
    headers: tuple[Header, ...] = ()
    body: RequestBody | None = None
    cache: CacheMode = "default"
    signal: AbortSignal | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", normalize_headers(self.headers))

    @classmethod
    def build(
        cls,
        url: str,
        *,
        method: str = "GET",
        headers: HeadersInput = None,
        body: RequestBody | None = None,
        cache: CacheMode = "default",
        signal: AbortSignal | None = None,
    ) -> RequestDescriptor:
        return cls(
            url=url,
            method=method,
            headers=normalize_headers(headers),
            body=body,
            cache=cache,
            signal=signal,
        )

    def header(self, name: str) -> str | None:
        return find_header(self.headers, name)

    def with_header(self, name: str, value: str) -> RequestDescriptor:
        """Return a copy with `name` replaced (case-insensitively) by `value`."""
        lower = name.lower()
        kept = tuple((k, v) for k, v in self.headers if k.lower() != lower)
        return replace(self, headers=(*kept, (name, value)))

    def body_bytes(self) -> bytes | None:
        """Serialize the body the way it is put on the wire."""
        if self.body is None:
            return None
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return json.dumps(self.body, ensure_ascii=False).encode("utf-8")


@dataclass(frozen=True, slots=True)
class ResponseSnapshot:
    """Fully buffered, replayable capture of one HTTP response."""

    status: int
    status_text: str = ""
    headers: tuple[Header, ...] = ()
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        return find_header(self.headers, name)

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def view(self, *, from_cache: bool = False) -> Response:
        """Materialize an independent response view over a copy of the body."""
        return Response(
            status=self.status,
            status_text=self.status_text,
            headers=self.headers,
            content=bytearray(self.body),
            from_cache=from_cache,
        )

    @classmethod
    def from_json(cls, value: JSONValue, *, status: int = 200) -> ResponseSnapshot:
        return cls(
            status=status,
            status_text="OK" if status == 200 else "",
            headers=(("Content-Type", "application/json"),),
            body=json.dumps(value, ensure_ascii=False).encode("utf-8"),
        )


class Response:
    """
    Per-caller response view.

    The body behaves like a single-read stream: `body()`, `text()` and
    `json()` consume it. Views created from the same snapshot are
    independent of each other.
    """

    __slots__ = ("status", "status_text", "headers", "from_cache", "_content", "_consumed")

    def __init__(
        self,
        *,
        status: int,
        status_text: str,
        headers: tuple[Header, ...],
        content: bytearray,
        from_cache: bool = False,
    ) -> None:
        self.status = status
        self.status_text = status_text
        self.headers = headers
        self.from_cache = from_cache
        self._content = content
        self._consumed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body_used(self) -> bool:
        return self._consumed

    def header(self, name: str) -> str | None:
        return find_header(self.headers, name)

    def body(self) -> bytes:
        if self._consumed:
            raise BodyConsumedError("Response body already consumed")
        self._consumed = True
        data = bytes(self._content)
        self._content = bytearray()
        return data

    def text(self) -> str:
        return self.body().decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.text())

    def __repr__(self) -> str:
        return f"Response(status={self.status}, from_cache={self.from_cache})"
