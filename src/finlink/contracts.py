"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Protocols for the collaborators the orchestrator consumes but does not own.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from .types import RequestDescriptor, ResponseSnapshot

LogoutHandler = Callable[[], Awaitable[None] | None]


@runtime_checkable
class HTTPTransport(Protocol):
    """Fetch primitive: sends one request and returns a buffered snapshot."""

    async def send(self, request: RequestDescriptor) -> ResponseSnapshot: ...

    async def aclose(self) -> None: ...


class TokenProvider(Protocol):
    """Access/refresh token source."""

    async def get_access_token(self) -> str | None: ...

    async def refresh_tokens(self) -> str: ...

    async def clear_tokens(self) -> None: ...


class LogoutNotifier(Protocol):
    """Process-wide logout observer registry."""

    def on_logout(self, handler: LogoutHandler) -> Callable[[], None]: ...

    async def trigger_logout(self) -> None: ...


class ProfileRefresher(Protocol):
    """Re-fetches the user's entitlement state; raises on failure."""

    async def fetch_and_update_profile(self) -> object: ...


class UpgradePrompter(Protocol):
    """UI hook shown when a premium-gated request stays blocked."""

    def show_upgrade(self, message: str) -> Awaitable[None] | None: ...


class KeyValueStore(Protocol):
    """Small async key/value storage used for tokens and profile snapshots."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...
