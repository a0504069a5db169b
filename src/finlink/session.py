"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Token storage, refresh and logout notification for one signed-in user.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import time
import uuid
from collections.abc import Awaitable, Callable

import jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .contracts import HTTPTransport, KeyValueStore, LogoutHandler
from .errors import TokenRefreshError
from .types import RequestDescriptor

logger = logging.getLogger("finlink.session")

ACCESS_TOKEN_KEY = "authToken"
REFRESH_TOKEN_KEY = "refreshToken"
DEVICE_ID_KEY = "deviceId"

REFRESH_LEAD_S = 60.0
MIN_REFRESH_DELAY_S = 5.0


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local key/value store for development and tests."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._rows: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._rows.get(key)

    async def set(self, key: str, value: str) -> None:
        self._rows[key] = value

    async def delete(self, key: str) -> None:
        self._rows.pop(key, None)


class TokenPair(BaseModel):
    """Refresh endpoint payload; the access token may arrive as `token`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_token: str | None = Field(default=None, alias="accessToken")
    token: str | None = None
    refresh_token: str | None = Field(default=None, alias="refreshToken")

    @property
    def access(self) -> str | None:
        return self.access_token or self.token or None


def seconds_until_expiry(token: str, *, now: float | None = None) -> float | None:
    """Seconds until the JWT `exp` claim, or None when it cannot be read."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    current = time.time() if now is None else now
    return float(exp) - current


class TokenSession:
    """
    Access/refresh tokens for the signed-in user plus logout fan-out.

    The access token is kept in memory after the first read. Refresh calls
    go straight to the transport so they never pass through the request
    orchestrator that is waiting on them.
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: HTTPTransport,
        store: KeyValueStore | None = None,
        auto_refresh: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._store: KeyValueStore = store or InMemoryKeyValueStore()
        self._auto_refresh = auto_refresh
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._access_token: str | None = None
        self._logout_handlers: list[LogoutHandler] = []
        self._refresh_timer: asyncio.Task[None] | None = None

    # -- LogoutNotifier -------------------------------------------------------

    def on_logout(self, handler: LogoutHandler) -> Callable[[], None]:
        self._logout_handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._logout_handlers:
                self._logout_handlers.remove(handler)

        return _unsubscribe

    async def trigger_logout(self) -> None:
        """Clear every token, then notify logout handlers."""
        await self.clear_tokens()
        for handler in list(self._logout_handlers):
            try:
                result = handler()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Logout handler failed")

    # -- TokenProvider --------------------------------------------------------

    async def get_access_token(self) -> str | None:
        if self._access_token:
            return self._access_token
        stored = await self._store.get(ACCESS_TOKEN_KEY)
        if stored:
            self._access_token = stored
        return stored

    async def set_access_token(self, token: str) -> None:
        self._access_token = token
        await self._store.set(ACCESS_TOKEN_KEY, token)
        if self._auto_refresh:
            self.schedule_proactive_refresh(token)

    async def get_refresh_token(self) -> str | None:
        return await self._store.get(REFRESH_TOKEN_KEY)

    async def set_refresh_token(self, token: str) -> None:
        await self._store.set(REFRESH_TOKEN_KEY, token)

    async def clear_tokens(self) -> None:
        self._access_token = None
        self._cancel_refresh_timer()
        await self._store.delete(ACCESS_TOKEN_KEY)
        await self._store.delete(REFRESH_TOKEN_KEY)

    async def device_id(self) -> str:
        """Installation id sent with refresh calls; created once and persisted."""
        existing = await self._store.get(DEVICE_ID_KEY)
        if existing:
            return existing
        created = str(uuid.uuid4())
        await self._store.set(DEVICE_ID_KEY, created)
        return created

    async def refresh_tokens(self) -> str:
        """
        Exchange the stored refresh token for a new access token.

        Raises:
            TokenRefreshError: no refresh token, non-2xx answer, or a payload
                without an access token. Logout is left to the caller.
        """
        refresh_token = await self.get_refresh_token()
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        request = RequestDescriptor.build(
            f"{self._base_url}/auth/refresh",
            method="POST",
            headers={"Content-Type": "application/json"},
            body={"refreshToken": refresh_token, "deviceId": await self.device_id()},
            cache="no-store",
        )
        snapshot = await self._transport.send(request)
        if not snapshot.ok:
            raise TokenRefreshError(f"Refresh failed: {snapshot.status}")

        try:
            pair = TokenPair.model_validate_json(snapshot.body)
        except ValidationError as exc:
            raise TokenRefreshError("Refresh response is not valid JSON") from exc
        if not pair.access:
            raise TokenRefreshError("Refresh response missing access token")

        await self.set_access_token(pair.access)
        if pair.refresh_token:
            await self.set_refresh_token(pair.refresh_token)
        logger.info("Access token refreshed")
        return pair.access

    # -- proactive refresh ----------------------------------------------------

    def schedule_proactive_refresh(self, token: str) -> float | None:
        """
        Refresh `REFRESH_LEAD_S` before `token` expires (never sooner than
        `MIN_REFRESH_DELAY_S`). Returns the chosen delay, or None when the
        token carries no usable expiry.
        """
        self._cancel_refresh_timer()
        remaining = seconds_until_expiry(token, now=self._wall_clock())
        if remaining is None or remaining <= 0:
            return None
        delay = max(MIN_REFRESH_DELAY_S, remaining - REFRESH_LEAD_S)
        self._refresh_timer = asyncio.create_task(self._refresh_later(delay))
        return delay

    async def _refresh_later(self, delay: float) -> None:
        await self._sleep(delay)
        self._refresh_timer = None
        try:
            await self.refresh_tokens()
        except Exception as exc:
            logger.warning("Proactive refresh failed, logging out: %s", exc)
            await self.trigger_logout()

    def _cancel_refresh_timer(self) -> None:
        timer, self._refresh_timer = self._refresh_timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def aclose(self) -> None:
        timer, self._refresh_timer = self._refresh_timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
