"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/auth_refresh.py.
"""

from __future__ import annotations

import asyncio
import logging

from ..contracts import LogoutNotifier, TokenProvider
from ..errors import TokenRefreshError, UnauthorizedError
from ..metrics import NoOpOrchestratorMetrics, OrchestratorMetrics

logger = logging.getLogger("finlink.runtime.auth_refresh")


class AuthRefreshCoordinator:
    """
    Single-flight token refresh.

    Only one refresh call exists at a time; every concurrent 401 handler
    awaits the same task. On failure the session is expired (tokens cleared,
    logout fired) once, then every waiter receives `UnauthorizedError`.
    """

    def __init__(
        self,
        tokens: TokenProvider,
        logout: LogoutNotifier,
        *,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._tokens = tokens
        self._logout = logout
        self._metrics: OrchestratorMetrics = metrics or NoOpOrchestratorMetrics()
        self._task: asyncio.Task[str] | None = None

    @property
    def refreshing(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> str:
        """Return a fresh access token, joining any refresh already running."""
        task = self._task
        if task is None or task.done():
            task = asyncio.create_task(self._run())
            task.add_done_callback(self._settled)
            self._task = task
        else:
            logger.debug("Joining token refresh already in progress")
        return await asyncio.shield(task)

    def _settled(self, task: asyncio.Task[str]) -> None:
        if self._task is task:
            self._task = None
        if not task.cancelled():
            task.exception()

    async def _run(self) -> str:
        logger.info("Refreshing access token")
        try:
            token = await self._tokens.refresh_tokens()
            if not token:
                raise TokenRefreshError("Refresh returned no access token")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Token refresh failed: %s", exc)
            self._metrics.incr("token_refresh_total", tags={"outcome": "failure"})
            await self._expire_session()
            raise UnauthorizedError("Session expired: token refresh failed") from exc

        self._metrics.incr("token_refresh_total", tags={"outcome": "success"})
        logger.info("Token refresh succeeded")
        return token

    async def _expire_session(self) -> None:
        try:
            await self._tokens.clear_tokens()
        finally:
            await self._logout.trigger_logout()
