"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/premium.py.

Handling for 403 responses that signal a missing premium entitlement.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict, ValidationError

from ..contracts import ProfileRefresher, UpgradePrompter
from ..errors import PremiumRequiredError
from ..metrics import NoOpOrchestratorMetrics, OrchestratorMetrics
from ..types import ResponseSnapshot
from .contracts import PremiumPolicy

logger = logging.getLogger("finlink.runtime.premium")

HTTP_FORBIDDEN = 403


class PremiumRequiredBody(BaseModel):
    """Subset of the 403 error payload the gate inspects."""

    model_config = ConfigDict(extra="ignore")

    code: str | None = None
    error: str | None = None
    message: str | None = None


def parse_premium_body(snapshot: ResponseSnapshot) -> PremiumRequiredBody | None:
    if not snapshot.body:
        return None
    try:
        return PremiumRequiredBody.model_validate_json(snapshot.body)
    except ValidationError:
        return None


def is_premium_required(snapshot: ResponseSnapshot, code: str) -> bool:
    """Only 403s whose body carries the premium code are gated."""
    if snapshot.status != HTTP_FORBIDDEN:
        return False
    body = parse_premium_body(snapshot)
    if body is None:
        return False
    expected = code.upper()
    return any(
        isinstance(value, str) and value.upper() == expected
        for value in (body.code, body.error)
    )


class PremiumGate:
    """
    One silent profile-refresh-and-retry per request key, then upsell.

    `handle` returns the retried snapshot when the entitlement refresh
    unblocked the request, or `None` once the upgrade prompt was shown.
    """

    def __init__(
        self,
        policy: PremiumPolicy,
        *,
        profiles: ProfileRefresher | None = None,
        prompter: UpgradePrompter | None = None,
        metrics: OrchestratorMetrics | None = None,
    ) -> None:
        self._policy = policy
        self._profiles = profiles
        self._prompter = prompter
        self._metrics: OrchestratorMetrics = metrics or NoOpOrchestratorMetrics()
        self._attempts: dict[str, int] = {}

    def set_upgrade_prompter(self, prompter: UpgradePrompter | None) -> None:
        """Register the upgrade UI hook; the last registration wins."""
        self._prompter = prompter

    def is_gated(self, snapshot: ResponseSnapshot) -> bool:
        return is_premium_required(snapshot, self._policy.required_code)

    def attempts(self, key: str) -> int:
        return self._attempts.get(key, 0)

    def reset(self) -> None:
        self._attempts.clear()

    async def handle(
        self,
        key: str,
        snapshot: ResponseSnapshot,
        retry: Callable[[], Awaitable[ResponseSnapshot]],
    ) -> ResponseSnapshot | None:
        attempts = self._attempts.get(key, 0)
        profiles = self._profiles
        if attempts >= self._policy.retry_budget or profiles is None:
            self._attempts.pop(key, None)
            return await self._block(snapshot)

        self._attempts[key] = attempts + 1
        try:
            return await self._refresh_and_retry(key, profiles, retry)
        except PremiumRequiredError as exc:
            logger.warning("%s: %s", exc, key)
            return await self._block(exc.response or snapshot)
        finally:
            self._attempts.pop(key, None)

    async def _refresh_and_retry(
        self,
        key: str,
        profiles: ProfileRefresher,
        retry: Callable[[], Awaitable[ResponseSnapshot]],
    ) -> ResponseSnapshot:
        logger.info("Premium required, refreshing profile before retry: %s", key)
        try:
            await profiles.fetch_and_update_profile()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise PremiumRequiredError("Profile refresh failed") from exc

        retried = await retry()
        if self.is_gated(retried):
            raise PremiumRequiredError("Still premium-gated after profile refresh", response=retried)
        return retried

    async def _block(self, snapshot: ResponseSnapshot) -> None:
        body = parse_premium_body(snapshot)
        message = (body.message if body is not None else None) or self._policy.default_message
        self._metrics.incr("upgrade_prompts_total")

        prompter = self._prompter
        if prompter is None:
            logger.warning("Premium required but no upgrade prompter is registered")
            return None
        try:
            result = prompter.show_upgrade(message)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Upgrade prompter failed")
        return None
