"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

User profile refresh used by the premium-required retry flow.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .contracts import HTTPTransport, KeyValueStore, TokenProvider
from .errors import ProfileRefreshError
from .session import InMemoryKeyValueStore
from .types import RequestDescriptor

logger = logging.getLogger("finlink.profile")

PROFILE_KEY = "userData"
PREMIUM_PLAN = "premium_plan"


class UserProfile(BaseModel):
    """Entitlement-relevant subset of `/user/profile`."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    nombre: str | None = None
    email: str | None = None
    cuenta_id: str | None = Field(default=None, alias="cuentaId")
    rol: str = "usuario"
    plan_type: str | None = Field(default=None, alias="planType")
    is_premium: bool | None = Field(default=None, alias="isPremium")
    graficas_avanzadas: bool | None = Field(default=None, alias="graficasAvanzadas")
    premium_until: str | None = Field(default=None, alias="premiumUntil")
    premium_subscription_status: str | None = Field(
        default=None, alias="premiumSubscriptionStatus"
    )
    premium_subscription_id: str | None = Field(default=None, alias="premiumSubscriptionId")


def can_see_advanced(profile: UserProfile | None) -> bool:
    """Plan type decides first, then the advanced-charts flag, then `isPremium`."""
    if profile is None:
        return False
    if profile.plan_type:
        return profile.plan_type == PREMIUM_PLAN
    if profile.graficas_avanzadas is not None:
        return profile.graficas_avanzadas
    return bool(profile.is_premium)


class ProfileService:
    """Fetch the current profile and keep the stored copy up to date."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: HTTPTransport,
        tokens: TokenProvider,
        store: KeyValueStore | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._tokens = tokens
        self._store: KeyValueStore = store or InMemoryKeyValueStore()

    async def fetch_and_update_profile(self) -> UserProfile:
        """
        GET `/user/profile` and persist it under `userData`.

        Raises:
            ProfileRefreshError: no access token, non-2xx answer or an
                unreadable payload.
        """
        token = await self._tokens.get_access_token()
        if not token:
            raise ProfileRefreshError("No access token available")

        snapshot = await self._transport.send(
            RequestDescriptor.build(
                f"{self._base_url}/user/profile",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
                cache="no-store",
            )
        )
        if not snapshot.ok:
            raise ProfileRefreshError(f"Failed to fetch profile: {snapshot.status}")

        try:
            profile = UserProfile.model_validate_json(snapshot.body)
        except ValidationError as exc:
            raise ProfileRefreshError("Profile response could not be parsed") from exc

        await self._store.set(PROFILE_KEY, profile.model_dump_json(by_alias=True))
        logger.info(
            "Profile updated: plan_type=%s is_premium=%s",
            profile.plan_type,
            profile.is_premium,
        )
        return profile

    async def get_cached_profile(self) -> UserProfile | None:
        raw = await self._store.get(PROFILE_KEY)
        if not raw:
            return None
        try:
            return UserProfile.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored profile is unreadable, ignoring it")
            return None
