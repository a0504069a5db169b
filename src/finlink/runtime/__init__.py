"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Request orchestration primitives.
"""

from .auth_refresh import AuthRefreshCoordinator
from .backoff import HTTP_TOO_MANY_REQUESTS, backoff_and_raise, parse_retry_after
from .coalescing import InFlightEntry, InFlightRegistry
from .contracts import (
    CachePolicy,
    LanePolicy,
    PremiumPolicy,
    RateBudgetPolicy,
    SpacingPolicy,
)
from .keys import (
    build_request_key,
    djb2,
    is_auth_endpoint,
    is_cache_eligible,
    read_key_prefix,
)
from .premium import PremiumGate, PremiumRequiredBody, is_premium_required
from .rate_limit import RateBudget
from .scheduler import READ_METHODS, DispatchSpacer, DualScheduler, Lane

__all__ = [
    "AuthRefreshCoordinator",
    "HTTP_TOO_MANY_REQUESTS",
    "backoff_and_raise",
    "parse_retry_after",
    "InFlightEntry",
    "InFlightRegistry",
    "CachePolicy",
    "LanePolicy",
    "PremiumPolicy",
    "RateBudgetPolicy",
    "SpacingPolicy",
    "build_request_key",
    "djb2",
    "is_auth_endpoint",
    "is_cache_eligible",
    "read_key_prefix",
    "PremiumGate",
    "PremiumRequiredBody",
    "is_premium_required",
    "RateBudget",
    "READ_METHODS",
    "DispatchSpacer",
    "DualScheduler",
    "Lane",
]
