"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Orchestrator settings and explicit config loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .runtime.contracts import (
    CachePolicy,
    LanePolicy,
    PremiumPolicy,
    RateBudgetPolicy,
    SpacingPolicy,
)

READ_LANE_CONCURRENCY = 2
READ_LANE_INTERVAL_S = 2.0
WRITE_LANE_CONCURRENCY = 2
WRITE_LANE_INTERVAL_S = 1.0
MIN_DISPATCH_SPACING_S = 0.5
CACHE_TTL_S = 60.0
RATE_WINDOW_S = 60.0
RATE_MAX_REQUESTS = 20
DEFAULT_RETRY_AFTER_S = 10.0
CACHE_SWEEP_INTERVAL_S = 30.0
RATE_SWEEP_INTERVAL_S = 60.0
PREMIUM_REQUIRED_CODE = "PREMIUM_REQUIRED"
DEFAULT_UPGRADE_MESSAGE = "This feature requires a premium plan."


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    """Explicit settings used by the orchestrator and its runtime modules."""

    read_concurrency: int = READ_LANE_CONCURRENCY
    read_interval_s: float = READ_LANE_INTERVAL_S
    write_concurrency: int = WRITE_LANE_CONCURRENCY
    write_interval_s: float = WRITE_LANE_INTERVAL_S
    min_spacing_s: float = MIN_DISPATCH_SPACING_S

    cache_ttl_s: float = CACHE_TTL_S
    cache_sweep_interval_s: float = CACHE_SWEEP_INTERVAL_S

    rate_window_s: float = RATE_WINDOW_S
    rate_max_requests: int = RATE_MAX_REQUESTS
    rate_sweep_interval_s: float = RATE_SWEEP_INTERVAL_S

    default_retry_after_s: float = DEFAULT_RETRY_AFTER_S

    premium_required_code: str = PREMIUM_REQUIRED_CODE
    default_upgrade_message: str = DEFAULT_UPGRADE_MESSAGE
    premium_retry_budget: int = 1

    @staticmethod
    def from_env() -> "OrchestratorSettings":
        """Load settings from environment variables."""
        return OrchestratorSettings(
            read_concurrency=int(os.getenv("FINLINK_READ_CONCURRENCY", str(READ_LANE_CONCURRENCY))),
            read_interval_s=float(os.getenv("FINLINK_READ_INTERVAL_S", str(READ_LANE_INTERVAL_S))),
            write_concurrency=int(
                os.getenv("FINLINK_WRITE_CONCURRENCY", str(WRITE_LANE_CONCURRENCY))
            ),
            write_interval_s=float(
                os.getenv("FINLINK_WRITE_INTERVAL_S", str(WRITE_LANE_INTERVAL_S))
            ),
            min_spacing_s=float(os.getenv("FINLINK_MIN_SPACING_S", str(MIN_DISPATCH_SPACING_S))),
            cache_ttl_s=float(os.getenv("FINLINK_CACHE_TTL_S", str(CACHE_TTL_S))),
            rate_window_s=float(os.getenv("FINLINK_RATE_WINDOW_S", str(RATE_WINDOW_S))),
            rate_max_requests=int(os.getenv("FINLINK_RATE_MAX_REQUESTS", str(RATE_MAX_REQUESTS))),
            default_retry_after_s=float(
                os.getenv("FINLINK_DEFAULT_RETRY_AFTER_S", str(DEFAULT_RETRY_AFTER_S))
            ),
            premium_required_code=os.getenv("FINLINK_PREMIUM_CODE", PREMIUM_REQUIRED_CODE),
            default_upgrade_message=os.getenv(
                "FINLINK_UPGRADE_MESSAGE", DEFAULT_UPGRADE_MESSAGE
            ),
        )

    def read_lane_policy(self) -> LanePolicy:
        return LanePolicy(concurrency=self.read_concurrency, interval_s=self.read_interval_s)

    def write_lane_policy(self) -> LanePolicy:
        return LanePolicy(concurrency=self.write_concurrency, interval_s=self.write_interval_s)

    def spacing_policy(self) -> SpacingPolicy:
        return SpacingPolicy(min_spacing_s=self.min_spacing_s)

    def rate_budget_policy(self) -> RateBudgetPolicy:
        return RateBudgetPolicy(window_s=self.rate_window_s, max_requests=self.rate_max_requests)

    def cache_policy(self) -> CachePolicy:
        return CachePolicy(ttl_s=self.cache_ttl_s, sweep_interval_s=self.cache_sweep_interval_s)

    def premium_policy(self) -> PremiumPolicy:
        return PremiumPolicy(
            required_code=self.premium_required_code,
            default_message=self.default_upgrade_message,
            retry_budget=self.premium_retry_budget,
        )
