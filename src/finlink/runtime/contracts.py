"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Typed runtime policies for request orchestration.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class LanePolicy:
    """Concurrency and dispatch-rate semantics for one scheduler lane."""

    concurrency: int = 2
    interval_s: float = 2.0
    interval_cap: int = 1


@dataclass(frozen=True, slots=True)
class SpacingPolicy:
    """Global minimum spacing between dispatches on any lane."""

    min_spacing_s: float = 0.5


@dataclass(frozen=True, slots=True)
class RateBudgetPolicy:
    """Sliding window request budget; refusals fail fast."""

    window_s: float = 60.0
    max_requests: int = 20


@dataclass(frozen=True, slots=True)
class CachePolicy:
    """Response cache controls."""

    ttl_s: float = 60.0
    sweep_interval_s: float = 30.0


@dataclass(frozen=True, slots=True)
class PremiumPolicy:
    """Premium gate detection and retry budget."""

    required_code: str = "PREMIUM_REQUIRED"
    default_message: str = "This feature requires a premium plan."
    retry_budget: int = 1
