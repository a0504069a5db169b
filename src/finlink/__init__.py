"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Client-side API request orchestrator.
"""

from .errors import (
    BodyConsumedError,
    FinlinkError,
    PremiumRequiredError,
    ProfileRefreshError,
    RateLimitExceededError,
    RequestAbortedError,
    TokenRefreshError,
    TooManyRequestsError,
    UnauthorizedError,
)
from .events import ResourceChangeBus
from .metrics import (
    InMemoryOrchestratorMetrics,
    NoOpOrchestratorMetrics,
    OrchestratorMetrics,
    PrometheusOrchestratorMetrics,
)
from .profile import ProfileService, UserProfile, can_see_advanced
from .runtime.orchestrator import ApiOrchestrator, OrchestratorStats
from .session import InMemoryKeyValueStore, TokenSession
from .settings import OrchestratorSettings
from .transport import HttpxTransport
from .types import AbortSignal, RequestDescriptor, Response, ResponseSnapshot

__all__ = [
    "ApiOrchestrator",
    "OrchestratorStats",
    "OrchestratorSettings",
    "AbortSignal",
    "RequestDescriptor",
    "Response",
    "ResponseSnapshot",
    "HttpxTransport",
    "TokenSession",
    "InMemoryKeyValueStore",
    "ProfileService",
    "UserProfile",
    "can_see_advanced",
    "ResourceChangeBus",
    "OrchestratorMetrics",
    "NoOpOrchestratorMetrics",
    "InMemoryOrchestratorMetrics",
    "PrometheusOrchestratorMetrics",
    "FinlinkError",
    "RateLimitExceededError",
    "UnauthorizedError",
    "TooManyRequestsError",
    "RequestAbortedError",
    "PremiumRequiredError",
    "TokenRefreshError",
    "ProfileRefreshError",
    "BodyConsumedError",
]
