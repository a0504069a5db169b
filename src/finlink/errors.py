"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Error taxonomy raised by the request orchestrator and its collaborators.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import ResponseSnapshot


class FinlinkError(RuntimeError):
    """Base class for all orchestrator errors."""


class RateLimitExceededError(FinlinkError):
    """Raised locally when the trailing-window request budget is spent."""


class UnauthorizedError(FinlinkError):
    """Raised when a 401 cannot be recovered by a token refresh."""

    def __init__(self, message: str, *, response: ResponseSnapshot | None = None) -> None:
        super().__init__(message)
        self.response = response


class TooManyRequestsError(FinlinkError):
    """Raised after the mandatory backoff that follows a 429 response."""

    def __init__(self, message: str, *, retry_after_s: float) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class RequestAbortedError(FinlinkError):
    """Raised when the caller's abort signal fires while waiting."""


class PremiumRequiredError(FinlinkError):
    """Internal marker for premium-gated responses; never raised from `fetch`."""

    def __init__(self, message: str, *, response: ResponseSnapshot | None = None) -> None:
        super().__init__(message)
        self.response = response


class TokenRefreshError(FinlinkError):
    """Raised by token providers when the refresh call fails."""


class ProfileRefreshError(FinlinkError):
    """Raised by profile refreshers when entitlement state cannot be fetched."""


class BodyConsumedError(FinlinkError):
    """Raised when a response view body is read twice."""
