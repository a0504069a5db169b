"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/rate_limit.py.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable

from .contracts import RateBudgetPolicy

logger = logging.getLogger("finlink.runtime.rate_limit")


class RateBudget:
    """
    Sliding window admission counter.

    Refusal is immediate: callers are expected to fail without queueing.
    The window is only touched from the event loop thread, between awaits.
    """

    def __init__(
        self,
        policy: RateBudgetPolicy,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._policy = policy
        self._clock = clock
        self._window: deque[float] = deque()

    @property
    def policy(self) -> RateBudgetPolicy:
        return self._policy

    def prune(self) -> None:
        cutoff = self._clock() - self._policy.window_s
        while self._window and self._window[0] <= cutoff:
            self._window.popleft()

    def try_admit(self) -> bool:
        self.prune()
        if len(self._window) >= self._policy.max_requests:
            logger.warning(
                "Request budget exhausted: %d requests in the last %.0fs (max %d)",
                len(self._window),
                self._policy.window_s,
                self._policy.max_requests,
            )
            return False
        self._window.append(self._clock())
        return True

    def requests_in_window(self) -> int:
        self.prune()
        return len(self._window)

    def reset(self) -> None:
        self._window.clear()
