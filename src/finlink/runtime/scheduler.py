"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/scheduler.py.

Two independently throttled lanes (reads and writes) sharing one global
dispatch spacer, so mutations never queue behind bulk reads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .contracts import LanePolicy, SpacingPolicy

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

logger = logging.getLogger("finlink.runtime.scheduler")


class DispatchSpacer:
    """Enforce a minimum gap between any two dispatches across lanes."""

    def __init__(self, policy: SpacingPolicy, *, clock: Clock, sleep: Sleep) -> None:
        self._policy = policy
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch_s: float | None = None
        self._lock = asyncio.Lock()

    @property
    def last_dispatch_s(self) -> float | None:
        return self._last_dispatch_s

    async def wait_turn(self) -> None:
        async with self._lock:
            if self._last_dispatch_s is not None:
                remaining = self._policy.min_spacing_s - (self._clock() - self._last_dispatch_s)
                if remaining > 0:
                    logger.debug("Waiting %.3fs for minimum dispatch spacing", remaining)
                    await self._sleep(remaining)
            self._last_dispatch_s = self._clock()

    def reset(self) -> None:
        self._last_dispatch_s = None


class Lane:
    """FIFO lane with a concurrency cap and a per-interval dispatch cap."""

    def __init__(
        self,
        name: str,
        policy: LanePolicy,
        spacer: DispatchSpacer,
        *,
        clock: Clock,
        sleep: Sleep,
    ) -> None:
        self.name = name
        self._policy = policy
        self._spacer = spacer
        self._clock = clock
        self._sleep = sleep
        self._slots = asyncio.Semaphore(policy.concurrency)
        self._admission = asyncio.Lock()
        self._starts: deque[float] = deque()
        self._waiting = 0
        self._running = 0

    @property
    def policy(self) -> LanePolicy:
        return self._policy

    @property
    def size(self) -> int:
        """Tasks waiting for admission."""
        return self._waiting

    @property
    def pending(self) -> int:
        """Tasks currently running."""
        return self._running

    async def _wait_for_interval(self) -> None:
        while True:
            now = self._clock()
            cutoff = now - self._policy.interval_s
            while self._starts and self._starts[0] <= cutoff:
                self._starts.popleft()
            if len(self._starts) < self._policy.interval_cap:
                return
            await self._sleep(self._starts[0] + self._policy.interval_s - now)

    async def submit(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Wait for admission, then run `fn` while holding one concurrency slot."""
        self._waiting += 1
        acquired = False
        try:
            async with self._admission:
                await self._slots.acquire()
                acquired = True
                await self._wait_for_interval()
                await self._spacer.wait_turn()
                self._starts.append(self._clock())
        except BaseException:
            if acquired:
                self._slots.release()
            raise
        finally:
            self._waiting -= 1

        self._running += 1
        try:
            return await fn()
        finally:
            self._running -= 1
            self._slots.release()

    def reset(self) -> None:
        self._starts.clear()


class DualScheduler:
    """Read lane for safe methods, write lane for mutations."""

    def __init__(
        self,
        *,
        read_policy: LanePolicy,
        write_policy: LanePolicy,
        spacing_policy: SpacingPolicy,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.spacer = DispatchSpacer(spacing_policy, clock=clock, sleep=sleep)
        self.read = Lane("read", read_policy, self.spacer, clock=clock, sleep=sleep)
        self.write = Lane("write", write_policy, self.spacer, clock=clock, sleep=sleep)

    def lane_for(self, method: str) -> Lane:
        return self.read if method.upper() in READ_METHODS else self.write

    async def submit(self, method: str, fn: Callable[[], Awaitable[T]]) -> T:
        return await self.lane_for(method).submit(fn)

    def reset(self) -> None:
        self.spacer.reset()
        self.read.reset()
        self.write.reset()
