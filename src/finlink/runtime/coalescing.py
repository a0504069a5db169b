"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/coalescing.py.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..errors import RequestAbortedError
from ..types import AbortSignal, ResponseSnapshot

logger = logging.getLogger("finlink.runtime.coalescing")

Outcome = ResponseSnapshot | None


def _consume_future_exception(fut: asyncio.Future[Outcome]) -> None:
    """Avoid 'Future exception was never retrieved' for shared futures."""
    if not fut.cancelled():
        fut.exception()


@dataclass(slots=True)
class InFlightEntry:
    """One network call shared by every concurrent caller with the same key."""

    key: str
    future: asyncio.Future[Outcome]
    task: asyncio.Task[None] | None = None
    waiters: int = 0


class InFlightRegistry:
    """Deduplicate identical in-flight requests."""

    def __init__(self) -> None:
        self._entries: dict[str, InFlightEntry] = {}
        self._detached: list[InFlightEntry] = []

    def __len__(self) -> int:
        return len(self._entries) + len(self._detached)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def lookup(self, key: str) -> InFlightEntry | None:
        return self._entries.get(key)

    def join(self, key: str) -> tuple[InFlightEntry, bool]:
        """Return the entry for `key`, creating it when absent."""
        existing = self._entries.get(key)
        if existing is not None:
            return existing, True

        future: asyncio.Future[Outcome] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_future_exception)
        entry = InFlightEntry(key=key, future=future)
        self._entries[key] = entry
        return entry, False

    def resolve(self, entry: InFlightEntry, outcome: Outcome | BaseException) -> None:
        """Settle the shared future of `entry` once; later calls are ignored."""
        if entry.future.done():
            return
        if isinstance(outcome, asyncio.CancelledError):
            entry.future.cancel()
        elif isinstance(outcome, BaseException):
            entry.future.set_exception(outcome)
        else:
            entry.future.set_result(outcome)

    def clear(self, entry: InFlightEntry) -> None:
        """Forget `entry`; a newer call registered under the same key is kept."""
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
        else:
            self._detached = [other for other in self._detached if other is not entry]

    def detach_prefix(self, prefix: str) -> int:
        """
        Stop sharing calls whose key starts with `prefix`.

        Detached calls keep running for the callers already waiting on them;
        later lookups for the same key start a new call.
        """
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            self._detached.append(self._entries.pop(key))
        return len(doomed)

    def cancel_all(self) -> None:
        for entry in [*self._entries.values(), *self._detached]:
            if entry.task is not None and not entry.task.done():
                entry.task.cancel()
            if not entry.future.done():
                entry.future.cancel()
        self._entries.clear()
        self._detached.clear()

    async def wait(self, entry: InFlightEntry, signal: AbortSignal | None = None) -> Outcome:
        """
        Await the shared outcome on behalf of one caller.

        Aborting (signal or task cancellation) detaches only this caller.
        When the last attached caller detaches before settlement, the
        underlying call is cancelled.
        """
        entry.waiters += 1
        settled = False
        try:
            outcome = await self._wait_one(entry, signal)
            settled = True
            return outcome
        finally:
            entry.waiters -= 1
            if not settled and entry.waiters == 0 and not entry.future.done():
                self._abandon(entry)

    async def _wait_one(self, entry: InFlightEntry, signal: AbortSignal | None) -> Outcome:
        if signal is None:
            await asyncio.wait({entry.future})
        else:
            abort_waiter = asyncio.ensure_future(signal.wait())
            try:
                await asyncio.wait(
                    {entry.future, abort_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                abort_waiter.cancel()

        if not entry.future.done():
            raise RequestAbortedError(f"Request aborted: {entry.key}")
        if entry.future.cancelled():
            raise RequestAbortedError(f"Request cancelled: {entry.key}")
        return entry.future.result()

    def _abandon(self, entry: InFlightEntry) -> None:
        logger.debug("All callers detached, cancelling call: %s", entry.key)
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
