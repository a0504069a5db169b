"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Resource change notifications emitted after successful writes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger("finlink.events")

Listener = Callable[[], None]


class ResourceChangeBus:
    """Synchronous fan-out of `<resource>:changed` events to UI listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Subscribe `listener`; returns an unsubscribe callable."""
        self._listeners.setdefault(event, []).append(listener)

        def _unsubscribe() -> None:
            rows = self._listeners.get(event)
            if rows and listener in rows:
                rows.remove(listener)

        return _unsubscribe

    def emit(self, event: str) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener()
            except Exception:
                logger.exception("Listener for %s failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
