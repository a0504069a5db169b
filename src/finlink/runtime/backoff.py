"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/backoff.py.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import NoReturn

from ..errors import TooManyRequestsError
from ..types import ResponseSnapshot

logger = logging.getLogger("finlink.runtime.backoff")

HTTP_TOO_MANY_REQUESTS = 429


def parse_retry_after(
    value: str | None,
    *,
    default_s: float = 10.0,
    now: datetime | None = None,
) -> float:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not value:
        return default_s
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if math.isfinite(seconds) and seconds > 0:
            return seconds
        return default_s

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default_s
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - (now or datetime.now(UTC))).total_seconds()
    return delta if delta > 0 else default_s


async def backoff_and_raise(
    snapshot: ResponseSnapshot,
    *,
    default_s: float,
    sleep: Callable[[float], Awaitable[None]],
) -> NoReturn:
    """Throttle the next attempt, then fail this one; never auto-retries."""
    delay = parse_retry_after(snapshot.header("retry-after"), default_s=default_s)
    logger.warning("429 Too Many Requests, backing off %.1fs", delay)
    await sleep(delay)
    raise TooManyRequestsError(
        "Too many requests. Please wait a moment before retrying.",
        retry_after_s=delay,
    )
