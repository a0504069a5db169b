"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/orchestrator.py.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

from ..cache.base import CacheMirror
from ..cache.inmemory import InMemoryResponseCache
from ..cache.invalidation import InvalidationTable
from ..contracts import (
    HTTPTransport,
    LogoutNotifier,
    ProfileRefresher,
    TokenProvider,
    UpgradePrompter,
)
from ..errors import RateLimitExceededError, RequestAbortedError, UnauthorizedError
from ..events import ResourceChangeBus
from ..metrics import NoOpOrchestratorMetrics, OrchestratorMetrics
from ..settings import OrchestratorSettings
from ..types import (
    AbortSignal,
    CacheMode,
    HeadersInput,
    JSONValue,
    RequestBody,
    RequestDescriptor,
    Response,
    ResponseSnapshot,
)
from .auth_refresh import AuthRefreshCoordinator
from .backoff import HTTP_TOO_MANY_REQUESTS, backoff_and_raise
from .coalescing import InFlightEntry, InFlightRegistry
from .keys import build_request_key, is_auth_endpoint, is_cache_eligible
from .premium import PremiumGate
from .rate_limit import RateBudget
from .scheduler import READ_METHODS, DualScheduler, Lane

logger = logging.getLogger("finlink.runtime.orchestrator")

HTTP_UNAUTHORIZED = 401


@dataclass(frozen=True, slots=True)
class OrchestratorStats:
    """Point-in-time view of queues, cache and request budget."""

    read_queue_size: int
    read_pending: int
    write_queue_size: int
    write_pending: int
    cache_size: int
    in_flight: int
    requests_last_minute: int
    max_requests_per_minute: int
    utilization_percent: float


class ApiOrchestrator:
    """
    Client-side request orchestrator sitting between service code and the network.

    One instance is created at process start and shared by every caller. It
    bounds outbound concurrency and rate, collapses identical in-flight
    requests, caches eligible GET responses, coordinates a single token
    refresh across concurrent 401s and runs the premium-required retry flow.

    Example:
        ```python
        async with ApiOrchestrator(
            transport=HttpxTransport(),
            token_provider=session,
            logout_notifier=session,
            profile_refresher=profiles,
        ) as api:
            response = await api.fetch(f"{base_url}/recurrentes")
            if response is not None:
                rows = response.json()
        ```
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        transport: HTTPTransport,
        token_provider: TokenProvider,
        logout_notifier: LogoutNotifier,
        profile_refresher: ProfileRefresher | None = None,
        upgrade_prompter: UpgradePrompter | None = None,
        cache: InMemoryResponseCache | None = None,
        cache_mirror: CacheMirror | None = None,
        invalidation: InvalidationTable | None = None,
        events: ResourceChangeBus | None = None,
        metrics: OrchestratorMetrics | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self._transport = transport
        self._tokens = token_provider
        self._clock = clock
        self._sleep = sleep
        self._metrics: OrchestratorMetrics = metrics or NoOpOrchestratorMetrics()

        self._cache = cache or InMemoryResponseCache(self.settings.cache_policy(), clock=clock)
        self._mirror = cache_mirror
        self._invalidation = invalidation or InvalidationTable()
        self._events = events or ResourceChangeBus()

        self._rate_budget = RateBudget(self.settings.rate_budget_policy(), clock=clock)
        self._registry = InFlightRegistry()
        self._scheduler = DualScheduler(
            read_policy=self.settings.read_lane_policy(),
            write_policy=self.settings.write_lane_policy(),
            spacing_policy=self.settings.spacing_policy(),
            clock=clock,
            sleep=sleep,
        )
        self._refresh = AuthRefreshCoordinator(
            token_provider,
            logout_notifier,
            metrics=self._metrics,
        )
        self._premium = PremiumGate(
            self.settings.premium_policy(),
            profiles=profile_refresher,
            prompter=upgrade_prompter,
            metrics=self._metrics,
        )
        self._maintenance: asyncio.Task[None] | None = None
        self._generation = 0
        self._invalidated_at: dict[str, int] = {}

    @property
    def cache(self) -> InMemoryResponseCache:
        return self._cache

    @property
    def events(self) -> ResourceChangeBus:
        return self._events

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def __aenter__(self) -> ApiOrchestrator:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Start periodic cache and rate-window sweeps."""
        if self._maintenance is None or self._maintenance.done():
            self._maintenance = asyncio.create_task(self._maintain())

    async def aclose(self) -> None:
        """Stop maintenance, cancel outstanding calls and close the transport."""
        if self._maintenance is not None:
            self._maintenance.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance
            self._maintenance = None
        self._registry.cancel_all()
        await self._transport.aclose()

    async def _maintain(self) -> None:
        cache_every = self.settings.cache_sweep_interval_s
        rate_every = self.settings.rate_sweep_interval_s
        next_cache = self._clock() + cache_every
        next_rate = self._clock() + rate_every
        while True:
            delay = min(next_cache, next_rate) - self._clock()
            if delay > 0:
                await self._sleep(delay)
            now = self._clock()
            if now >= next_cache:
                evicted = self._cache.sweep()
                if evicted:
                    logger.debug("Swept %d expired cache entries", evicted)
                next_cache = now + cache_every
            if now >= next_rate:
                self._rate_budget.prune()
                next_rate = now + rate_every

    # =========================================================================
    # Public API
    # =========================================================================

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: HeadersInput = None,
        body: RequestBody | None = None,
        cache: CacheMode = "default",
        signal: AbortSignal | None = None,
    ) -> Response | None:
        """
        Issue one request through the orchestrator.

        Returns a fresh `Response` view, or `None` when the request was
        blocked by the premium gate and the upgrade prompt was already shown.

        Raises:
            RateLimitExceededError: the local request budget is spent.
            UnauthorizedError: the session could not be refreshed.
            TooManyRequestsError: the server answered 429 (after backing off).
            RequestAbortedError: `signal` fired while waiting.
        """
        request = RequestDescriptor.build(
            url,
            method=method,
            headers=headers,
            body=body,
            cache=cache,
            signal=signal,
        )
        return await self.fetch_request(request)

    async def fetch_request(self, request: RequestDescriptor) -> Response | None:
        if request.signal is not None and request.signal.aborted:
            logger.debug("Request aborted before dispatch: %s %s", request.method, request.url)
            raise RequestAbortedError(f"Request aborted: {request.method} {request.url}")

        request = await self._authorize(request)
        key = build_request_key(request)
        cacheable = is_cache_eligible(request)

        if cacheable:
            cached = await self._cached_response(key)
            if cached is not None:
                return cached

        entry = self._registry.lookup(key)
        if entry is not None:
            logger.debug("Joining in-flight request: %s", key)
            self._metrics.incr("dedup_joins_total")
        else:
            if not self._rate_budget.try_admit():
                self._metrics.incr("rate_limited_total")
                raise RateLimitExceededError("Rate limit exceeded. Please wait a moment.")
            entry, _ = self._registry.join(key)
            lane = self._scheduler.lane_for(request.method)
            self._metrics.incr("requests_total", tags={"lane": lane.name})
            logger.debug(
                "Queued %s on %s lane (waiting=%d, running=%d)",
                key,
                lane.name,
                lane.size,
                lane.pending,
            )
            task = asyncio.create_task(
                self._dispatch(lane, entry, request, cacheable, self._generation)
            )
            task.add_done_callback(partial(self._dispatch_done, entry))
            entry.task = task

        try:
            snapshot = await self._registry.wait(entry, request.signal)
        except RequestAbortedError:
            logger.debug("Request aborted: %s", key)
            raise
        return None if snapshot is None else snapshot.view()

    def set_upgrade_prompter(self, prompter: UpgradePrompter | None) -> None:
        """Register the upgrade UI hook; the last registration wins."""
        self._premium.set_upgrade_prompter(prompter)

    def stats(self) -> OrchestratorStats:
        in_window = self._rate_budget.requests_in_window()
        ceiling = self._rate_budget.policy.max_requests
        return OrchestratorStats(
            read_queue_size=self._scheduler.read.size,
            read_pending=self._scheduler.read.pending,
            write_queue_size=self._scheduler.write.size,
            write_pending=self._scheduler.write.pending,
            cache_size=len(self._cache),
            in_flight=len(self._registry),
            requests_last_minute=in_window,
            max_requests_per_minute=ceiling,
            utilization_percent=(in_window / ceiling) * 100 if ceiling else 0.0,
        )

    async def clear_cache(self) -> None:
        """Drop every cached response, including the durable mirror."""
        self._cache.clear()
        if self._mirror is not None:
            try:
                await self._mirror.clear()
            except Exception:
                logger.warning("Cache mirror clear failed", exc_info=True)

    def reset(self) -> None:
        """Clear cache, request budget and retry counters; cancel outstanding calls."""
        logger.info("Resetting orchestrator state")
        self._cache.clear()
        self._registry.cancel_all()
        self._rate_budget.reset()
        self._scheduler.reset()
        self._premium.reset()

    # =========================================================================
    # Read path
    # =========================================================================

    async def _authorize(self, request: RequestDescriptor) -> RequestDescriptor:
        if request.header("authorization") is not None or is_auth_endpoint(request.url):
            return request
        token = await self._current_token()
        if not token:
            return request
        return request.with_header("Authorization", f"Bearer {token}")

    async def _cached_response(self, key: str) -> Response | None:
        value, hit = self._cache.get(key)
        if not hit and self._mirror is not None:
            try:
                mirrored = await self._mirror.load(key)
            except Exception:
                logger.warning("Cache mirror load failed", exc_info=True)
                mirrored = None
            if mirrored is not None:
                self._cache.put(key, mirrored.value, ttl_s=mirrored.ttl_s)
                value, hit = mirrored.value, True
        if not hit:
            return None
        self._metrics.incr("cache_hits_total")
        return ResponseSnapshot.from_json(value).view(from_cache=True)

    # =========================================================================
    # Dispatch path
    # =========================================================================

    async def _dispatch(
        self,
        lane: Lane,
        entry: InFlightEntry,
        request: RequestDescriptor,
        cacheable: bool,
        generation: int,
    ) -> None:
        try:
            outcome = await lane.submit(
                lambda: self._execute(entry.key, request, cacheable, generation)
            )
        except asyncio.CancelledError:
            logger.debug("Request cancelled: %s", entry.key)
            self._registry.resolve(entry, asyncio.CancelledError())
            raise
        except Exception as exc:
            logger.warning("Request failed: %s (%s)", entry.key, exc)
            self._registry.resolve(entry, exc)
        else:
            self._registry.resolve(entry, outcome)
        finally:
            self._registry.clear(entry)

    def _dispatch_done(self, entry: InFlightEntry, task: asyncio.Task[None]) -> None:
        # A task cancelled before it started never runs its own cleanup.
        if task.cancelled():
            self._registry.resolve(entry, asyncio.CancelledError())
            self._registry.clear(entry)

    async def _execute(
        self,
        key: str,
        request: RequestDescriptor,
        cacheable: bool,
        generation: int,
    ) -> ResponseSnapshot | None:
        logger.debug("Dispatching %s", key)
        snapshot = await self._transport.send(request)

        if snapshot.status == HTTP_UNAUTHORIZED:
            request, snapshot = await self._recover_unauthorized(key, request, snapshot)

        if self._premium.is_gated(snapshot):
            retry_request = request
            gated = await self._premium.handle(
                key,
                snapshot,
                lambda: self._transport.send(retry_request),
            )
            if gated is None:
                return None
            snapshot = gated

        if snapshot.status == HTTP_TOO_MANY_REQUESTS:
            self._metrics.incr("too_many_requests_total")
            await backoff_and_raise(
                snapshot,
                default_s=self.settings.default_retry_after_s,
                sleep=self._sleep,
            )

        if snapshot.ok:
            if request.method not in READ_METHODS:
                await self._invalidate_after_write(request.url)
            elif cacheable:
                await self._store(key, snapshot, generation)
        return snapshot

    async def _recover_unauthorized(
        self,
        key: str,
        request: RequestDescriptor,
        snapshot: ResponseSnapshot,
    ) -> tuple[RequestDescriptor, ResponseSnapshot]:
        if is_auth_endpoint(request.url):
            logger.warning("401 from auth endpoint, not refreshing: %s", request.url)
            raise UnauthorizedError("Unauthorized", response=snapshot)

        # A request queued behind a completed refresh still carries the old token.
        current = await self._current_token()
        if current and request.header("authorization") != f"Bearer {current}":
            logger.info("401 with a superseded token, retrying with the current one: %s", key)
            token = current
        else:
            logger.warning("401 received, refreshing session: %s", key)
            token = await self._refresh.refresh()
        retry_request = request.with_header("Authorization", f"Bearer {token}")
        return retry_request, await self._transport.send(retry_request)

    async def _current_token(self) -> str | None:
        try:
            return await self._tokens.get_access_token()
        except Exception:
            logger.debug("Access token lookup failed", exc_info=True)
            return None

    def _invalidated_since(self, key: str, generation: int) -> bool:
        return any(
            at > generation and key.startswith(prefix)
            for prefix, at in self._invalidated_at.items()
        )

    async def _store(self, key: str, snapshot: ResponseSnapshot, generation: int) -> None:
        if self._invalidated_since(key, generation):
            logger.debug("Response not cached, a write invalidated it in flight: %s", key)
            return
        try:
            value: JSONValue = snapshot.json()
        except ValueError as exc:
            logger.warning("Response not cached, body is not JSON: %s (%s)", key, exc)
            return
        self._cache.put(key, value)
        if self._mirror is None:
            return
        try:
            await self._mirror.store(key, value, ttl_s=self._cache.ttl_s)
        except Exception:
            logger.warning("Cache mirror write failed: %s", key, exc_info=True)

    async def _invalidate_after_write(self, url: str) -> None:
        invalidation = self._invalidation.resolve(url)
        self._generation += 1
        for prefix in invalidation.prefixes:
            self._invalidated_at[prefix] = self._generation
            removed = self._cache.invalidate_by_prefix(prefix)
            detached = self._registry.detach_prefix(prefix)
            logger.debug(
                "Write to %s invalidated %d entries and detached %d calls under %s",
                url,
                removed,
                detached,
                prefix,
            )
            if self._mirror is not None:
                try:
                    await self._mirror.delete_prefix(prefix)
                except Exception:
                    logger.warning("Cache mirror invalidation failed: %s", prefix, exc_info=True)
        for event in invalidation.events:
            self._events.emit(event)
