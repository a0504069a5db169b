from __future__ import annotations

import asyncio
import inspect
import json

import pytest

from finlink import (
    AbortSignal,
    ApiOrchestrator,
    InMemoryOrchestratorMetrics,
    OrchestratorSettings,
    ProfileRefreshError,
    RequestAbortedError,
    TokenRefreshError,
    TooManyRequestsError,
    UnauthorizedError,
)
from finlink.types import RequestDescriptor, ResponseSnapshot

BASE = "https://api.example.test/api"

FAST = OrchestratorSettings(
    read_concurrency=8,
    read_interval_s=0.0,
    write_concurrency=8,
    write_interval_s=0.0,
    min_spacing_s=0.0,
)


def run_async(coro):
    return asyncio.run(coro)


def json_response(value, *, status: int = 200, headers=()) -> ResponseSnapshot:
    return ResponseSnapshot(
        status=status,
        headers=(("Content-Type", "application/json"), *headers),
        body=json.dumps(value).encode("utf-8"),
    )


def premium_required(message: str | None = None, *, field: str = "code") -> ResponseSnapshot:
    body = {field: "PREMIUM_REQUIRED"}
    if message is not None:
        body["message"] = message
    return json_response(body, status=403)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        if delay > 0:
            self.now += delay
        await asyncio.sleep(0)


class ScriptedTransport:
    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls: list[RequestDescriptor] = []

    async def send(self, request: RequestDescriptor) -> ResponseSnapshot:
        self.calls.append(request)
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def aclose(self) -> None:
        return None


class FakeTokens:
    def __init__(self, *, fail: bool = False) -> None:
        self.access: str | None = "old"
        self.fail = fail
        self.gate: asyncio.Event | None = None
        self.refresh_calls = 0
        self.clear_calls = 0

    async def get_access_token(self) -> str | None:
        return self.access

    async def refresh_tokens(self) -> str:
        self.refresh_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise TokenRefreshError("refresh rejected")
        self.access = "new"
        return "new"

    async def clear_tokens(self) -> None:
        self.clear_calls += 1
        self.access = None


class CountingLogout:
    def __init__(self) -> None:
        self.count = 0

    def on_logout(self, handler):
        return lambda: None

    async def trigger_logout(self) -> None:
        self.count += 1


class FakeProfiles:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def fetch_and_update_profile(self):
        self.calls += 1
        if self.fail:
            raise ProfileRefreshError("profile endpoint down")
        return {"planType": "premium_plan"}


class RecordingPrompter:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def show_upgrade(self, message: str) -> None:
        self.messages.append(message)


def make_orchestrator(transport, *, clock=None, settings=None, **kwargs) -> ApiOrchestrator:
    clock = clock or FakeClock()
    kwargs.setdefault("token_provider", FakeTokens())
    kwargs.setdefault("logout_notifier", CountingLogout())
    return ApiOrchestrator(
        settings,
        transport=transport,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _bearer_new_or_401(request: RequestDescriptor) -> ResponseSnapshot:
    if request.header("Authorization") == "Bearer new":
        return json_response({"url": request.url})
    return json_response({"error": "expired"}, status=401)


# -- 401 and token refresh ---------------------------------------------------


def test_concurrent_401s_share_one_refresh_and_retry_with_new_token():
    tokens = FakeTokens()
    logout = CountingLogout()
    transport = ScriptedTransport(_bearer_new_or_401)
    urls = [f"{BASE}/recurrentes?page={page}" for page in range(5)]

    async def scenario():
        tokens.gate = asyncio.Event()
        api = make_orchestrator(
            transport, settings=FAST, token_provider=tokens, logout_notifier=logout
        )
        tasks = [asyncio.create_task(api.fetch(url)) for url in urls]
        await settle()
        assert tokens.refresh_calls == 1
        tokens.gate.set()
        return await asyncio.gather(*tasks)

    responses = run_async(scenario())
    assert [response.json() for response in responses] == [{"url": url} for url in urls]
    assert tokens.refresh_calls == 1
    assert logout.count == 0
    retried = [call for call in transport.calls if call.header("Authorization") == "Bearer new"]
    assert len(retried) == 5
    assert len(transport.calls) == 10


def test_paced_401s_reuse_the_token_from_an_earlier_refresh():
    tokens = FakeTokens()
    logout = CountingLogout()
    transport = ScriptedTransport(_bearer_new_or_401)
    urls = [f"{BASE}/recurrentes?page={page}" for page in range(5)]

    async def scenario():
        api = make_orchestrator(
            transport,
            settings=OrchestratorSettings(),
            token_provider=tokens,
            logout_notifier=logout,
        )
        return await asyncio.gather(*(api.fetch(url) for url in urls))

    responses = run_async(scenario())
    assert [response.json() for response in responses] == [{"url": url} for url in urls]
    assert tokens.refresh_calls == 1
    assert logout.count == 0
    retried = [call for call in transport.calls if call.header("Authorization") == "Bearer new"]
    assert sorted(call.url for call in retried) == sorted(urls)


def test_refresh_failure_logs_out_once_and_fails_every_waiter():
    tokens = FakeTokens(fail=True)
    logout = CountingLogout()
    metrics = InMemoryOrchestratorMetrics()
    transport = ScriptedTransport(_bearer_new_or_401)

    async def scenario():
        tokens.gate = asyncio.Event()
        api = make_orchestrator(
            transport,
            settings=FAST,
            token_provider=tokens,
            logout_notifier=logout,
            metrics=metrics,
        )
        tasks = [
            asyncio.create_task(api.fetch(f"{BASE}/cuenta/principal?v={i}")) for i in range(5)
        ]
        await settle()
        tokens.gate.set()
        return await asyncio.gather(*tasks, return_exceptions=True)

    results = run_async(scenario())
    assert all(isinstance(result, UnauthorizedError) for result in results)
    assert tokens.refresh_calls == 1
    assert tokens.clear_calls == 1
    assert logout.count == 1
    assert len(transport.calls) == 5
    assert metrics.counters[("token_refresh_total", (("outcome", "failure"),))] == 1


def test_401_from_auth_endpoint_is_not_refreshed():
    tokens = FakeTokens()
    transport = ScriptedTransport(
        lambda request: json_response({"message": "bad credentials"}, status=401)
    )

    async def scenario():
        api = make_orchestrator(transport, settings=FAST, token_provider=tokens)
        with pytest.raises(UnauthorizedError) as excinfo:
            await api.fetch(
                f"{BASE}/auth/login",
                method="POST",
                body={"email": "a@b.c", "password": "x"},
            )
        return excinfo.value

    error = run_async(scenario())
    assert error.response is not None
    assert error.response.status == 401
    assert tokens.refresh_calls == 0
    assert transport.calls[0].header("Authorization") is None


def test_second_401_after_refresh_is_returned_without_another_refresh():
    tokens = FakeTokens()
    transport = ScriptedTransport(lambda request: json_response({}, status=401))

    async def scenario():
        api = make_orchestrator(transport, settings=FAST, token_provider=tokens)
        return await api.fetch(f"{BASE}/dashboard")

    response = run_async(scenario())
    assert response.status == 401
    assert tokens.refresh_calls == 1
    assert len(transport.calls) == 2


# -- premium gate --------------------------------------------------------------


def test_premium_block_refreshes_profile_once_then_prompts():
    profiles = FakeProfiles()
    prompter = RecordingPrompter()
    transport = ScriptedTransport(lambda request: premium_required("Upgrade to see charts"))

    async def scenario():
        api = make_orchestrator(
            transport, settings=FAST, profile_refresher=profiles, upgrade_prompter=prompter
        )
        first = await api.fetch(f"{BASE}/analytics/avanzado")
        second = await api.fetch(f"{BASE}/analytics/avanzado")
        return first, second

    first, second = run_async(scenario())
    assert first is None and second is None
    assert profiles.calls == 2
    assert prompter.messages == ["Upgrade to see charts", "Upgrade to see charts"]
    assert len(transport.calls) == 4


def test_premium_retry_succeeds_after_profile_refresh():
    profiles = FakeProfiles()
    prompter = RecordingPrompter()
    answers = [premium_required(), json_response({"series": [1, 2, 3]})]
    transport = ScriptedTransport(lambda request: answers.pop(0))

    async def scenario():
        api = make_orchestrator(
            transport, settings=FAST, profile_refresher=profiles, upgrade_prompter=prompter
        )
        return await api.fetch(f"{BASE}/analytics/avanzado")

    response = run_async(scenario())
    assert response.json() == {"series": [1, 2, 3]}
    assert profiles.calls == 1
    assert prompter.messages == []


def test_error_field_and_default_message_without_profile_refresher():
    prompter = RecordingPrompter()
    transport = ScriptedTransport(lambda request: premium_required(field="error"))
    metrics = InMemoryOrchestratorMetrics()

    async def scenario():
        api = make_orchestrator(transport, settings=FAST, metrics=metrics)
        api.set_upgrade_prompter(prompter)
        return await api.fetch(f"{BASE}/analytics/avanzado")

    assert run_async(scenario()) is None
    assert prompter.messages == ["This feature requires a premium plan."]
    assert len(transport.calls) == 1
    assert metrics.total("upgrade_prompts_total") == 1


def test_profile_refresh_failure_goes_straight_to_prompt():
    profiles = FakeProfiles(fail=True)
    prompter = RecordingPrompter()
    transport = ScriptedTransport(lambda request: premium_required("Hazte premium"))

    async def scenario():
        api = make_orchestrator(
            transport, settings=FAST, profile_refresher=profiles, upgrade_prompter=prompter
        )
        return await api.fetch(f"{BASE}/analytics/avanzado")

    assert run_async(scenario()) is None
    assert profiles.calls == 1
    assert prompter.messages == ["Hazte premium"]
    assert len(transport.calls) == 1


def test_other_403_responses_pass_through():
    profiles = FakeProfiles()
    prompter = RecordingPrompter()
    transport = ScriptedTransport(
        lambda request: json_response({"code": "FORBIDDEN"}, status=403)
    )

    async def scenario():
        api = make_orchestrator(
            transport, settings=FAST, profile_refresher=profiles, upgrade_prompter=prompter
        )
        return await api.fetch(f"{BASE}/plan-config", method="POST", body={})

    response = run_async(scenario())
    assert response.status == 403
    assert response.json() == {"code": "FORBIDDEN"}
    assert profiles.calls == 0
    assert prompter.messages == []


# -- 429 -------------------------------------------------------------------------


def test_429_waits_retry_after_then_raises_without_retry():
    clock = FakeClock(1000.0)
    metrics = InMemoryOrchestratorMetrics()
    transport = ScriptedTransport(
        lambda request: json_response({}, status=429, headers=(("Retry-After", "3"),))
    )

    async def scenario():
        api = make_orchestrator(transport, clock=clock, metrics=metrics)
        with pytest.raises(TooManyRequestsError) as excinfo:
            await api.fetch(f"{BASE}/dashboard")
        return excinfo.value

    error = run_async(scenario())
    assert error.retry_after_s == 3.0
    assert clock.now >= 1003.0
    assert len(transport.calls) == 1
    assert metrics.total("too_many_requests_total") == 1


def test_429_without_header_uses_default_delay():
    clock = FakeClock(0.0)
    transport = ScriptedTransport(lambda request: json_response({}, status=429))

    async def scenario():
        api = make_orchestrator(transport, clock=clock)
        with pytest.raises(TooManyRequestsError) as excinfo:
            await api.fetch(f"{BASE}/transacciones", method="POST", body={"monto": 1})
        return excinfo.value

    error = run_async(scenario())
    assert error.retry_after_s == 10.0
    assert clock.now >= 10.0


# -- aborts and cancellation -----------------------------------------------------


def test_pre_aborted_signal_never_reaches_the_network():
    tokens = FakeTokens()
    transport = ScriptedTransport(_bearer_new_or_401)
    signal = AbortSignal()
    signal.abort()

    async def scenario():
        api = make_orchestrator(transport, token_provider=tokens)
        with pytest.raises(RequestAbortedError):
            await api.fetch(f"{BASE}/dashboard", signal=signal)
        return api.stats()

    stats = run_async(scenario())
    assert transport.calls == []
    assert tokens.refresh_calls == 0
    assert stats.requests_last_minute == 0


def test_one_aborting_waiter_does_not_affect_the_other():
    gate = asyncio.Event()

    async def handler(request: RequestDescriptor) -> ResponseSnapshot:
        await gate.wait()
        return json_response({"ok": True})

    transport = ScriptedTransport(handler)
    signal = AbortSignal()

    async def scenario():
        api = make_orchestrator(transport)
        aborting = asyncio.create_task(api.fetch(f"{BASE}/dashboard", signal=signal))
        patient = asyncio.create_task(api.fetch(f"{BASE}/dashboard"))
        await settle()
        signal.abort()
        with pytest.raises(RequestAbortedError):
            await aborting
        gate.set()
        return await patient

    response = run_async(scenario())
    assert response.json() == {"ok": True}
    assert len(transport.calls) == 1


def test_last_waiter_abort_cancels_the_underlying_call():
    gate = asyncio.Event()
    cancelled: list[bool] = []
    metrics = InMemoryOrchestratorMetrics()

    async def handler(request: RequestDescriptor) -> ResponseSnapshot:
        try:
            await gate.wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        return json_response({"ok": True})

    transport = ScriptedTransport(handler)
    signal = AbortSignal()

    async def scenario():
        api = make_orchestrator(transport, metrics=metrics)
        task = asyncio.create_task(api.fetch(f"{BASE}/dashboard", signal=signal))
        await settle()
        signal.abort()
        with pytest.raises(RequestAbortedError):
            await task
        await settle()
        return api

    api = run_async(scenario())
    assert cancelled == [True]
    stats = api.stats()
    assert stats.in_flight == 0
    assert stats.read_pending == 0
    assert stats.cache_size == 0
    assert metrics.total("too_many_requests_total") == 0
    assert metrics.total("token_refresh_total") == 0


def test_cancelling_the_caller_task_propagates_cancelled_error():
    gate = asyncio.Event()
    cancelled: list[bool] = []

    async def handler(request: RequestDescriptor) -> ResponseSnapshot:
        try:
            await gate.wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        return json_response({"ok": True})

    transport = ScriptedTransport(handler)

    async def scenario():
        api = make_orchestrator(transport)
        task = asyncio.create_task(api.fetch(f"{BASE}/dashboard"))
        await settle()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await settle()
        return api.stats()

    stats = run_async(scenario())
    assert cancelled == [True]
    assert stats.in_flight == 0


def test_abort_while_queued_skips_dispatch():
    gate = asyncio.Event()

    async def handler(request: RequestDescriptor) -> ResponseSnapshot:
        await gate.wait()
        return json_response({"url": request.url})

    transport = ScriptedTransport(handler)
    signal = AbortSignal()
    one_slot = OrchestratorSettings(read_concurrency=1, read_interval_s=0.0, min_spacing_s=0.0)

    async def scenario():
        api = make_orchestrator(transport, settings=one_slot)
        running = asyncio.create_task(api.fetch(f"{BASE}/dashboard"))
        await settle()
        queued = asyncio.create_task(api.fetch(f"{BASE}/conceptos", signal=signal))
        await settle()
        signal.abort()
        with pytest.raises(RequestAbortedError):
            await queued
        gate.set()
        await running
        await settle()
        return api.stats()

    stats = run_async(scenario())
    assert [call.url for call in transport.calls] == [f"{BASE}/dashboard"]
    assert stats.in_flight == 0
    assert stats.read_queue_size == 0
