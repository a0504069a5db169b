"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Metrics adapters for orchestrator observability.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol


class OrchestratorMetrics(Protocol):
    """Minimal metrics interface for orchestrator instrumentation."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        """Increment a counter metric."""


class NoOpOrchestratorMetrics:
    """Default metrics sink when no metrics backend is provided."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        return None


class InMemoryOrchestratorMetrics:
    """Counter sink keyed by name and sorted tags; handy in tests."""

    def __init__(self) -> None:
        self.counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        key = (name, tuple(sorted((tags or {}).items())))
        self.counters[key] = self.counters.get(key, 0) + value

    def total(self, name: str) -> int:
        return sum(count for (metric, _), count in self.counters.items() if metric == name)


# Counters the orchestrator emits, with their help text and label names.
ORCHESTRATOR_COUNTERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "requests_total": ("Requests dispatched to the network, by scheduler lane.", ("lane",)),
    "cache_hits_total": ("Requests answered from the response cache.", ()),
    "dedup_joins_total": ("Requests that joined an identical in-flight call.", ()),
    "rate_limited_total": ("Requests refused by the local request budget.", ()),
    "token_refresh_total": ("Session refresh attempts, by outcome.", ("outcome",)),
    "upgrade_prompts_total": ("Upgrade prompts shown for premium-only responses.", ()),
    "too_many_requests_total": ("429 responses received from the server.", ()),
}


class PrometheusOrchestratorMetrics(OrchestratorMetrics):
    """
    Publishes orchestrator counters to a Prometheus registry.

    Known counters are registered up front so they appear at zero before the
    first request. Unknown names get a counter on first use, labelled by the
    tag keys of that first call.

    Requires the `prometheus` extra (`prometheus_client`).
    """

    def __init__(self, *, namespace: str = "finlink", registry=None) -> None:
        try:
            import prometheus_client
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusOrchestratorMetrics requires `prometheus_client`; "
                "install finlink[prometheus]."
            ) from exc

        self._counter_type = prometheus_client.Counter
        self._namespace = namespace
        self._registry = registry if registry is not None else prometheus_client.REGISTRY
        self._by_name: dict[str, tuple[Any, tuple[str, ...]]] = {}
        for name, (help_text, labels) in ORCHESTRATOR_COUNTERS.items():
            self._register(name, help_text, labels)

    def _register(self, name: str, help_text: str, labels: tuple[str, ...]):
        counter = self._counter_type(
            name,
            help_text,
            labelnames=labels,
            namespace=self._namespace,
            registry=self._registry,
        )
        self._by_name[name] = (counter, labels)
        return counter, labels

    def incr(self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None) -> None:
        tags = tags or {}
        known = self._by_name.get(name)
        if known is None:
            known = self._register(name, f"finlink counter {name}", tuple(sorted(tags)))
        counter, labels = known
        if not labels:
            counter.inc(value)
            return
        counter.labels(**{label: str(tags.get(label, "")) for label in labels}).inc(value)
