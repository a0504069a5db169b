"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cache/invalidation.py.

Fixed mapping from write endpoints to the cached reads they make stale.
Resources missing from the table are never invalidated.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from ..runtime.keys import read_key_prefix


@dataclass(frozen=True, slots=True)
class InvalidationRule:
    """Writes under `write_prefix` invalidate reads under `read_prefixes`."""

    write_prefix: str
    read_prefixes: tuple[str, ...]
    event: str | None = None

    def segments(self) -> tuple[str, ...]:
        return tuple(part for part in self.write_prefix.split("/") if part)


DEFAULT_RULES: tuple[InvalidationRule, ...] = (
    InvalidationRule(
        "/recurrentes",
        ("/recurrentes", "/dashboard"),
        event="recurrentes:changed",
    ),
    InvalidationRule(
        "/subcuenta",
        ("/subcuenta", "/cuenta/principal", "/dashboard"),
        event="subcuentas:changed",
    ),
    InvalidationRule(
        "/transacciones",
        ("/transacciones", "/cuenta/principal", "/dashboard", "/analytics"),
    ),
    InvalidationRule("/cuenta", ("/cuenta", "/dashboard")),
    InvalidationRule("/conceptos", ("/conceptos",)),
    InvalidationRule("/user/monedas", ("/user/monedas",)),
    InvalidationRule("/plan-config", ("/plan-config",)),
    InvalidationRule("/support-tickets", ("/support-tickets",)),
)


@dataclass(frozen=True, slots=True)
class Invalidation:
    """Cache-key prefixes and change events derived from one write URL."""

    prefixes: tuple[str, ...]
    events: tuple[str, ...]


def _find_segments(path: tuple[str, ...], needle: tuple[str, ...]) -> int:
    """Index where `needle` occurs as whole path segments, or -1."""
    if not needle:
        return -1
    for index in range(len(path) - len(needle) + 1):
        if path[index : index + len(needle)] == needle:
            return index
    return -1


class InvalidationTable:
    """Resolve write URLs into the cache-key prefixes they invalidate."""

    def __init__(self, rules: Iterable[InvalidationRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[InvalidationRule, ...]:
        return self._rules

    def resolve(self, url: str) -> Invalidation:
        parts = urlsplit(url)
        path = tuple(part for part in parts.path.split("/") if part)
        origin = f"{parts.scheme}://{parts.netloc}" if parts.netloc else ""

        prefixes: list[str] = []
        events: list[str] = []
        for rule in self._rules:
            index = _find_segments(path, rule.segments())
            if index < 0:
                continue
            base = "".join(f"/{part}" for part in path[:index])
            for read_prefix in rule.read_prefixes:
                prefix = read_key_prefix(f"{origin}{base}{read_prefix}")
                if prefix not in prefixes:
                    prefixes.append(prefix)
            if rule.event and rule.event not in events:
                events.append(rule.event)
        return Invalidation(prefixes=tuple(prefixes), events=tuple(events))

    def prefixes_for(self, url: str) -> tuple[str, ...]:
        return self.resolve(url).prefixes
