"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/keys.py.

Canonical request keys used by the response cache and in-flight registry.
"""

from __future__ import annotations

import json
from urllib.parse import urlsplit

from ..types import RequestBody, RequestDescriptor

_AUTH_ROUTES = (
    "/auth/login",
    "/auth/register",
    "/auth/refresh",
    "/auth/logout",
    "/auth/forgot-password",
    "/auth/reset-password",
    "/auth/verify-reset-otp",
)


def djb2(value: str) -> str:
    """Fast non-cryptographic 32-bit hash rendered as hex."""
    h = 5381
    for ch in value:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return format(h, "x")


def body_key(body: RequestBody | None) -> str:
    """Stable textual form of a request body."""
    if body is None or body == b"" or body == "":
        return ""
    if isinstance(body, str):
        return body
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            return f"[bytes:{djb2(body.hex())}]"
    try:
        return json.dumps(body, ensure_ascii=True, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return "[non-json-body]"


def is_cache_eligible(descriptor: RequestDescriptor) -> bool:
    """Only GETs without a skip-cache or no-store directive are cacheable."""
    if descriptor.method != "GET":
        return False
    if descriptor.cache == "no-store":
        return False

    cache_control = (descriptor.header("cache-control") or "").lower()
    if "no-store" in cache_control or "no-cache" in cache_control:
        return False

    skip = (descriptor.header("x-skip-cache") or "").strip().lower()
    if skip in ("1", "true"):
        return False
    return True


def build_request_key(descriptor: RequestDescriptor) -> str:
    """Build deterministic key from method, url, auth digest, cache mode and body."""
    auth = descriptor.header("authorization") or ""
    auth_digest = djb2(auth) if auth else ""
    cache_hint = "cache" if is_cache_eligible(descriptor) else "no-cache"
    body = body_key(descriptor.body)
    body_digest = djb2(body) if body else ""
    return f"{descriptor.method}:{descriptor.url}:{auth_digest}:{cache_hint}:{body_digest}"


def read_key_prefix(url: str) -> str:
    """Key prefix covering every cached GET for `url` and anything below it."""
    return f"GET:{url}"


def is_auth_endpoint(url: str) -> bool:
    """Auth routes never trigger refresh-on-401."""
    path = urlsplit(url).path.lower() or url.lower()
    if path.startswith("/auth"):
        return True
    return any(route in path for route in _AUTH_ROUTES)
