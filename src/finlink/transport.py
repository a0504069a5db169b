"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

httpx-backed fetch primitive.
"""

from __future__ import annotations

import httpx

from .contracts import HTTPTransport
from .types import RequestDescriptor, ResponseSnapshot


class HttpxTransport(HTTPTransport):
    """
    Send descriptors through `httpx.AsyncClient` and buffer the full body.

    TLS, connection pooling and redirects are left to httpx.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_s: float | None = 30.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def send(self, request: RequestDescriptor) -> ResponseSnapshot:
        headers = list(request.headers)
        if (
            request.body is not None
            and not isinstance(request.body, (bytes, str))
            and request.header("content-type") is None
        ):
            headers.append(("Content-Type", "application/json"))

        response = await self._client.request(
            request.method,
            request.url,
            headers=headers,
            content=request.body_bytes(),
        )
        body = await response.aread()
        return ResponseSnapshot(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=tuple(response.headers.multi_items()),
            body=body,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
