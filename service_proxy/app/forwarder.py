"""
Relay of authenticated requests to the upstream service.
"""

from typing import List, Optional, Tuple

import httpx
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from shared.errors import BadGatewayError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .config import ProxyTarget
from .pipeline import ProxyRequest

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def filter_headers(headers: httpx.Headers, *, drop_host: bool = False) -> List[Tuple[str, str]]:
    """Copy ``headers`` without hop-by-hop entries (and ``Host`` on the way out)."""
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in HOP_BY_HOP_HEADERS and not (drop_host and name.lower() == "host")
    ]


class Forwarder:
    """Sends a ``ProxyRequest`` upstream and streams the answer back.

    Byte-level relaying is left to httpx; the forwarder only decides the
    target URL and which headers cross the hop.
    """

    def __init__(
        self,
        target: ProxyTarget,
        *,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.target = target
        self.metrics = metrics
        self.logger = get_logger("proxy.forwarder")

        if http_client is None:
            verify = target.ssl_context() or True
            http_client = httpx.AsyncClient(timeout=timeout, verify=verify)
        self._client = http_client

    async def close(self) -> None:
        await self._client.aclose()

    async def forward(self, request: ProxyRequest) -> StreamingResponse:
        """Forward ``request`` and return the upstream response as a stream."""
        upstream_request = self._client.build_request(
            request.method,
            # Absolute URL so that a path like "//host/x" cannot change the target
            f"{self.target.base_url}{request.url}",
            headers=filter_headers(request.headers, drop_host=True),
            content=request.body,
        )

        try:
            upstream_response = await self._client.send(upstream_request, stream=True)
        except httpx.RequestError as exc:
            self.logger.error(
                "Upstream request failed",
                target=self.target.base_url,
                path=request.path,
                error=str(exc),
            )
            if self.metrics is not None:
                self.metrics.record_upstream_error()
            raise BadGatewayError(f"Upstream request failed: {exc}") from exc

        self.logger.debug(
            "Forwarded request",
            method=request.method,
            path=request.url,
            status_code=upstream_response.status_code,
        )
        response = StreamingResponse(
            upstream_response.aiter_raw(),
            status_code=upstream_response.status_code,
            background=BackgroundTask(upstream_response.aclose),
        )
        # Raw list keeps repeated headers such as Set-Cookie
        response.raw_headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in filter_headers(upstream_response.headers)
        ]
        return response
