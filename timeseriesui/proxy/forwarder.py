import logging
from typing import AsyncIterator, Dict
from urllib.parse import urlsplit, urlunsplit

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace

from timeseriesui.errors import ResolutionError, ResponseTooLargeError, UpstreamError
from timeseriesui.proxy.resolver import ResolvedTarget, TargetResolver
from timeseriesui.utils import mask_url
from timeseriesui.utils.traced_requests import traced_proxy_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

# The only inbound headers that cross the proxy boundary
FORWARDED_REQUEST_HEADERS = ("Content-Type", "Accept", "Content-Encoding", "Authorization")

# Hop-by-hop headers that should NOT be relayed (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type, Authorization, X-Influxdb-Url, X-Influxdb-Username, "
        "X-Influxdb-Password, X-Proxy-Username, X-Proxy-Password"
    ),
    "Access-Control-Expose-Headers": "X-Influxdb-Version, X-Tidedb-Version",
}


def apply_cors(response: Response) -> Response:
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


def json_error(status_code: int, message: str) -> JSONResponse:
    return apply_cors(JSONResponse(status_code=status_code, content={"error": message}))


def preflight_response() -> Response:
    return apply_cors(Response(status_code=204))


def build_upstream_url(target: ResolvedTarget) -> str:
    """Target base path (trailing slash stripped) + resolved path, resolved query."""
    parts = urlsplit(target.base_url)
    path = parts.path.rstrip("/") + target.path
    return urlunsplit((parts.scheme, parts.netloc, path, target.query, ""))


def select_request_headers(request: Request) -> Dict[str, str]:
    headers = {}
    for name in FORWARDED_REQUEST_HEADERS:
        value = request.headers.get(name)
        if value:
            headers[name] = value
    return headers


async def relay_body(
    upstream: httpx.Response, max_size: int = 0
) -> AsyncIterator[bytes]:
    """
    Yield the upstream body byte-for-byte, closing the upstream response at the end.

    Aborts with ResponseTooLargeError once more than ``max_size`` bytes arrive
    (0 disables the limit).
    """
    received = 0
    try:
        async for chunk in upstream.aiter_raw():
            received += len(chunk)
            if max_size and received > max_size:
                logger.warning(
                    f"[Proxy] Aborting relay from {mask_url(str(upstream.url))}: "
                    f"body exceeds {max_size} bytes"
                )
                raise ResponseTooLargeError(max_size)
            yield chunk
    finally:
        await upstream.aclose()


class ProxyForwarder:
    """
    Executes exactly one outbound request per inbound request and relays the result.

    The resolver strategy decides where the request goes; everything else
    (CORS, header allow-list, error reporting, streaming) is shared by all
    proxy flavors.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        resolver: TargetResolver,
        max_response_size: int = 0,
        name: str = "proxy",
    ):
        self.client = client
        self.resolver = resolver
        self.max_response_size = max_response_size
        self.name = name

    async def _send(
        self, upstream_request: httpx.Request, target: ResolvedTarget
    ) -> httpx.Response:
        auth = httpx.BasicAuth(*target.basic_auth) if target.basic_auth else None
        try:
            return await self.client.send(upstream_request, auth=auth, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Connection failed: {str(e) or type(e).__name__}") from e

    async def forward(self, request: Request, suffix: str = "") -> Response:
        if request.method == "OPTIONS":
            return preflight_response()

        try:
            target = self.resolver.resolve(request, suffix)
        except ResolutionError as e:
            logger.warning(f"[Proxy] {request.method} {request.url.path}: {e.message}")
            return json_error(e.status_code, e.message)

        upstream_url = build_upstream_url(target)
        with traced_proxy_request(
            tracer,
            operation="proxy_request",
            method=request.method,
            target_url=upstream_url,
            extra_attrs={"proxy.variant": self.name},
        ) as span:
            body = await request.body()

            try:
                upstream_request = self.client.build_request(
                    request.method,
                    upstream_url,
                    headers=select_request_headers(request),
                    content=body or None,
                )
            except (httpx.InvalidURL, ValueError) as e:
                span.set_attribute("proxy.error", "invalid_url")
                logger.warning(f"[Proxy] Cannot build request for {mask_url(upstream_url)}: {e}")
                return json_error(400, f"Invalid target URL: {e}")

            try:
                upstream = await self._send(upstream_request, target)
            except UpstreamError as e:
                span.set_attribute("proxy.error", "upstream")
                logger.error(f"[Proxy] {mask_url(upstream_url)}: {e.message}")
                return json_error(e.status_code, e.message)

            span.set_attribute("proxy.status_code", upstream.status_code)

            content_length = upstream.headers.get("content-length", "")
            if (
                self.max_response_size
                and content_length.isdigit()
                and int(content_length) > self.max_response_size
            ):
                await upstream.aclose()
                span.set_attribute("proxy.error", "response_too_large")
                error = ResponseTooLargeError(self.max_response_size)
                logger.warning(f"[Proxy] {mask_url(upstream_url)}: {error}")
                return json_error(502, str(error))

            response = StreamingResponse(
                relay_body(upstream, self.max_response_size),
                status_code=upstream.status_code,
            )
            for name, value in upstream.headers.multi_items():
                if name.lower() in HOP_BY_HOP_HEADERS:
                    continue
                response.headers.append(name, value)
            return apply_cors(response)
