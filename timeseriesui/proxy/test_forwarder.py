"""
Tests for the proxy forwarder.

Covers:
- CORS preflight short-circuit
- Resolution failures reported as JSON without an upstream call
- Header allow-list and basic auth on the outbound request
- Status, multi-valued headers and body relayed verbatim
- Network failures and oversized responses
- Upstream response cleanup when the caller goes away
"""

import asyncio
import base64
import json

import httpx
import pytest

from timeseriesui.connections import BackendType, Connection
from timeseriesui.errors import ResponseTooLargeError
from timeseriesui.proxy.forwarder import (
    CORS_HEADERS,
    ProxyForwarder,
    build_upstream_url,
    relay_body,
)
from timeseriesui.proxy.resolver import (
    HeaderTargetResolver,
    QueryParamTargetResolver,
    ResolvedTarget,
)
from timeseriesui.utils_tests.fake_backend import FakeBackend, json_route, raw_response
from timeseriesui.utils_tests.requests import make_request

INFLUX_URL = "http://influx:8086"


async def read_body(response) -> bytes:
    if hasattr(response, "body_iterator"):
        return b"".join([chunk async for chunk in response.body_iterator])
    return response.body


def assert_cors(response):
    for name, value in CORS_HEADERS.items():
        assert response.headers.getlist(name) == [value]


@pytest.fixture
def backend():
    return FakeBackend(
        {
            "/ping": json_route(204),
            "/query": json_route(200, {"results": [{"statement_id": 0}]}),
            "/api/v1/query": json_route(200, {"status": "success"}),
        }
    )


@pytest.fixture
def legacy(backend):
    client = httpx.AsyncClient(transport=backend.transport)
    default = Connection(
        name="influx", type=BackendType.INFLUXDB, url=INFLUX_URL, username="admin", password="pw"
    )
    return ProxyForwarder(client, HeaderTargetResolver(default=default), name="legacy")


@pytest.fixture
def generic(backend):
    client = httpx.AsyncClient(transport=backend.transport)
    return ProxyForwarder(client, QueryParamTargetResolver(), name="generic")


class TestBuildUpstreamUrl:
    def test_trailing_slash_stripped(self):
        target = ResolvedTarget(base_url="http://influx:8086/", path="/query", query="db=x")

        assert build_upstream_url(target) == "http://influx:8086/query?db=x"

    def test_base_path_kept(self):
        target = ResolvedTarget(base_url="http://127.0.0.1:9090/x", path="/y")

        assert build_upstream_url(target) == "http://127.0.0.1:9090/x/y"

    def test_no_path(self):
        target = ResolvedTarget(base_url="http://prom:9090")

        assert build_upstream_url(target) == "http://prom:9090"


class TestPreflight:
    @pytest.mark.asyncio
    async def test_options_short_circuits(self, legacy, backend):
        response = await legacy.forward(make_request("OPTIONS", "/query"), "/query")

        assert response.status_code == 204
        assert_cors(response)
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_options_before_resolution(self, generic, backend):
        # No target at all, still a clean preflight
        response = await generic.forward(make_request("OPTIONS", "/proxy/prometheus/"), "")

        assert response.status_code == 204
        assert backend.calls == 0


class TestResolutionErrors:
    @pytest.mark.asyncio
    async def test_missing_target_is_400_json(self, generic, backend):
        response = await generic.forward(make_request(path="/proxy/prometheus/"), "")

        assert response.status_code == 400
        assert json.loads(await read_body(response)) == {
            "error": "Missing 'target' query parameter"
        }
        assert_cors(response)
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_no_connection_is_502_json(self, backend):
        forwarder = ProxyForwarder(
            httpx.AsyncClient(transport=backend.transport), HeaderTargetResolver()
        )

        response = await forwarder.forward(make_request(path="/ping"), "/ping")

        assert response.status_code == 502
        assert json.loads(await read_body(response))["error"]
        assert backend.calls == 0


class TestRelay:
    @pytest.mark.asyncio
    async def test_successful_get(self, generic, backend):
        request = make_request(
            path="/proxy/prometheus/",
            query="target=http://prom:9090&path=/api/v1/query&query=up",
        )

        response = await generic.forward(request, "")

        assert response.status_code == 200
        assert json.loads(await read_body(response)) == {"status": "success"}
        assert response.headers["content-type"] == "application/json"
        assert_cors(response)
        assert str(backend.last_request.url) == "http://prom:9090/api/v1/query?query=up"

    @pytest.mark.asyncio
    async def test_legacy_injects_stored_credentials(self, legacy, backend):
        request = make_request(path="/query", query="q=SHOW+DATABASES")

        await legacy.forward(request, "/query")

        params = backend.last_request.url.params
        assert params["q"] == "SHOW DATABASES"
        assert params["u"] == "admin"
        assert params["p"] == "pw"

    @pytest.mark.asyncio
    async def test_upstream_error_status_is_relayed(self, legacy, backend):
        backend.routes["/query"] = json_route(401, {"error": "authorization failed"})

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.status_code == 401
        assert json.loads(await read_body(response)) == {"error": "authorization failed"}
        assert_cors(response)

    @pytest.mark.asyncio
    async def test_multi_valued_headers_appended(self, legacy, backend):
        backend.routes["/query"] = lambda request: raw_response(
            200,
            headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("X-Influxdb-Version", "1.8.10")],
            content=b"{}",
        )

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.headers.getlist("set-cookie") == ["a=1", "b=2"]
        assert response.headers["x-influxdb-version"] == "1.8.10"

    @pytest.mark.asyncio
    async def test_cors_applied_over_upstream_headers(self, legacy, backend):
        backend.routes["/query"] = lambda request: raw_response(
            200,
            headers={"Access-Control-Allow-Origin": "https://elsewhere.example.com"},
            content=b"{}",
        )

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.headers.getlist("access-control-allow-origin") == ["*"]

    @pytest.mark.asyncio
    async def test_compressed_body_relayed_raw(self, legacy, backend):
        import gzip

        compressed = gzip.compress(b'{"results": []}')
        backend.routes["/query"] = lambda request: raw_response(
            200,
            headers={"Content-Encoding": "gzip", "Content-Type": "application/json"},
            content=compressed,
        )

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.headers["content-encoding"] == "gzip"
        assert await read_body(response) == compressed

    @pytest.mark.asyncio
    async def test_hop_by_hop_headers_dropped(self, legacy, backend):
        async def chunks():
            yield b"{"
            yield b"}"

        backend.routes["/query"] = lambda request: httpx.Response(
            200, headers={"Connection": "keep-alive"}, content=chunks()
        )

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert "connection" not in response.headers
        assert "transfer-encoding" not in response.headers
        assert await read_body(response) == b"{}"


class TestOutboundRequest:
    @pytest.mark.asyncio
    async def test_only_allow_listed_headers_forwarded(self, legacy, backend):
        request = make_request(
            "POST",
            "/write",
            query="db=telegraf",
            headers={
                "Content-Type": "text/plain",
                "Accept": "application/json",
                "Authorization": "Token abc",
                "Cookie": "session=1",
                "X-Influxdb-Url": INFLUX_URL,
                "X-Custom": "nope",
            },
            body=b"cpu value=1",
        )
        backend.routes["/write"] = json_route(204)

        response = await legacy.forward(request, "/write")

        sent = backend.last_request
        assert response.status_code == 204
        assert sent.method == "POST"
        assert sent.content == b"cpu value=1"
        assert sent.headers["content-type"] == "text/plain"
        assert sent.headers["accept"] == "application/json"
        assert sent.headers["authorization"] == "Token abc"
        assert "cookie" not in sent.headers
        assert "x-custom" not in sent.headers
        assert "x-influxdb-url" not in sent.headers

    @pytest.mark.asyncio
    async def test_proxy_credentials_sent_as_basic_auth(self, generic, backend):
        request = make_request(
            path="/proxy/prometheus/",
            query="target=http://prom:9090&path=/api/v1/query",
            headers={"X-Proxy-Username": "grafana", "X-Proxy-Password": "pw"},
        )

        await generic.forward(request, "")

        expected = "Basic " + base64.b64encode(b"grafana:pw").decode()
        assert backend.last_request.headers["authorization"] == expected
        assert "x-proxy-username" not in backend.last_request.headers

    @pytest.mark.parametrize("method", ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD"])
    @pytest.mark.asyncio
    async def test_method_passthrough(self, legacy, backend, method):
        await legacy.forward(make_request(method, "/query"), "/query")

        assert backend.last_request.method == method

    @pytest.mark.asyncio
    async def test_single_attempt_per_request(self, legacy, backend):
        backend.routes["/query"] = json_route(503, {"error": "overloaded"})

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.status_code == 503
        assert backend.calls == 1


class TestUpstreamFailures:
    @pytest.mark.asyncio
    async def test_connection_refused(self, legacy, backend):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        backend.routes["/ping"] = refuse

        response = await legacy.forward(make_request(path="/ping"), "/ping")

        assert response.status_code == 502
        body = json.loads(await read_body(response))
        assert body == {"error": "Connection failed: Connection refused"}
        assert_cors(response)
        assert backend.calls == 1

    @pytest.mark.asyncio
    async def test_timeout(self, legacy, backend):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        backend.routes["/query"] = slow

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.status_code == 502
        assert "timed out" in json.loads(await read_body(response))["error"]


class TestMaxResponseSize:
    @pytest.mark.asyncio
    async def test_declared_length_over_limit(self, backend):
        backend.routes["/query"] = lambda request: raw_response(200, b"x" * 100)
        forwarder = ProxyForwarder(
            httpx.AsyncClient(transport=backend.transport),
            HeaderTargetResolver(),
            max_response_size=10,
        )
        request = make_request(path="/query", headers={"X-Influxdb-Url": INFLUX_URL})

        response = await forwarder.forward(request, "/query")

        assert response.status_code == 502
        assert "exceeds maximum size" in json.loads(await read_body(response))["error"]

    @pytest.mark.asyncio
    async def test_streamed_body_over_limit_aborts(self, backend):
        async def chunks():
            for _ in range(5):
                yield b"x" * 4

        backend.routes["/query"] = lambda request: httpx.Response(200, content=chunks())
        forwarder = ProxyForwarder(
            httpx.AsyncClient(transport=backend.transport),
            HeaderTargetResolver(),
            max_response_size=10,
        )
        request = make_request(path="/query", headers={"X-Influxdb-Url": INFLUX_URL})

        response = await forwarder.forward(request, "/query")

        assert response.status_code == 200
        with pytest.raises(ResponseTooLargeError):
            await read_body(response)

    @pytest.mark.asyncio
    async def test_within_limit(self, legacy, backend):
        legacy.max_response_size = 1024

        response = await legacy.forward(make_request(path="/query"), "/query")

        assert response.status_code == 200
        assert json.loads(await read_body(response)) == {"results": [{"statement_id": 0}]}


class TestRelayBody:
    @pytest.mark.asyncio
    async def test_upstream_closed_when_caller_stops_reading(self, backend):
        captured = {}

        async def chunks():
            for i in range(3):
                yield f"chunk{i}".encode()

        def handler(request):
            captured["response"] = httpx.Response(200, content=chunks())
            return captured["response"]

        backend.routes["/stream"] = handler
        client = httpx.AsyncClient(transport=backend.transport)
        upstream = await client.send(client.build_request("GET", "http://x/stream"), stream=True)

        body = relay_body(upstream)
        assert await body.__anext__() == b"chunk0"
        await body.aclose()

        assert upstream.is_closed

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, legacy, backend):
        responses = await asyncio.gather(
            *[legacy.forward(make_request(path="/query"), "/query") for _ in range(10)]
        )
        bodies = await asyncio.gather(*[read_body(r) for r in responses])

        assert all(r.status_code == 200 for r in responses)
        assert len(set(bodies)) == 1
        assert backend.calls == 10
