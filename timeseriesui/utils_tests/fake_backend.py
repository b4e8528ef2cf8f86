import json
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx

Handler = Callable[[httpx.Request], httpx.Response]
HeaderInput = Union[Dict[str, str], Sequence[Tuple[str, str]], None]


def raw_response(
    status_code: int = 200, content: bytes = b"", headers: HeaderInput = None
) -> httpx.Response:
    """
    A response that is still unread, like one coming off a real connection.

    ``httpx.Response(content=...)`` reads its body eagerly, which leaves
    nothing for ``aiter_raw``; wrapping the bytes in a stream avoids that.
    """
    header_list = list(headers.items() if isinstance(headers, dict) else headers or [])
    if not any(k.lower() == "content-length" for k, _ in header_list):
        header_list.append(("Content-Length", str(len(content))))
    return httpx.Response(status_code, headers=header_list, stream=httpx.ByteStream(content))


def json_route(status_code: int = 200, payload=None, headers: Optional[Dict] = None) -> Handler:
    """A route handler that returns a fresh JSON response on every call."""

    def _handler(request: httpx.Request) -> httpx.Response:
        content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        merged = {"Content-Type": "application/json", **(headers or {})}
        return raw_response(status_code, content, merged)

    return _handler


class FakeBackend:
    """In-process upstream for httpx.MockTransport that records every call."""

    def __init__(self, routes: Optional[Dict[str, Handler]] = None):
        self.routes: Dict[str, Handler] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return json_route(404, {"error": f"no route {request.url.path}"})(request)
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)
