from typing import Dict, Optional

from fastapi import Request


def make_request(
    method: str = "GET",
    path: str = "/",
    query: str = "",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
) -> Request:
    """Build a real Starlette request without running a server."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query.encode(),
        "headers": [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in (headers or {}).items()
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)
