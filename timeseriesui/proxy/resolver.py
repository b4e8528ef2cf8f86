"""
Target resolution for proxied requests.

A resolver turns an inbound request into a ``ResolvedTarget``: the upstream
base URL, the path and query to send, and any credentials to attach. Resolvers
never touch the network, so every policy can be tested with a bare request.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

from fastapi import Request

from timeseriesui.connections import Connection, is_http_url
from timeseriesui.errors import ResolutionError

INVALID_TARGET_MESSAGE = "Invalid target URL: must use http:// or https://"

# Query parameters consumed by the generic resolver and never forwarded
CONTROL_PARAMS = ("target", "path")


@dataclass(frozen=True)
class ResolvedTarget:
    base_url: str
    path: str = ""
    query: str = ""
    basic_auth: Optional[Tuple[str, str]] = None


def inject_credentials(
    raw_query: str, username: Optional[str], password: Optional[str]
) -> str:
    """
    Add ``u``/``p`` to a query string unless the caller already supplied them.

    The query is only re-encoded when something is injected.
    """
    if not username and not password:
        return raw_query
    pairs = parse_qsl(raw_query, keep_blank_values=True)
    supplied = {k for k, v in pairs if v}
    changed = False
    for key, value in (("u", username), ("p", password)):
        if value and key not in supplied:
            pairs = [(k, v) for k, v in pairs if k != key]
            pairs.append((key, value))
            changed = True
    return urlencode(pairs) if changed else raw_query


def normalize_path(path: Optional[str]) -> str:
    if not path:
        return ""
    return path if path.startswith("/") else "/" + path


class TargetResolver(ABC):
    @abstractmethod
    def resolve(self, request: Request, suffix: str) -> ResolvedTarget:
        """Resolve ``request`` (whose routed path remainder is ``suffix``)."""


class HeaderTargetResolver(TargetResolver):
    """
    Legacy and dynamic-header policy (InfluxDB style).

    The target comes from the ``url_header`` when the caller sets it, otherwise
    from the configured default connection. Credentials from the username and
    password headers win; the default connection's stored credentials are used
    only when the target is that connection. Credentials travel as ``u``/``p``
    query parameters and never override values already in the query string.
    """

    def __init__(
        self,
        default: Optional[Connection] = None,
        url_header: str = "X-Influxdb-Url",
        username_header: str = "X-Influxdb-Username",
        password_header: str = "X-Influxdb-Password",
        backend_label: str = "InfluxDB",
    ):
        self.default = default
        self.url_header = url_header
        self.username_header = username_header
        self.password_header = password_header
        self.backend_label = backend_label

    def resolve(self, request: Request, suffix: str) -> ResolvedTarget:
        target_url = request.headers.get(self.url_header, "").strip()
        from_default = False
        if not target_url and self.default is not None:
            target_url = self.default.url
            from_default = True
        if not target_url:
            raise ResolutionError(
                f"No {self.backend_label} connection configured. Add a connection in the UI.",
                status_code=502,
            )
        if not is_http_url(target_url):
            raise ResolutionError(INVALID_TARGET_MESSAGE, status_code=400)

        username = request.headers.get(self.username_header) or None
        password = request.headers.get(self.password_header) or None
        if username is None and password is None and from_default:
            username = self.default.username
            password = self.default.password

        return ResolvedTarget(
            base_url=target_url,
            path=normalize_path(suffix),
            query=inject_credentials(request.url.query, username, password),
        )


class QueryParamTargetResolver(TargetResolver):
    """
    Generic policy: ``?target=<url>&path=<suffix>`` picks any backend.

    Everything in the query string except ``target`` and ``path`` is forwarded.
    ``X-Proxy-Username``/``X-Proxy-Password`` become HTTP basic auth.
    """

    def __init__(
        self,
        username_header: str = "X-Proxy-Username",
        password_header: str = "X-Proxy-Password",
    ):
        self.username_header = username_header
        self.password_header = password_header

    def resolve(self, request: Request, suffix: str) -> ResolvedTarget:
        params = request.query_params
        target = params.get("target", "").strip()
        if not target:
            raise ResolutionError("Missing 'target' query parameter", status_code=400)
        if not is_http_url(target):
            raise ResolutionError(INVALID_TARGET_MESSAGE, status_code=400)

        api_path = params.get("path") or suffix

        target_parts = urlsplit(target)
        forwarded: List[Tuple[str, str]] = parse_qsl(
            target_parts.query, keep_blank_values=True
        )
        forwarded += [
            (k, v) for k, v in params.multi_items() if k not in CONTROL_PARAMS
        ]

        username = request.headers.get(self.username_header)
        password = request.headers.get(self.password_header)
        basic_auth = None
        if username or password:
            basic_auth = (username or "", password or "")

        return ResolvedTarget(
            base_url=target_parts._replace(query="", fragment="").geturl(),
            path=normalize_path(api_path),
            query=urlencode(forwarded),
            basic_auth=basic_auth,
        )
