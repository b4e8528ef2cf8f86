import logging

from fastapi import APIRouter, Request

from timeseriesui.connections import BackendType
from timeseriesui.proxy.forwarder import ProxyForwarder

logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

# InfluxDB 1.x API paths served by the header-selected proxy
LEGACY_PATHS = ("/query", "/write", "/ping")


def strip_base_path(path: str, base_path: str) -> str:
    if base_path and path.startswith(base_path):
        path = path[len(base_path):]
    if not path.startswith("/"):
        path = "/" + path
    return path


def build_proxy_router(
    generic: ProxyForwarder, legacy: ProxyForwarder, base_path: str = ""
) -> APIRouter:
    """
    Routes for both proxy flavors, relative to ``base_path``.

    Legacy paths forward the inbound path (base path stripped) to an InfluxDB
    chosen by header or default connection. ``/proxy/<type>/...`` forwards to
    whatever ``?target=`` names.
    """
    router = APIRouter()

    async def legacy_proxy(request: Request):
        return await legacy.forward(request, strip_base_path(request.url.path, base_path))

    async def generic_proxy(request: Request):
        return await generic.forward(request, request.path_params.get("rest", ""))

    for path in LEGACY_PATHS:
        router.add_api_route(
            path, legacy_proxy, methods=PROXY_METHODS, include_in_schema=False
        )
    router.add_api_route(
        "/debug/{rest:path}", legacy_proxy, methods=PROXY_METHODS, include_in_schema=False
    )

    for backend in BackendType:
        router.add_api_route(
            f"/proxy/{backend.value}",
            generic_proxy,
            methods=PROXY_METHODS,
            include_in_schema=False,
        )
        router.add_api_route(
            f"/proxy/{backend.value}/{{rest:path}}",
            generic_proxy,
            methods=PROXY_METHODS,
            include_in_schema=False,
        )

    logger.debug(
        f"Proxy routes registered under '{base_path or '/'}': "
        f"{', '.join(LEGACY_PATHS)}, /debug/*, /proxy/{{{','.join(b.value for b in BackendType)}}}/*"
    )
    return router
