import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from timeseriesui.config import Settings
from timeseriesui.connections import BackendType, first_of_type
from timeseriesui.proxy import (
    HeaderTargetResolver,
    ProxyForwarder,
    QueryParamTargetResolver,
    build_proxy_router,
)
from timeseriesui.routes import build_api_router
from timeseriesui.ui.route import mount_ui
from timeseriesui.vars import SERVICE_NAME

logger = logging.getLogger("uvicorn.error")


def create_app(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the application from immutable settings.

    Everything a handler needs (settings, the shared outbound client, the
    forwarders) is constructed here and handed to the router builders.
    ``transport`` replaces the network for tests.
    """
    base_path = settings.base_path
    client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.proxy_timeout),
        follow_redirects=False,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await client.aclose()

    app = FastAPI(
        title="TimeseriesUI",
        version=settings.version,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.http_client = client

    registry = CollectorRegistry()
    Instrumentator(registry=registry).instrument(app).expose(
        app, endpoint=f"{base_path}/metrics", include_in_schema=False
    )
    app_info = Info("timeseriesui_app", "Application Info", registry=registry)
    app_info.info({"app_name": SERVICE_NAME, "version": settings.version})
    FastAPIInstrumentor.instrument_app(app)

    default_influx = first_of_type(settings.connections, BackendType.INFLUXDB)
    legacy = ProxyForwarder(
        client,
        HeaderTargetResolver(default=default_influx),
        max_response_size=settings.max_response_size,
        name="legacy",
    )
    generic = ProxyForwarder(
        client,
        QueryParamTargetResolver(),
        max_response_size=settings.max_response_size,
        name="generic",
    )

    app.include_router(build_api_router(settings), prefix=base_path)
    app.include_router(build_proxy_router(generic, legacy, base_path), prefix=base_path)
    mount_ui(app, settings.ui_dist, base_path)

    if base_path:
        logger.info(f"Using base path: {base_path}")
    return app
