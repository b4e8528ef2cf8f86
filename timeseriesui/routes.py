import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from timeseriesui.config import Settings
from timeseriesui.proxy.forwarder import apply_cors, preflight_response

logger = logging.getLogger("uvicorn.error")


def build_api_router(settings: Settings) -> APIRouter:
    """Read-only endpoints answered from the startup configuration."""
    router = APIRouter()

    @router.get("/api/mode")
    async def get_mode():
        return {
            "mode": "standalone",
            "disableWrite": settings.disable_write,
            "disableAdmin": settings.disable_admin,
        }

    # Includes stored credentials
    @router.api_route("/api/v1/connections", methods=["GET", "OPTIONS"])
    async def list_connections(request: Request):
        if request.method == "OPTIONS":
            return preflight_response()
        return apply_cors(
            JSONResponse(content=[c.to_json() for c in settings.connections])
        )

    @router.get("/api/v1/health")
    async def health():
        return {"status": "ok", "version": settings.version}

    return router
