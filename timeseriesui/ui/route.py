"""
Serving of the bundled single-page app.

Real files under the asset tree are served with the usual content-type and
conditional caching headers. Any other path under the UI prefix gets the entry
document so client-side routes survive a reload.
"""

import logging
import os

from fastapi import APIRouter, FastAPI
from fastapi.responses import RedirectResponse
from starlette.exceptions import HTTPException
from starlette.responses import Response
from starlette.staticfiles import StaticFiles
from starlette.types import Scope

from timeseriesui.errors import ConfigError

logger = logging.getLogger("uvicorn.error")

ENTRY_DOCUMENT = "index.html"


class SPAStaticFiles(StaticFiles):
    async def get_response(self, path: str, scope: Scope) -> Response:
        try:
            response = await super().get_response(path, scope)
        except HTTPException as e:
            if e.status_code != 404:
                raise
            response = None
        if response is None or response.status_code == 404:
            logger.debug(f"[UI] {path} not in asset tree, serving {ENTRY_DOCUMENT}")
            response = await super().get_response(ENTRY_DOCUMENT, scope)
        return response


def validate_asset_tree(directory: str) -> None:
    if not os.path.isdir(directory):
        raise ConfigError(f"UI asset directory not found: {directory}")
    if not os.path.isfile(os.path.join(directory, ENTRY_DOCUMENT)):
        raise ConfigError(f"UI asset directory {directory} has no {ENTRY_DOCUMENT}")


def build_ui_router(base_path: str = "") -> APIRouter:
    """Redirects for the bare UI path and the site root."""
    router = APIRouter()
    ui_prefix = f"{base_path}/ui/"

    @router.get(f"{base_path}/ui", include_in_schema=False)
    async def ui_redirect():
        return RedirectResponse(ui_prefix, status_code=301)

    async def root_redirect():
        return RedirectResponse(ui_prefix, status_code=302)

    router.add_api_route(f"{base_path}/", root_redirect, methods=["GET"], include_in_schema=False)
    if base_path:
        router.add_api_route(base_path, root_redirect, methods=["GET"], include_in_schema=False)
    return router


def mount_ui(app: FastAPI, directory: str, base_path: str = "") -> None:
    validate_asset_tree(directory)
    app.include_router(build_ui_router(base_path))
    app.mount(
        f"{base_path}/ui",
        SPAStaticFiles(directory=directory, html=True),
        name="ui",
    )
