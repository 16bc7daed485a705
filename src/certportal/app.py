from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from certportal import __version__
from certportal.config import PortalConfig, load_portal_config
from certportal.home import PortalPaths, ensure_portal_layout, resolve_portal_home
from certportal.tokens import CookieTokenStore
from certportal.ui.router import router as ui_router
from certportal.upstream import UpstreamClient, build_http_client

logger = logging.getLogger(__name__)


def create_app(
    config: PortalConfig | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    paths: PortalPaths | None = None,
) -> FastAPI:
    """Build the portal app.

    Everything stateful is passed in (or built once at startup): tests inject a
    config, a runtime layout and an `httpx.AsyncClient` on a mock transport.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        portal_config = config if config is not None else load_portal_config()
        portal_paths = paths if paths is not None else ensure_portal_layout(resolve_portal_home())

        owns_client = http_client is None
        client = http_client if http_client is not None else build_http_client(portal_config.upstream)

        app.state.portal_config = portal_config
        app.state.portal_paths = portal_paths
        app.state.upstream = UpstreamClient(client)
        app.state.token_store = CookieTokenStore.from_config(portal_config.session)

        logger.info("CertPortal starting up")
        logger.info(f"Upstream API: {client.base_url}")
        logger.info(f"Upload spool directory: {portal_paths.uploads_dir}")

        try:
            yield
        finally:
            if owns_client:
                await client.aclose()
            logger.info("CertPortal shut down")

    app = FastAPI(title="CertPortal", version=__version__, lifespan=_lifespan)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} - {response.status_code}")
        return response

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException) -> PlainTextResponse:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> PlainTextResponse:
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return PlainTextResponse(message, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return PlainTextResponse("Internal server error", status_code=500)

    app.include_router(ui_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app
