from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import anyio
from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from certportal.config import PortalConfig
from certportal.errors import AuthenticationError, PortalError, ValidationError
from certportal.home import PortalPaths
from certportal.tokens import CookieTokenStore
from certportal.ui import messages
from certportal.uploads import spool_upload
from certportal.upstream import CertificateDownload, UpstreamClient, certificate_id_of

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

router = APIRouter(tags=["ui"])

LOGIN_PATH = "/"
DASHBOARD_PATH = "/dashboard"


def _get_upstream(request: Request) -> UpstreamClient:
    upstream = getattr(request.app.state, "upstream", None)
    if upstream is None:
        raise HTTPException(status_code=500, detail="Upstream client not initialized")
    return upstream


def _get_token_store(request: Request) -> CookieTokenStore:
    store = getattr(request.app.state, "token_store", None)
    if store is None:
        raise HTTPException(status_code=500, detail="Token store not initialized")
    return store


def _get_config(request: Request) -> PortalConfig:
    config = getattr(request.app.state, "portal_config", None)
    if config is None:
        raise HTTPException(status_code=500, detail="Config not initialized")
    return config


def _get_paths(request: Request) -> PortalPaths:
    paths = getattr(request.app.state, "portal_paths", None)
    if paths is None:
        raise HTTPException(status_code=500, detail="Runtime paths not initialized")
    return paths


class CertificateStreamingResponse(StreamingResponse):
    """Streams a certificate download and always releases the upstream response.

    The upstream body is closed when the response ends for any reason: after
    the last chunk, on client disconnect, or on cancellation.
    """

    def __init__(self, download: CertificateDownload) -> None:
        self._download = download
        self._chunks = download.iter_bytes()
        super().__init__(
            self._chunks,
            media_type=download.media_type,
            headers={"Content-Disposition": f"attachment; filename={download.filename}"},
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self._chunks.aclose()
                await self._download.aclose()


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


def _render(
    request: Request,
    template: str,
    context: dict[str, Any],
    *,
    status_code: int = 200,
) -> HTMLResponse:
    ctx = {"error": None, **context}
    return templates.TemplateResponse(request, template, ctx, status_code=status_code)


@router.get("/", response_class=HTMLResponse)
async def ui_login(request: Request) -> HTMLResponse:
    return _render(request, "index.html", {"title": "Login", "hide_nav": True})


@router.post("/login", response_model=None)
async def ui_login_post(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
) -> Response:
    upstream = _get_upstream(request)
    store = _get_token_store(request)
    email = email.strip()

    def _failed(error: PortalError) -> HTMLResponse:
        # Same message and status for every failure.
        return _render(
            request,
            "index.html",
            {
                "title": "Login",
                "hide_nav": True,
                "email": email,
                "error": messages.login_message(error),
            },
            status_code=401,
        )

    if not email or not password:
        return _failed(AuthenticationError("Missing credentials"))

    try:
        token = await upstream.login(email, password)
    except PortalError as e:
        logger.info("Login rejected: %s", type(e).__name__)
        return _failed(e)

    resp = _redirect(DASHBOARD_PATH)
    store.set(resp, token)
    return resp


@router.post("/logout")
async def ui_logout(request: Request) -> RedirectResponse:
    resp = _redirect(LOGIN_PATH)
    _get_token_store(request).clear(resp)
    return resp


@router.get("/register", response_class=HTMLResponse)
async def ui_register(request: Request) -> HTMLResponse:
    return _render(request, "register.html", {"title": "Register", "hide_nav": True})


@router.post("/register", response_model=None)
async def ui_register_post(
    request: Request,
    name: str = Form(default=""),
    email: str = Form(default=""),
    password: str = Form(default=""),
) -> Response:
    upstream = _get_upstream(request)
    name = name.strip()
    email = email.strip()

    def _failed(error: PortalError) -> HTMLResponse:
        return _render(
            request,
            "register.html",
            {
                "title": "Register",
                "hide_nav": True,
                "name": name,
                "email": email,
                "error": messages.register_message(error),
            },
            status_code=messages.status_for(error),
        )

    if not name or not email or not password:
        return _failed(ValidationError("Name, email and password are required"))

    try:
        await upstream.register(name, email, password)
    except PortalError as e:
        logger.info("Registration rejected: %s", e)
        return _failed(e)

    # No auto-login: the user signs in with the new account.
    return _redirect(LOGIN_PATH)


@router.get("/dashboard", response_model=None)
async def ui_dashboard(request: Request) -> Response:
    store = _get_token_store(request)
    token = store.get(request)
    if token is None:
        return _redirect(LOGIN_PATH)

    upstream = _get_upstream(request)
    try:
        records = await upstream.list_certificates(token)
    except PortalError as e:
        resp = _render(
            request,
            "dashboard.html",
            {
                "title": "Certificates",
                "active": "dashboard",
                "certificates": [],
                "error": messages.dashboard_message(e),
            },
            status_code=messages.status_for(e),
        )
        if isinstance(e, AuthenticationError):
            store.clear(resp)
        return resp

    certificates = []
    for record in records:
        certificate_id = certificate_id_of(record)
        # Ids may contain "/", so the whole id is one escaped path segment.
        href = None
        if certificate_id:
            href = f"/certificates/{quote(certificate_id, safe='')}/download"
        certificates.append({"id": certificate_id, "href": href, "record": record})
    return _render(
        request,
        "dashboard.html",
        {"title": "Certificates", "active": "dashboard", "certificates": certificates},
    )


@router.get("/certificates/{certificate_id:path}/download", response_model=None)
async def ui_certificate_download(request: Request, certificate_id: str) -> Response:
    token = _get_token_store(request).get(request)
    if token is None:
        return _redirect(LOGIN_PATH)

    upstream = _get_upstream(request)
    try:
        download = await upstream.download_certificate(token, certificate_id)
    except PortalError as e:
        logger.error("Error downloading certificate %s: %s", certificate_id, e)
        return PlainTextResponse(messages.DOWNLOAD_FAILED, status_code=500)

    return CertificateStreamingResponse(download)


@router.get("/upload", response_model=None)
async def ui_upload(request: Request) -> Response:
    if _get_token_store(request).get(request) is None:
        return _redirect(LOGIN_PATH)
    return _render(request, "upload.html", {"title": "Upload certificate", "active": "upload"})


@router.post("/upload", response_model=None)
async def ui_upload_post(
    request: Request,
    activity_name: str = Form(default="", alias="activityName"),
    certificate: UploadFile | None = File(default=None),  # noqa: B008
) -> Response:
    store = _get_token_store(request)
    token = store.get(request)
    if token is None:
        return _redirect(LOGIN_PATH)

    upstream = _get_upstream(request)
    config = _get_config(request)
    paths = _get_paths(request)
    activity_name = activity_name.strip()

    def _failed(error: PortalError) -> HTMLResponse:
        resp = _render(
            request,
            "upload.html",
            {
                "title": "Upload certificate",
                "active": "upload",
                "activity_name": activity_name,
                "error": messages.upload_message(error),
            },
            status_code=messages.status_for(error),
        )
        if isinstance(error, AuthenticationError):
            store.clear(resp)
        return resp

    if certificate is None:
        return _failed(ValidationError("No certificate file was selected"))
    if not activity_name:
        return _failed(ValidationError("Activity name is required"))

    try:
        async with spool_upload(
            certificate,
            paths.uploads_dir,
            max_bytes=config.uploads.max_upload_bytes,
        ) as spooled:
            await upstream.upload_certificate(
                token,
                activity_name,
                spooled.path,
                filename=spooled.filename,
                content_type=spooled.content_type,
            )
    except PortalError as e:
        logger.warning("Certificate upload failed: %s", e)
        return _failed(e)

    return _redirect(DASHBOARD_PATH)
