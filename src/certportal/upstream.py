from __future__ import annotations

import logging
import mimetypes
import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from certportal.config import UpstreamConfig
from certportal.errors import (
    AuthenticationError,
    NotFoundError,
    PortalError,
    UpstreamUnavailableError,
    ValidationError,
)
from certportal.tokens import bearer_header

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024
DEFAULT_EXTENSION = "bin"

_CERTIFICATE_ID_KEYS = ("id", "_id", "certificateId")
_LIST_WRAPPER_KEYS = ("certificates", "data", "items")
_MESSAGE_KEYS = ("message", "error", "detail")
_PLAIN_SUBTYPE = re.compile(r"[a-z0-9]+")
_UNSAFE_EXTENSION_CHARS = re.compile(r"[^a-z0-9.+-]")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def build_http_client(
    config: UpstreamConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.require_api_url(),
        timeout=httpx.Timeout(config.timeout_seconds),
        transport=transport,
    )


def extension_for_content_type(content_type: str | None) -> str:
    """Map an upstream Content-Type to the extension offered to the browser.

    A plain subtype is the extension itself (`application/pdf; charset=binary`
    -> `pdf`, `application/xml` -> `xml`). Only `x-`, `vnd.` and `+suffix`
    subtypes are looked up in `mimetypes`; everything else falls back to the
    sanitized subtype. A missing header yields `bin`.
    """

    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if "/" not in media_type:
        return DEFAULT_EXTENSION
    if media_type == "application/octet-stream":
        return DEFAULT_EXTENSION

    subtype = media_type.split("/", 1)[1]
    if _PLAIN_SUBTYPE.fullmatch(subtype):
        return subtype

    if subtype.startswith(("x-", "vnd.")) or "+" in subtype:
        guess = mimetypes.guess_extension(media_type)
        if guess:
            return guess.lstrip(".")

    subtype = _UNSAFE_EXTENSION_CHARS.sub("", subtype)
    return subtype or DEFAULT_EXTENSION


def certificate_id_of(record: Any) -> str | None:
    if not isinstance(record, dict):
        return None
    for key in _CERTIFICATE_ID_KEYS:
        value = record.get(key)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, (str, int)):
            text = str(value).strip()
            if text:
                return text
    return None


def _upstream_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in _MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()

    text = response.text.strip()
    if text:
        return text[:500]
    return f"Upstream returned HTTP {response.status_code}"


def _error_for_status(
    response: httpx.Response,
    *,
    operation: str,
    auth_on_client_error: bool = False,
) -> PortalError:
    status = response.status_code
    message = _upstream_message(response)
    context = {"operation": operation, "status": status}

    if status in (401, 403):
        return AuthenticationError(message, status_code=status, context=context)
    if 400 <= status < 500 and auth_on_client_error:
        return AuthenticationError(message, status_code=status, context=context)
    if status == 404:
        return NotFoundError(message, status_code=status, context=context)
    if 400 <= status < 500:
        return ValidationError(message, status_code=status, context=context)
    return UpstreamUnavailableError(message, status_code=status, context=context)


def _transport_error(exc: httpx.HTTPError, *, operation: str) -> UpstreamUnavailableError:
    if isinstance(exc, httpx.TimeoutException):
        message = "Upstream request timed out"
    else:
        message = "Upstream request failed"
    return UpstreamUnavailableError(
        message, context={"operation": operation, "error": type(exc).__name__}
    )


def _json_body(response: httpx.Response, *, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamUnavailableError(
            "Upstream reply was not valid JSON",
            status_code=response.status_code,
            context={"operation": operation},
        ) from e


@dataclass
class CertificateDownload:
    """A certificate body still sitting on the upstream connection.

    `iter_bytes()` is single-pass; the connection is released when iteration
    ends or `aclose()` is called, whichever comes first.
    """

    certificate_id: str
    content_type: str | None
    _response: httpx.Response = field(repr=False)

    @property
    def media_type(self) -> str:
        return self.content_type or "application/octet-stream"

    @property
    def extension(self) -> str:
        return extension_for_content_type(self.content_type)

    @property
    def filename(self) -> str:
        safe_id = _UNSAFE_FILENAME_CHARS.sub("_", self.certificate_id)
        return f"certificate-{safe_id}.{self.extension}"

    async def iter_bytes(self) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in self._response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                yield chunk
        except httpx.HTTPError as e:
            logger.warning(
                "Certificate download interrupted",
                extra={"certificate_id": self.certificate_id, "error": str(e)},
            )
            raise _transport_error(e, operation="download") from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class UpstreamClient:
    """Thin client over the certificate API.

    One HTTP call per operation, no retries. Every non-2xx reply and every
    transport failure surfaces as a `PortalError` subclass.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        auth_on_client_error: bool = False,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Upstream %s failed: %s", operation, e)
            raise _transport_error(e, operation=operation) from e

        logger.info("Upstream %s -> %s", operation, response.status_code)
        if response.is_success:
            return response

        error = _error_for_status(
            response, operation=operation, auth_on_client_error=auth_on_client_error
        )
        logger.warning("Upstream %s rejected: %s", operation, error)
        raise error

    async def login(self, email: str, password: str) -> str:
        response = await self._request(
            "POST",
            "/auth/login",
            operation="login",
            auth_on_client_error=True,
            json={"email": email, "password": password},
        )
        body = _json_body(response, operation="login")
        token = body.get("token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise UpstreamUnavailableError(
                "Login reply did not include a token", context={"operation": "login"}
            )
        return token.strip()

    async def register(self, name: str, email: str, password: str) -> None:
        await self._request(
            "POST",
            "/auth/register",
            operation="register",
            json={"name": name, "email": email, "password": password},
        )

    async def list_certificates(self, token: str) -> list[Any]:
        response = await self._request(
            "GET",
            "/certificates",
            operation="list",
            headers=bearer_header(token),
        )
        body = _json_body(response, operation="list")
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            for key in _LIST_WRAPPER_KEYS:
                value = body.get(key)
                if isinstance(value, list):
                    return value
        raise UpstreamUnavailableError(
            "Upstream certificate list had an unexpected shape", context={"operation": "list"}
        )

    async def download_certificate(self, token: str, certificate_id: str) -> CertificateDownload:
        url = f"/certificates/{quote(certificate_id, safe='')}/download"
        request = self._http.build_request("GET", url, headers=bearer_header(token))
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.warning("Upstream download failed: %s", e)
            raise _transport_error(e, operation="download") from e

        logger.info("Upstream download -> %s", response.status_code)
        if response.is_success:
            return CertificateDownload(
                certificate_id=certificate_id,
                content_type=response.headers.get("content-type"),
                _response=response,
            )

        # Drain the error body so nothing partial is ever handed on.
        try:
            await response.aread()
        except httpx.HTTPError as e:
            raise _transport_error(e, operation="download") from e
        finally:
            await response.aclose()

        error = _error_for_status(response, operation="download")
        logger.warning("Upstream download rejected: %s", error)
        raise error

    async def upload_certificate(
        self,
        token: str,
        activity_name: str,
        file_path: Path,
        *,
        filename: str,
        content_type: str | None = None,
    ) -> None:
        with file_path.open("rb") as fh:
            await self._request(
                "POST",
                "/certificates/upload",
                operation="upload",
                headers=bearer_header(token),
                data={"activityName": activity_name},
                files={
                    "certificate": (
                        filename,
                        fh,
                        content_type or "application/octet-stream",
                    )
                },
            )
