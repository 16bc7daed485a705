from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from certportal.config import UpstreamConfig
from certportal.errors import (
    AuthenticationError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from certportal.upstream import (
    UpstreamClient,
    build_http_client,
    certificate_id_of,
    extension_for_content_type,
)
from fake_upstream import API_URL, VALID_TOKEN, FakeCertificateApi, TrackingStream


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> UpstreamClient:
    config = UpstreamConfig(api_url=API_URL, timeout_seconds=2.0)
    return UpstreamClient(build_http_client(config, transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_login_returns_token_and_posts_credentials() -> None:
    api = FakeCertificateApi()
    token = await _client(api).login("alice@example.com", "s3cret")

    assert token == VALID_TOKEN
    (call,) = api.requests
    assert call.method == "POST"
    assert call.url.path == "/api/auth/login"
    assert call.headers["content-type"] == "application/json"
    assert "Authorization" not in call.headers


@pytest.mark.asyncio
async def test_login_client_errors_are_authentication_errors() -> None:
    api = FakeCertificateApi()
    with pytest.raises(AuthenticationError) as exc_info:
        await _client(api).login("alice@example.com", "nope")
    assert exc_info.value.status_code == 401

    api.overrides["login"] = httpx.Response(422, json={"detail": "email is malformed"})
    with pytest.raises(AuthenticationError) as exc_info:
        await _client(api).login("not-an-email", "x")
    assert exc_info.value.message == "email is malformed"


@pytest.mark.asyncio
async def test_login_reply_without_token_is_malformed() -> None:
    api = FakeCertificateApi()
    api.overrides["login"] = httpx.Response(200, json={"token": "   "})
    with pytest.raises(UpstreamUnavailableError):
        await _client(api).login("alice@example.com", "s3cret")


@pytest.mark.asyncio
async def test_register_maps_conflict_to_validation_error() -> None:
    api = FakeCertificateApi()
    client = _client(api)

    await client.register("Bob", "bob@example.com", "hunter2")
    assert api.users["bob@example.com"]["name"] == "Bob"

    with pytest.raises(ValidationError) as exc_info:
        await client.register("Bob", "bob@example.com", "hunter2")
    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Email already registered"


@pytest.mark.asyncio
async def test_list_certificates_accepts_wrapped_list() -> None:
    api = FakeCertificateApi()
    records = await _client(api).list_certificates(VALID_TOKEN)
    assert records == api.certificates

    api.overrides["list"] = httpx.Response(200, json={"certificates": [{"id": 7}]})
    assert await _client(api).list_certificates(VALID_TOKEN) == [{"id": 7}]


@pytest.mark.asyncio
async def test_list_certificates_rejected_token() -> None:
    api = FakeCertificateApi()
    with pytest.raises(AuthenticationError):
        await _client(api).list_certificates("stale")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("failure", "message"),
    [
        (httpx.ConnectError("connection refused"), "Upstream request failed"),
        (httpx.ReadTimeout("read timed out"), "Upstream request timed out"),
        (httpx.Response(502, text=""), "Upstream returned HTTP 502"),
        (httpx.Response(500, json={"error": "boom"}), "boom"),
        (httpx.Response(200, text="<html>not json</html>"), "Upstream reply was not valid JSON"),
    ],
)
async def test_list_certificates_failures_are_upstream_unavailable(
    failure: object, message: str
) -> None:
    api = FakeCertificateApi()
    api.overrides["list"] = failure
    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await _client(api).list_certificates(VALID_TOKEN)
    assert exc_info.value.message == message


@pytest.mark.asyncio
async def test_download_streams_lazily_and_closes_upstream() -> None:
    stream = TrackingStream([b"%PDF-", b"1.4 ", b"body"])

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == f"Bearer {VALID_TOKEN}"
        return httpx.Response(
            200, headers={"Content-Type": "application/pdf; charset=binary"}, stream=stream
        )

    download = await _client(handler).download_certificate(VALID_TOKEN, "42")
    assert download.filename == "certificate-42.pdf"
    assert download.media_type == "application/pdf; charset=binary"
    # Nothing has been pulled off the wire yet.
    assert stream.yielded == 0

    chunks = [chunk async for chunk in download.iter_bytes()]
    assert b"".join(chunks) == b"%PDF-1.4 body"
    assert stream.closed is True


@pytest.mark.asyncio
async def test_download_aclose_without_reading_releases_connection() -> None:
    stream = TrackingStream([b"a" * 10, b"b" * 10])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "image/png"}, stream=stream)

    download = await _client(handler).download_certificate(VALID_TOKEN, "7")
    await download.aclose()
    await download.aclose()

    assert stream.closed is True
    assert stream.yielded == 0


@pytest.mark.asyncio
async def test_download_error_reply_is_drained_and_closed() -> None:
    stream = TrackingStream([b'{"message": "Certificate not found"}'])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404, headers={"Content-Type": "application/json"}, stream=stream
        )

    with pytest.raises(NotFoundError) as exc_info:
        await _client(handler).download_certificate(VALID_TOKEN, "missing")

    assert exc_info.value.message == "Certificate not found"
    assert stream.closed is True


@pytest.mark.asyncio
async def test_download_quotes_certificate_id_in_path() -> None:
    api = FakeCertificateApi()
    with pytest.raises(NotFoundError):
        await _client(api).download_certificate(VALID_TOKEN, "a b")
    (call,) = api.requests
    assert call.url.raw_path == b"/api/certificates/a%20b/download"


@pytest.mark.asyncio
async def test_upload_sends_multipart_file_and_activity_name(tmp_path: Path) -> None:
    api = FakeCertificateApi()
    cert = tmp_path / "cert.pem"
    cert.write_bytes(b"-----BEGIN CERTIFICATE-----")

    await _client(api).upload_certificate(
        VALID_TOKEN,
        "Security Workshop",
        cert,
        filename="cert.pem",
        content_type="application/x-pem-file",
    )

    (call,) = api.calls("/certificates/upload")
    assert call.headers["content-type"].startswith("multipart/form-data; boundary=")
    (body,) = api.uploads
    assert b'name="activityName"' in body
    assert b"Security Workshop" in body
    assert b'filename="cert.pem"' in body
    assert b"-----BEGIN CERTIFICATE-----" in body


@pytest.mark.asyncio
async def test_upload_rejection_keeps_upstream_message(tmp_path: Path) -> None:
    api = FakeCertificateApi()
    cert = tmp_path / "cert.bin"
    cert.write_bytes(b"garbage")

    with pytest.raises(ValidationError) as exc_info:
        await _client(api).upload_certificate(
            VALID_TOKEN, "rejected activity", cert, filename="cert.bin"
        )
    assert exc_info.value.message == "Unsupported certificate format"
    assert "status=400" in str(exc_info.value)


@pytest.mark.parametrize(
    ("content_type", "expected"),
    [
        ("application/pdf", "pdf"),
        ("application/pdf; charset=binary", "pdf"),
        ("IMAGE/PNG", "png"),
        ("application/xml", "xml"),
        ("image/jpeg", "jpeg"),
        ("application/pkix-cert", "pkix-cert"),
        ("image/svg+xml", "svg"),
        ("application/x-vendor-cert", "x-vendor-cert"),
        ("application/octet-stream", "bin"),
        ("garbage", "bin"),
        (None, "bin"),
    ],
)
def test_extension_for_content_type(content_type: str | None, expected: str) -> None:
    assert extension_for_content_type(content_type) == expected


def test_certificate_id_of() -> None:
    assert certificate_id_of({"id": 5}) == "5"
    assert certificate_id_of({"_id": "abc"}) == "abc"
    assert certificate_id_of({"certificateId": " c-1 "}) == "c-1"
    assert certificate_id_of({"id": True}) is None
    assert certificate_id_of({"name": "x"}) is None
    assert certificate_id_of(["id", 1]) is None
