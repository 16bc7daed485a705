from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from certportal.app import create_app
from certportal.config import PortalConfig
from certportal.home import PortalPaths, ensure_portal_layout
from certportal.upstream import build_http_client
from fake_upstream import API_URL, VALID_TOKEN, FakeCertificateApi


@pytest.fixture
def fake_api() -> FakeCertificateApi:
    return FakeCertificateApi()


@pytest.fixture
def portal_paths(tmp_path: Path) -> PortalPaths:
    return ensure_portal_layout(tmp_path / "home")


@pytest.fixture
def portal_config() -> PortalConfig:
    return PortalConfig.model_validate({"upstream": {"api_url": API_URL}})


@pytest.fixture
def client(
    fake_api: FakeCertificateApi,
    portal_paths: PortalPaths,
    portal_config: PortalConfig,
) -> Iterator[TestClient]:
    http = build_http_client(portal_config.upstream, transport=httpx.MockTransport(fake_api))
    app = create_app(portal_config, http_client=http, paths=portal_paths)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def logged_in(client: TestClient) -> TestClient:
    client.cookies.set("token", VALID_TOKEN)
    return client
