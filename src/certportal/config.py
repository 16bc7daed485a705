from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field


class NetworkConfig(BaseModel):
    bind_host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000, ge=1, le=65535)


class UpstreamConfig(BaseModel):
    api_url: str | None = Field(
        default=None,
        description="Base URL of the certificate API, e.g. https://certs.example.com/api",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Bound on every upstream call (connect, read, write and pool).",
    )

    def require_api_url(self) -> str:
        raw = (self.api_url or "").strip()
        if not raw:
            raise ValueError("API_URL is not configured")
        return raw.rstrip("/")


class SessionConfig(BaseModel):
    cookie_name: str = Field(default="token", min_length=1)
    cookie_secure: bool = Field(default=False)
    cookie_max_age: int | None = Field(
        default=None,
        ge=1,
        description="Cookie lifetime in seconds; omitted means a browser-session cookie.",
    )


class UploadConfig(BaseModel):
    max_upload_mb: int = Field(default=10, ge=1)

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


class LoggingConfig(BaseModel):
    max_size_mb: int = Field(
        default=10, ge=1, description="Max size of a log file in MB before rolling."
    )
    backup_count: int = Field(default=5, ge=1, description="Number of log archives to keep.")


class PortalConfig(BaseModel):
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    uploads: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# env var -> (section, field)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "CERTPORTAL_BIND": ("network", "bind_host"),
    "PORT": ("network", "port"),
    "API_URL": ("upstream", "api_url"),
    "UPSTREAM_TIMEOUT_SECONDS": ("upstream", "timeout_seconds"),
    "COOKIE_SECURE": ("session", "cookie_secure"),
    "COOKIE_MAX_AGE": ("session", "cookie_max_age"),
    "MAX_UPLOAD_MB": ("uploads", "max_upload_mb"),
}


def load_portal_config(environ: Mapping[str, str] | None = None) -> PortalConfig:
    """Build config from process environment variables.

    - Unset or blank variables keep their defaults.
    - Validation (and string coercion) is performed by Pydantic.
    """

    env = os.environ if environ is None else environ

    raw: dict[str, dict[str, str]] = {}
    for name, (section, field) in _ENV_FIELDS.items():
        value = (env.get(name) or "").strip()
        if value:
            raw.setdefault(section, {})[field] = value

    return PortalConfig.model_validate(raw)
