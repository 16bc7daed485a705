"""Error -> display text for the rendered views.

Handlers pass typed errors here; nothing upstream-specific about
authentication is ever echoed to the browser.
"""

from __future__ import annotations

from certportal.errors import (
    AuthenticationError,
    NotFoundError,
    PortalError,
    UpstreamUnavailableError,
    ValidationError,
)

INVALID_CREDENTIALS = "Invalid credentials"
REGISTRATION_FAILED = "Registration failed"
DASHBOARD_FAILED = "Failed to load certificates"
SESSION_EXPIRED = "Your session has expired. Please log in again."
DOWNLOAD_FAILED = "Failed to download the certificate."
UPLOAD_FAILED = "Upload failed"
UPSTREAM_UNAVAILABLE = "The certificate service is unavailable. Please try again later."


def status_for(error: PortalError) -> int:
    if isinstance(error, AuthenticationError):
        return 401
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, UpstreamUnavailableError):
        return 502
    return 500


def login_message(error: PortalError) -> str:
    return INVALID_CREDENTIALS


def register_message(error: PortalError) -> str:
    return REGISTRATION_FAILED


def dashboard_message(error: PortalError) -> str:
    if isinstance(error, AuthenticationError):
        return SESSION_EXPIRED
    return DASHBOARD_FAILED


def upload_message(error: PortalError) -> str:
    if isinstance(error, ValidationError):
        return f"{UPLOAD_FAILED}: {error.message}"
    if isinstance(error, AuthenticationError):
        return SESSION_EXPIRED
    if isinstance(error, UpstreamUnavailableError):
        return f"{UPLOAD_FAILED}: {UPSTREAM_UNAVAILABLE}"
    return UPLOAD_FAILED
