from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base class for failures reported by the upstream certificate API.

    Attributes:
        message: Human-readable message (may come from the upstream body)
        status_code: Upstream HTTP status, when there was one
        context: Additional context for logging
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class AuthenticationError(PortalError):
    """Bad credentials, or a missing/expired bearer token."""


class ValidationError(PortalError):
    """The upstream (or the portal itself) rejected the submitted input."""


class NotFoundError(PortalError):
    """Unknown certificate id."""


class UpstreamUnavailableError(PortalError):
    """Network failure, timeout, 5xx, or a reply the portal cannot understand."""
