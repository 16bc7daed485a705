from __future__ import annotations

from typing import Final

from starlette.requests import Request
from starlette.responses import Response

from certportal.config import SessionConfig

AUTHORIZATION_HEADER: Final[str] = "Authorization"
TOKEN_COOKIE: Final[str] = "token"


def bearer_header(token: str) -> dict[str, str]:
    return {AUTHORIZATION_HEADER: f"Bearer {token}"}


class CookieTokenStore:
    """Keeps the upstream-issued bearer token in a single browser cookie.

    The token is opaque here: no signing, decoding or expiry checks. An expired
    token is only discovered when the upstream rejects it.
    """

    def __init__(
        self,
        cookie_name: str = TOKEN_COOKIE,
        *,
        secure: bool = False,
        max_age: int | None = None,
    ) -> None:
        self.cookie_name = cookie_name
        self._secure = secure
        self._max_age = max_age

    @classmethod
    def from_config(cls, config: SessionConfig) -> CookieTokenStore:
        return cls(config.cookie_name, secure=config.cookie_secure, max_age=config.cookie_max_age)

    def get(self, request: Request) -> str | None:
        raw = request.cookies.get(self.cookie_name)
        if raw is None:
            return None
        return raw.strip() or None

    def set(self, response: Response, token: str) -> None:
        response.set_cookie(
            self.cookie_name,
            token,
            httponly=True,
            samesite="lax",
            secure=self._secure,
            max_age=self._max_age,
        )

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name)
