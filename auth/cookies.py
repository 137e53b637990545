"""
auth/cookies.py -- Carry the session token in the access_token cookie.

Cookie flags:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  samesite="lax": sent on same-site requests and top-level GET navigations,
      not on cross-site POST -- CSRF mitigation for most cases.
  secure: only in production, so local development over plain HTTP works.
  path="/": the cookie reaches every route behind the gate.
  no max_age: a session cookie. The signed exp inside the token is the real
      deadline; the browser copy may outlive it and is then simply rejected.

clear() is the only logout available. It removes the browser's copy; the
token itself stays valid until it expires.
"""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import Response

ACCESS_TOKEN_COOKIE = "access_token"


class TokenCarrier:
    def __init__(self, secure: bool = False) -> None:
        self.secure = secure

    def attach(self, response: Response, token: str) -> None:
        """Write the token as the access_token session cookie."""
        response.set_cookie(
            ACCESS_TOKEN_COOKIE,
            value=token,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )

    def clear(self, response: Response) -> None:
        """Overwrite the cookie with an empty value and max-age=0."""
        response.set_cookie(
            ACCESS_TOKEN_COOKIE,
            value="",
            max_age=0,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )

    def extract(self, request: Request) -> str | None:
        """Return the cookie value, or None when absent or empty."""
        return request.cookies.get(ACCESS_TOKEN_COOKIE) or None
