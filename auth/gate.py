"""
auth/gate.py -- Per-request classification and bearer check.

Every request is Public or Protected:
  Public    -- CORS pre-flight (OPTIONS), exact public paths (the liveness
               probe), and anything under a public prefix (the auth endpoints).
  Protected -- everything else. Needs a currently-valid token or it is
               rejected with 401 before reaching any handler.

Credential sources, in fixed priority order:
  1. Authorization: Bearer <token>
  2. the access_token cookie
An explicit header therefore always wins over an implicit cookie. A header
that fails validation does not end the search; the cookie is still tried.

The HTTP wiring lives in api/main.py; this module only decides.
"""

from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import Request

from auth.cookies import TokenCarrier
from auth.models import Claims
from auth.tokens import TokenService
from core.errors import InvalidToken

_BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class GateResult:
    claims: Claims
    source: str  # "header" or "cookie"


class AuthGate:
    def __init__(
        self,
        tokens: TokenService,
        carrier: TokenCarrier,
        public_paths: tuple[str, ...] = ("/health",),
        public_prefixes: tuple[str, ...] = (),
    ) -> None:
        self.tokens = tokens
        self.carrier = carrier
        self.public_paths = frozenset(public_paths)
        self.public_prefixes = tuple(public_prefixes)

    def is_public(self, method: str, path: str) -> bool:
        if method == "OPTIONS":
            return True
        if path in self.public_paths:
            return True
        return any(path.startswith(prefix) for prefix in self.public_prefixes)

    def authenticate(self, request: Request) -> GateResult | None:
        header_token = self._bearer_token(request)
        if header_token:
            claims = self._validate(header_token)
            if claims is not None:
                return GateResult(claims=claims, source="header")

        cookie_token = self.carrier.extract(request)
        if cookie_token:
            claims = self._validate(cookie_token)
            if claims is not None:
                return GateResult(claims=claims, source="cookie")

        return None

    def _validate(self, token: str) -> Claims | None:
        try:
            return self.tokens.validate(token)
        except InvalidToken:
            return None

    @staticmethod
    def _bearer_token(request: Request) -> str | None:
        header = request.headers.get("Authorization", "")
        if header[: len(_BEARER_PREFIX)].lower() != _BEARER_PREFIX:
            return None
        return header[len(_BEARER_PREFIX) :].strip() or None
