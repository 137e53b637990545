"""
auth/tokens.py -- Signed, self-contained session tokens (JWT, HS256).

Security design decisions:
  JWT: python-jose with HS256. Tokens carry the account id as "sub" plus
       "iat" and "exp". Nothing is stored server-side; expiry is the only way a
       token ends. Logout removes the client's copy, not the token.

  Validity: a token is valid iff its signature verifies against the current
       secret AND now < exp. jose alone accepts a token whose exp equals the
       current second, so validate() re-checks the boundary itself.

  Secret: handed in once by the composition root (api.main.create_app) and
       never rotated at runtime. There is no refresh flow; clients re-login.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Claims
from core.errors import InvalidToken

_ALGORITHM = "HS256"


class TokenService:
    """Issue and validate session tokens.

    Usage:
        tokens = TokenService(settings.secret_key, ttl_seconds=settings.token_ttl_seconds)
        token = tokens.issue(account.id)
        claims = tokens.validate(token)   # raises InvalidToken
    """

    def __init__(self, secret_key: str, ttl_seconds: int) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty secret key.")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds

    def issue(self, subject: str, ttl_seconds: int | None = None) -> str:
        """Encode a signed token for subject, expiring ttl seconds from now."""
        duration = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(subject),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=duration)).timestamp()),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str) -> Claims:
        """Verify signature, shape and expiry. Raises InvalidToken on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc

        subject = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken("missing subject")
        if not isinstance(exp, (int, float)) or not isinstance(iat, (int, float)):
            raise InvalidToken("missing timestamps")

        now = datetime.now(timezone.utc).timestamp()
        if now >= exp:
            raise InvalidToken("token expired")

        return Claims(
            subject=subject,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )
