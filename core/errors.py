"""
core/errors.py -- Error taxonomy shared by auth/ and api/.

Every client-visible failure is an AuthCoreError subclass carrying its HTTP
status, a stable machine-readable code, and a human message. The route layer
converts these to the {"error": {...}} envelope at its boundary; nothing here
knows about HTTP frameworks.

Messages are deliberately generic where an attacker could learn something
from them (authentication, dependency failures). Rate-limit messages may name
the reason category but never remaining-attempt counts.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AuthCoreError(Exception):
    """Base class for failures that map to a client response."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.message
        if code is not None:
            self.code = code
        super().__init__(self.message)


class ValidationError(AuthCoreError):
    """Malformed or out-of-policy input. Lists every failing field at once."""

    status_code = 400
    code = "validation_error"
    message = "Request validation failed."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        fields: list[dict[str, str]] | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.fields = fields or []


class AuthenticationError(AuthCoreError):
    status_code = 401
    code = "bad_credentials"
    message = "Invalid credentials"


class RateLimitError(AuthCoreError):
    status_code = 429
    code = "rate_limited"
    message = "Too many requests."

    def __init__(self, message: str | None = None, *, code: str | None = None, retry_after: int | None = None) -> None:
        super().__init__(message, code=code)
        self.retry_after = retry_after


class ConflictError(AuthCoreError):
    status_code = 409
    code = "conflict"
    message = "An account with this email address already exists."


class NotFoundError(AuthCoreError):
    status_code = 404
    code = "not_found"
    message = "No user found."


class DependencyError(AuthCoreError):
    """A store or dispatcher failed. Detail goes to the log, never the client."""

    status_code = 500
    code = "service_unavailable"
    message = "The service is temporarily unavailable."


# ---------------------------------------------------------------------------
# Component-level failures (converted by callers, never sent as-is)
# ---------------------------------------------------------------------------


class HashError(Exception):
    """Password hashing failed, or a stored digest is not well-formed."""


class InvalidToken(Exception):
    """Token signature, payload, or expiry check failed."""
