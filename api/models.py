"""
API request and response models for authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They only check
shape (types, presence, hard size caps); policy -- email format, password
strength -- lives in auth/validation.py so every failing field is reported in
one ValidationError.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from __future__ import annotations

from typing import Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.errors import AuthCoreError, RateLimitError

# Hard caps on raw input size. Policy limits are tighter and configurable.
_MAX_FIELD = 1024

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    username: str = Field(max_length=_MAX_FIELD)
    email: str = Field(max_length=_MAX_FIELD)
    password: str = Field(max_length=_MAX_FIELD)


class LoginRequest(BaseModel):
    email: str = Field(max_length=_MAX_FIELD)
    password: str = Field(max_length=_MAX_FIELD)


class ResetRequestBody(BaseModel):
    email: str = Field(max_length=_MAX_FIELD)


class ResetVerifyRequest(BaseModel):
    account_id: str = Field(max_length=64)
    email: str = Field(max_length=_MAX_FIELD)
    otp: str = Field(max_length=16)
    new_password: str = Field(max_length=_MAX_FIELD)
    confirm_password: str = Field(max_length=_MAX_FIELD)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class SessionResponse(BaseModel):
    """Identity of the caller as proven by its token."""

    account_id: str
    issued_at: str
    expires_at: str
    source: str


class FieldError(BaseModel):
    field: str
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None
    fields: Optional[list[FieldError]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Error conversion
# ---------------------------------------------------------------------------


def error_response(exc: AuthCoreError) -> JSONResponse:
    """Convert a domain error into the shared {"error": {...}} envelope."""
    fields = getattr(exc, "fields", None) or None
    body = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            fields=[FieldError(**f) for f in fields] if fields else None,
        )
    ).model_dump(exclude_none=True)
    resp = JSONResponse(status_code=exc.status_code, content=body)
    if isinstance(exc, RateLimitError) and exc.retry_after:
        resp.headers["Retry-After"] = str(exc.retry_after)
    return resp
