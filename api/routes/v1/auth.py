"""
api/routes/v1/auth.py -- Authentication and password-reset REST endpoints.

Routes (all Public -- the AuthGate lets the /auth/ prefix through):
  POST /api/v1/auth/register        -- create account; 201 + cookie
  POST /api/v1/auth/login           -- password login; 200 + cookie
  POST /api/v1/auth/logout          -- clears cookie; 200
  POST /api/v1/auth/reset/request   -- issue OTP; always the same 200 body
  POST /api/v1/auth/reset/verify    -- consume OTP, set new password

Every AuthCoreError raised below is converted to a response right here, at the
boundary of the operation that detected it. Nothing bubbles into the gate.

Security:
  Unknown email on login -> byte-identical 401 to a wrong password.
  Unknown email on reset request -> byte-identical 200 to a known one; the
      email goes out as a background task after the response is built.
  Cache-Control: no-store on responses that carry a fresh token.

Handlers are plain `def` so FastAPI runs them in its thread pool; Argon2 is
CPU- and memory-bound and must not block the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetRequestBody,
    ResetVerifyRequest,
    error_response,
)
from auth.cookies import TokenCarrier
from auth.reset import GENERIC_REQUEST_MESSAGE, ResetProtocol
from auth.service import AuthService
from auth.validation import normalize_email, validate_reset_request, validate_reset_verify
from core.errors import AuthCoreError

router = APIRouter()


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=MessageResponse(message=message).model_dump())


@router.post("/auth/register", status_code=201, response_model=MessageResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, then sign the caller in with a session cookie."""
    service: AuthService = request.app.state.auth_service
    carrier: TokenCarrier = request.app.state.token_carrier
    try:
        _account, token = service.register(body.username, body.email, body.password)
    except AuthCoreError as exc:
        return error_response(exc)

    resp = _message(201, "User registered successfully")
    carrier.attach(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login", response_model=MessageResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Lockout (429) is the only failure that differs from "Invalid credentials".
    """
    service: AuthService = request.app.state.auth_service
    carrier: TokenCarrier = request.app.state.token_carrier
    try:
        _account, token = service.login(body.email, body.password)
    except AuthCoreError as exc:
        resp = error_response(exc)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = _message(200, "Logged in successfully")
    carrier.attach(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Remove the browser's copy of the token. The token itself stays valid until exp."""
    carrier: TokenCarrier = request.app.state.token_carrier
    resp = _message(200, "Logged out")
    carrier.clear(resp)
    return resp


@router.post("/auth/reset/request", response_model=MessageResponse)
def reset_request(request: Request, body: ResetRequestBody, background_tasks: BackgroundTasks) -> JSONResponse:
    """Send a reset code if the email is registered. Same answer either way."""
    protocol: ResetProtocol = request.app.state.reset_protocol
    email = normalize_email(body.email)
    try:
        validate_reset_request(email)
        delivery = protocol.request(email)
    except AuthCoreError as exc:
        return error_response(exc)

    if delivery is not None:
        background_tasks.add_task(protocol.deliver, delivery)
    return _message(200, GENERIC_REQUEST_MESSAGE)


@router.post("/auth/reset/verify", response_model=MessageResponse)
def reset_verify(request: Request, body: ResetVerifyRequest) -> JSONResponse:
    """Consume a reset code and replace the account's password."""
    protocol: ResetProtocol = request.app.state.reset_protocol
    settings = request.app.state.settings
    email = normalize_email(body.email)
    try:
        validate_reset_verify(
            email,
            body.otp.strip(),
            body.new_password,
            body.confirm_password,
            request.app.state.password_policy,
            otp_digits=settings.otp_digits,
        )
        protocol.verify(body.account_id, email, body.otp.strip(), body.new_password, body.confirm_password)
    except AuthCoreError as exc:
        return error_response(exc)
    return _message(200, "Password reset successful")
