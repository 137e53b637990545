"""
api/main.py -- FastAPI application factory for authcore.

create_app() is the composition root: it reads Settings once, builds every
component (stores, hasher, token service, carrier, guard, reset protocol, gate,
throttles) and hangs them on app.state. Nothing is module-global, so each test
can build an isolated app with its own database and counters.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- method, path, status, latency, client
  2. security_headers   -- X-Frame-Options, CSP, HSTS in production, ...
  3. CORSMiddleware     -- configured origins; permissive in development
  4. throttle           -- IP fixed-window limits (general + auth endpoints)
  5. auth_gate          -- Public/Protected classification, bearer check

Starlette makes the most recently registered middleware the outermost one, so
they are registered below in reverse order: gate first, logging last.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from api.headers import apply_security_headers
from api.limiter import IpRateLimiter
from api.models import ErrorDetail, ErrorResponse, FieldError, error_response
from api.routes.v1.auth import router as auth_router
from api.routes.v1.session import router as session_router
from auth.cookies import TokenCarrier
from auth.gate import AuthGate
from auth.guard import LoginGuard, utcnow
from auth.hashing import CredentialHasher
from auth.mailer import EmailDispatcher, build_mailer
from auth.reset import ResetProtocol
from auth.service import AuthService
from auth.store import AttemptStore, UserStore, create_store_engine
from auth.tokens import TokenService
from auth.validation import PasswordPolicy
from core.config import Settings, get_settings
from core.errors import AuthCoreError, AuthenticationError, RateLimitError

VERSION = "0.1.0"

logger = logging.getLogger("authcore.api")


def create_app(
    settings: Settings | None = None,
    *,
    mailer: EmailDispatcher | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Build a fully wired application.

    Args:
        settings: Configuration. Defaults to the process-wide get_settings().
        mailer:   Email dispatcher. Defaults to SMTP when configured, else a
                  logging stand-in.
        clock:    Source of "now" for the lockout window and reset tickets.
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    engine = create_store_engine(settings.database_url)
    users = UserStore(engine)
    attempts = AttemptStore(engine)
    hasher = CredentialHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
    tokens = TokenService(settings.secret_key, ttl_seconds=settings.token_ttl_seconds)
    carrier = TokenCarrier(secure=settings.is_production)
    guard = LoginGuard(
        attempts,
        max_attempts=settings.login_max_attempts,
        lockout_secs=settings.login_lockout_secs,
        clock=clock,
    )
    policy = PasswordPolicy(settings.password_min_length, settings.password_max_length)
    reset_protocol = ResetProtocol(
        users,
        attempts,
        hasher,
        mailer or build_mailer(settings),
        limit_per_hour=settings.otp_limit_per_hour,
        min_interval_secs=settings.otp_min_interval_secs,
        expiry_minutes=settings.otp_expiry_minutes,
        otp_digits=settings.otp_digits,
        clock=clock,
    )
    auth_prefix = f"{settings.api_prefix}/auth/"
    public_paths = ("/health", "/docs", "/openapi.json") if settings.debug else ("/health",)
    gate = AuthGate(tokens, carrier, public_paths=public_paths, public_prefixes=(auth_prefix,))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "authcore API starting (environment=%s, rate_limiting=%s)",
            settings.environment,
            settings.enable_rate_limiting,
        )
        yield
        engine.dispose()
        logger.info("authcore API shutdown complete")

    app = FastAPI(
        title="authcore API",
        description="Bearer-token authentication, login lockout, and OTP password reset.",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.user_store = users
    app.state.attempt_store = attempts
    app.state.hasher = hasher
    app.state.token_service = tokens
    app.state.token_carrier = carrier
    app.state.login_guard = guard
    app.state.password_policy = policy
    app.state.auth_service = AuthService(users, hasher, tokens, guard, policy)
    app.state.reset_protocol = reset_protocol
    app.state.auth_gate = gate
    app.state.general_limiter = IpRateLimiter(
        settings.rate_limit_general_requests, settings.general_window_secs, namespace="general"
    )
    app.state.auth_limiter = IpRateLimiter(
        settings.rate_limit_auth_requests, settings.auth_window_secs, namespace="auth"
    )

    # ------------------------------------------------------------------
    # Middleware (innermost first -- see module docstring)
    # ------------------------------------------------------------------

    @app.middleware("http")
    async def auth_gate(request: Request, call_next):
        """Reject Protected requests without a valid token before any handler runs."""
        if gate.is_public(request.method, request.url.path):
            return await call_next(request)
        result = gate.authenticate(request)
        if result is None:
            return error_response(AuthenticationError("Authentication required.", code="unauthorized"))
        request.state.claims = result.claims
        request.state.credential_source = result.source
        return await call_next(request)

    @app.middleware("http")
    async def throttle(request: Request, call_next):
        """Apply the general IP limit to everything but /health, plus the auth limit to auth POSTs."""
        if not settings.enable_rate_limiting or request.url.path == "/health":
            return await call_next(request)
        checks = [app.state.general_limiter]
        if request.method == "POST" and request.url.path.startswith(auth_prefix):
            checks.append(app.state.auth_limiter)
        for limiter in checks:
            if not limiter.check(request):
                logger.warning(
                    "Rate limit (%s) exceeded for %s on %s",
                    limiter.namespace,
                    request.client.host if request.client else "unknown",
                    request.url.path,
                )
                return error_response(RateLimitError(retry_after=limiter.retry_after(request)))
        return await call_next(request)

    origins = settings.cors_origins
    if origins or not settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_origin_regex=None if origins else r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Accept", "Content-Type"],
            max_age=3600,
        )

    if settings.enable_security_headers:

        @app.middleware("http")
        async def security_headers(request: Request, call_next):
            response = await call_next(request)
            return apply_security_headers(response, settings.is_production)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # ------------------------------------------------------------------
    # Routers
    # ------------------------------------------------------------------

    app.include_router(auth_router, prefix=settings.api_prefix, tags=["Auth"])
    app.include_router(session_router, prefix=settings.api_prefix, tags=["Session"])

    @app.get("/health", response_class=PlainTextResponse, tags=["Health"])
    async def health() -> str:
        """Liveness probe. Public and never throttled."""
        return "Server is healthy"

    # ------------------------------------------------------------------
    # Exception handlers -- one {"error": {...}} envelope for everything
    # ------------------------------------------------------------------

    @app.exception_handler(AuthCoreError)
    async def auth_core_error_handler(request: Request, exc: AuthCoreError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 400 listing every malformed or missing field in the body."""
        fields = [
            FieldError(
                field=".".join(str(part) for part in err.get("loc", ())[1:]) or "body",
                message=err.get("msg", "Invalid value"),
            )
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(
                error=ErrorDetail(code="validation_error", message="Request validation failed.", fields=fields)
            ).model_dump(exclude_none=True),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump(exclude_none=True),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all. The traceback goes to the log, never into the response body."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
            ).model_dump(exclude_none=True),
        )

    return app
