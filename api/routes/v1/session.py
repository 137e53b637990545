"""
api/routes/v1/session.py -- Protected endpoint describing the caller's session.

GET /api/v1/session is not under the /auth/ prefix, so the AuthGate requires
a valid bearer header or cookie before this handler is reached. Clients use it
to check whether they are still signed in.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import SessionResponse
from auth.dependencies import get_current_claims
from auth.models import Claims

router = APIRouter()


@router.get("/session", response_model=SessionResponse)
async def current_session(request: Request, claims: Claims = Depends(get_current_claims)) -> SessionResponse:
    return SessionResponse(
        account_id=claims.subject,
        issued_at=claims.issued_at.isoformat(),
        expires_at=claims.expires_at.isoformat(),
        source=getattr(request.state, "credential_source", "unknown"),
    )
