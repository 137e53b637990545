"""
auth/dependencies.py -- FastAPI Depends() helpers for authenticated routes.

The AuthGate middleware has already validated the token and stored the result
on request.state before any Protected handler runs. These helpers read it back.

try_get_claims() is the soft variant (returns None).
get_current_claims() raises HTTP 401 -- a second line of defence in case a
route is ever mounted under a public prefix by mistake.

Layer rule: may import fastapi (this module is part of the DI system), never
from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Claims


def try_get_claims(request: Request) -> Claims | None:
    return getattr(request.state, "claims", None)


def get_current_claims(request: Request) -> Claims:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: Claims = Depends(get_current_claims)): ...
    """
    claims = try_get_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return claims
