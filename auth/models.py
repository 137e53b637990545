"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

None of these outlive a single request. They are materialised fresh from the
stores and written back per operation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Account:
    """An identity owned by the user store.

    email is the lookup key and is unique at the store layer. The core never
    deletes accounts; it reads password_hash and, during a reset, replaces it.
    """

    email: str
    username: str
    password_hash: str
    id: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Claims:
    """Verified contents of a session token. Immutable once issued."""

    subject: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class ResetTicket:
    """The single live OTP ticket for an account.

    A new reset request overwrites the previous ticket (upsert by account_id).
    Tickets are never deleted; used=True is terminal until the next request.
    """

    account_id: str
    otp_code: str
    requested_at: datetime
    expires_at: datetime
    used: bool = False
    id: int | None = None
