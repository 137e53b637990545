"""
auth/guard.py -- Per-account brute-force lockout.

State machine per account:
  Open   -- fewer than max_attempts failures inside the trailing window.
  Locked -- max_attempts or more failures with attempt_time > now - lockout_secs.
            The password is not even checked while locked.
  Locked -> Open when the window slides past enough records, or immediately
            when reset() runs after a verified-correct password.

All state lives in AttemptStore, not in process memory, so every worker sees
the same count and a restart does not unlock anyone.

record_failure() and reset() are best-effort: a store error is logged and
swallowed so that a guard write failure never changes the response the client
gets. is_locked() is not best-effort -- if the count cannot be read the login
fails with DependencyError rather than silently skipping the lockout.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from auth.store import AttemptStore
from core.errors import DependencyError

logger = logging.getLogger("authcore.auth.guard")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoginGuard:
    def __init__(
        self,
        store: AttemptStore,
        max_attempts: int = 5,
        lockout_secs: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.lockout_secs = lockout_secs
        self._clock = clock

    def record_failure(self, account_id: str) -> None:
        try:
            self.store.add_failed_login(account_id, self._clock())
        except SQLAlchemyError:
            logger.exception("Failed to record login failure for account %s", account_id)

    def is_locked(self, account_id: str) -> bool:
        since = self._clock() - timedelta(seconds=self.lockout_secs)
        try:
            count = self.store.count_failed_logins(account_id, since)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read login failures for account %s", account_id)
            raise DependencyError() from exc
        if count >= self.max_attempts:
            logger.warning("Login lockout active for account %s", account_id)
            return True
        return False

    def reset(self, account_id: str) -> None:
        try:
            self.store.clear_failed_logins(account_id)
        except SQLAlchemyError:
            logger.exception("Failed to clear login failures for account %s", account_id)
