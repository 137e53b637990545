"""
auth/service.py -- Registration and login policy.

Login ordering (every step is load-bearing):
  1. Look up the account by normalised email. Unknown email -> burn one dummy
     Argon2 verification, then the same 401 as a wrong password.
  2. Locked -> 429 before the password is looked at, so a correct guess made
     during a lockout is indistinguishable from a wrong one.
  3. Verify the password. A malformed stored digest counts as a mismatch.
  4. Success -> clear the guard, opportunistically upgrade the digest, issue a
     token. The caller attaches it with the TokenCarrier.
  5. Failure -> record the failure (best-effort), 401.

Registration validates every field at once, hashes, inserts (unique email ->
409), and issues a token exactly like a login.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.guard import LoginGuard
from auth.hashing import CredentialHasher
from auth.models import Account
from auth.store import UserStore
from auth.tokens import TokenService
from auth.validation import PasswordPolicy, normalize_email, validate_login, validate_register
from core.errors import AuthenticationError, ConflictError, DependencyError, HashError, RateLimitError

logger = logging.getLogger("authcore.auth.service")

LOCKED_MESSAGE = "Account temporarily locked due to too many failed login attempts. Try again later."


class AuthService:
    def __init__(
        self,
        users: UserStore,
        hasher: CredentialHasher,
        tokens: TokenService,
        guard: LoginGuard,
        policy: PasswordPolicy,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.tokens = tokens
        self.guard = guard
        self.policy = policy

    def register(self, username: str, email: str, password: str) -> tuple[Account, str]:
        """Create an account and return it with a fresh token.

        Raises ValidationError, ConflictError, DependencyError.
        """
        email = normalize_email(email)
        username = username.strip()
        validate_register(username, email, password, self.policy)

        try:
            digest = self.hasher.hash(password)
        except HashError as exc:
            logger.exception("Registration: hashing failed")
            raise DependencyError() from exc

        account = Account(email=email, username=username, password_hash=digest)
        try:
            account.id = self.users.create_account(account)
        except IntegrityError as exc:
            raise ConflictError() from exc
        except SQLAlchemyError as exc:
            logger.exception("Registration: account insert failed")
            raise DependencyError() from exc

        logger.info("Account %s registered", account.id)
        return account, self.tokens.issue(account.id)

    def login(self, email: str, password: str) -> tuple[Account, str]:
        """Authenticate and return the account with a fresh token.

        Raises ValidationError, AuthenticationError, RateLimitError,
        DependencyError.
        """
        email = normalize_email(email)
        validate_login(email, password)

        try:
            account = self.users.get_by_email(email)
        except SQLAlchemyError as exc:
            logger.exception("Login: account lookup failed")
            raise DependencyError() from exc

        if account is None:
            self.hasher.verify_dummy(password)
            raise AuthenticationError()

        if self.guard.is_locked(account.id):
            raise RateLimitError(LOCKED_MESSAGE, code="account_locked", retry_after=self.guard.lockout_secs)

        try:
            verified = self.hasher.verify(password, account.password_hash)
        except HashError:
            logger.warning("Login: stored digest for account %s is not verifiable", account.id)
            verified = False

        if not verified:
            self.guard.record_failure(account.id)
            raise AuthenticationError()

        self.guard.reset(account.id)
        self._upgrade_digest(account, password)
        return account, self.tokens.issue(account.id)

    def _upgrade_digest(self, account: Account, password: str) -> None:
        """Re-hash under the current cost parameters if they changed. Best-effort."""
        if not self.hasher.needs_rehash(account.password_hash):
            return
        try:
            self.users.update_password_hash(account.email, self.hasher.hash(password), account_id=account.id)
        except (HashError, SQLAlchemyError):
            logger.exception("Login: digest upgrade failed for account %s", account.id)
