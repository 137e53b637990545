"""
auth/reset.py -- One-time-password password reset.

State machine per account:
  NoTicket -> Pending   request() upserts a ticket (unused, unexpired).
  Pending  -> Used      verify() succeeds; terminal.
  Pending  -> Expired   now >= expires_at; terminal until the next request()
                        overwrites the ticket and moves it back to Pending.

request(email):
  Unknown email -> no store writes, byte-identical response to a known one.
  The HTTP layer sends the email after the response is built, so SMTP latency
  never shows; the rate-limit queries and ticket writes of the known path
  still make it slightly slower than the unknown one.
  Known email -> hourly limit, minimum interval, fresh code from the OS
  CSPRNG, atomic upsert, request record, then hand back a ResetDelivery for
  the caller to dispatch.

verify(...):
  Mismatched confirmation -> 400. Missing ticket, wrong code, used ticket and
  expired ticket all collapse into the same "Invalid or expired OTP" 400. Then
  hash, and in one transaction consume the ticket (compare-and-set on used = 0)
  and update the password. A ticket lost to a concurrent verify -> the same
  400; no matching account -> 404 and the ticket stays unused. Either both
  writes land or neither does.

Never logged: the OTP, the new password, the digest.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from auth.guard import utcnow
from auth.hashing import CredentialHasher
from auth.mailer import DeliveryError, EmailDispatcher
from auth.models import ResetTicket
from auth.store import AttemptStore, Redemption, UserStore
from core.errors import DependencyError, HashError, NotFoundError, RateLimitError, ValidationError

logger = logging.getLogger("authcore.auth.reset")

GENERIC_REQUEST_MESSAGE = "If this email is registered, a reset code has been sent."
INVALID_OTP_MESSAGE = "Invalid or expired OTP"
RESET_SUBJECT = "Your password reset code"


def generate_otp(digits: int = 6) -> str:
    """Return a uniformly random code in [10**(digits-1), 10**digits).

    secrets.randbelow draws by rejection sampling, so there is no modulo bias.
    """
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


@dataclass(frozen=True)
class ResetDelivery:
    """An email the caller must dispatch once the response is settled."""

    to: str
    subject: str
    body: str
    account_id: str


class ResetProtocol:
    def __init__(
        self,
        users: UserStore,
        attempts: AttemptStore,
        hasher: CredentialHasher,
        mailer: EmailDispatcher,
        limit_per_hour: int = 5,
        min_interval_secs: int = 60,
        expiry_minutes: int = 10,
        otp_digits: int = 6,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.users = users
        self.attempts = attempts
        self.hasher = hasher
        self.mailer = mailer
        self.limit_per_hour = limit_per_hour
        self.min_interval_secs = min_interval_secs
        self.expiry_minutes = expiry_minutes
        self.otp_digits = otp_digits
        self._clock = clock

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request(self, email: str) -> ResetDelivery | None:
        """Issue a ticket for email if it is registered.

        Returns the pending delivery, or None when nothing should be sent.
        Raises RateLimitError or DependencyError.
        """
        try:
            account = self.users.get_by_email(email)
        except SQLAlchemyError as exc:
            logger.exception("Reset request: account lookup failed")
            raise DependencyError() from exc
        if account is None:
            return None

        now = self._clock()
        horizon = now - timedelta(seconds=max(3600, self.min_interval_secs))
        try:
            self.attempts.prune_reset_requests(horizon)
            hourly = self.attempts.count_reset_requests(account.id, now - timedelta(hours=1))
            last = self.attempts.last_reset_request(account.id)
        except SQLAlchemyError as exc:
            logger.exception("Reset request: rate-limit lookup failed for account %s", account.id)
            raise DependencyError() from exc

        if hourly >= self.limit_per_hour:
            logger.warning("Reset hourly limit reached for account %s", account.id)
            raise RateLimitError(
                "Too many reset requests. Please try again later.",
                code="reset_rate_limited",
                retry_after=3600,
            )
        if last is not None:
            elapsed = (now - last).total_seconds()
            if elapsed < self.min_interval_secs:
                logger.warning("Reset requested again too soon for account %s", account.id)
                raise RateLimitError(
                    "Please wait before requesting another reset code.",
                    code="reset_rate_limited",
                    retry_after=max(1, int(self.min_interval_secs - elapsed)),
                )

        otp = generate_otp(self.otp_digits)
        ticket = ResetTicket(
            account_id=account.id,
            otp_code=otp,
            requested_at=now,
            expires_at=now + timedelta(minutes=self.expiry_minutes),
        )
        try:
            self.attempts.upsert_ticket(ticket)
            self.attempts.add_reset_request(account.id, now)
        except SQLAlchemyError as exc:
            logger.exception("Reset request: ticket write failed for account %s", account.id)
            raise DependencyError() from exc

        logger.info("Reset ticket issued for account %s", account.id)
        return ResetDelivery(
            to=account.email,
            subject=RESET_SUBJECT,
            body=self._render_body(otp),
            account_id=account.id,
        )

    def deliver(self, delivery: ResetDelivery) -> None:
        """Send the code. Failures are logged and never re-raised."""
        try:
            self.mailer.send(delivery.to, delivery.subject, delivery.body)
        except DeliveryError:
            logger.exception("Reset email for account %s was not delivered", delivery.account_id)

    def _render_body(self, otp: str) -> str:
        return (
            f"Your password reset code is {otp}.\n\n"
            f"It expires in {self.expiry_minutes} minutes and can be used once.\n"
            "If you did not request a password reset, you can ignore this email.\n"
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, account_id: str, email: str, otp: str, new_password: str, confirm_password: str) -> None:
        """Consume a ticket and replace the account's password.

        Raises ValidationError (mismatch, invalid/expired OTP), NotFoundError,
        DependencyError.
        """
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match", code="passwords_mismatch")

        try:
            ticket = self.attempts.get_ticket(account_id)
        except SQLAlchemyError as exc:
            logger.exception("Reset verify: ticket lookup failed for account %s", account_id)
            raise DependencyError() from exc

        now = self._clock()
        if (
            ticket is None
            or not hmac.compare_digest(ticket.otp_code.encode(), otp.encode())
            or ticket.used
            or now >= ticket.expires_at
        ):
            raise ValidationError(INVALID_OTP_MESSAGE, code="invalid_otp")

        try:
            digest = self.hasher.hash(new_password)
        except HashError as exc:
            logger.exception("Reset verify: hashing failed for account %s", account_id)
            raise DependencyError() from exc

        try:
            outcome = self.attempts.redeem_ticket(ticket.id, otp, now, account_id, email, digest)
        except SQLAlchemyError as exc:
            logger.exception("Reset verify: ticket redemption failed for account %s", account_id)
            raise DependencyError() from exc

        if outcome is Redemption.INVALID_TICKET:
            logger.warning("Reset ticket %s for account %s was consumed concurrently", ticket.id, account_id)
            raise ValidationError(INVALID_OTP_MESSAGE, code="invalid_otp")
        if outcome is Redemption.NO_ACCOUNT:
            raise NotFoundError()
        logger.info("Password reset completed for account %s", account_id)
