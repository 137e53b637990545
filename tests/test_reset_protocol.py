"""Unit tests for auth/reset.py -- OTP password reset.

Covers:
- request() on an unknown email writes nothing and returns None
- request() issues one pending ticket with a fresh code and a 10 minute expiry
- minimum interval and hourly limit (rejected requests leave the ticket alone)
- verify() success, single use, wrong code, expiry, mismatch, wrong email
- a store failure during redemption leaves the password untouched
- two concurrent verifies with one code change the password once
- delivery failures are logged, never raised
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from auth.hashing import CredentialHasher
from auth.models import Account
from auth.reset import INVALID_OTP_MESSAGE, RESET_SUBJECT, ResetProtocol, generate_otp
from auth.store import AttemptStore, UserStore, create_store_engine
from core.errors import AuthCoreError, DependencyError, NotFoundError, RateLimitError, ValidationError
from tests.helpers import OTHER_PASSWORD, STRONG_PASSWORD, RecordingMailer

EMAIL = "alice@example.com"


@pytest.fixture
def account_id(users, hasher) -> str:
    return users.create_account(Account(email=EMAIL, username="alice", password_hash=hasher.hash(STRONG_PASSWORD)))


@pytest.fixture
def protocol(users, attempts, hasher, mailer, clock) -> ResetProtocol:
    return ResetProtocol(users, attempts, hasher, mailer, clock=clock)


def _issue(protocol: ResetProtocol) -> str:
    """Request a code, deliver it, and return it as the user would read it."""
    delivery = protocol.request(EMAIL)
    assert delivery is not None
    protocol.deliver(delivery)
    return protocol.mailer.last_code()


class TestGenerateOtp:
    @pytest.mark.parametrize("digits", [4, 6, 8])
    def test_length_and_range(self, digits: int) -> None:
        for _ in range(200):
            code = generate_otp(digits)
            assert len(code) == digits
            assert code.isdigit()
            assert code[0] != "0"


class TestRequest:
    def test_unknown_email_writes_nothing(self, protocol: ResetProtocol, attempts, mailer) -> None:
        assert protocol.request("ghost@example.com") is None
        assert mailer.sent == []

    def test_known_email_issues_pending_ticket(self, protocol: ResetProtocol, attempts, account_id, clock) -> None:
        code = _issue(protocol)
        ticket = attempts.get_ticket(account_id)
        assert ticket.otp_code == code
        assert len(code) == 6
        assert ticket.used is False
        assert ticket.expires_at == clock.now + timedelta(minutes=10)

    def test_delivery_addresses_the_account(self, protocol: ResetProtocol, account_id, mailer) -> None:
        _issue(protocol)
        to, subject, body = mailer.sent[-1]
        assert to == EMAIL
        assert subject == RESET_SUBJECT
        assert "10 minutes" in body

    def test_second_request_inside_interval_is_rejected(self, protocol: ResetProtocol, attempts, account_id, clock) -> None:
        code = _issue(protocol)
        clock.advance(seconds=30)
        with pytest.raises(RateLimitError) as exc_info:
            protocol.request(EMAIL)
        assert exc_info.value.status_code == 429
        assert attempts.get_ticket(account_id).otp_code == code

    def test_request_after_interval_replaces_ticket(self, protocol: ResetProtocol, attempts, account_id, clock) -> None:
        _issue(protocol)
        first_id = attempts.get_ticket(account_id).id
        clock.advance(seconds=61)
        code = _issue(protocol)
        ticket = attempts.get_ticket(account_id)
        assert ticket.id == first_id
        assert ticket.otp_code == code
        assert ticket.expires_at == clock.now + timedelta(minutes=10)

    def test_hourly_limit(self, users, attempts, hasher, mailer, clock, account_id) -> None:
        protocol = ResetProtocol(users, attempts, hasher, mailer, limit_per_hour=3, min_interval_secs=0, clock=clock)
        for _ in range(3):
            protocol.request(EMAIL)
            clock.advance(seconds=1)
        with pytest.raises(RateLimitError) as exc_info:
            protocol.request(EMAIL)
        assert exc_info.value.retry_after == 3600

        clock.advance(hours=1)
        assert protocol.request(EMAIL) is not None


class TestVerify:
    def test_success_replaces_password_and_consumes_ticket(
        self, protocol: ResetProtocol, users, attempts, hasher, account_id
    ) -> None:
        code = _issue(protocol)
        protocol.verify(account_id, EMAIL, code, OTHER_PASSWORD, OTHER_PASSWORD)
        digest = users.get_by_email(EMAIL).password_hash
        assert hasher.verify(OTHER_PASSWORD, digest) is True
        assert hasher.verify(STRONG_PASSWORD, digest) is False
        assert attempts.get_ticket(account_id).used is True

    def test_ticket_is_single_use(self, protocol: ResetProtocol, account_id) -> None:
        code = _issue(protocol)
        protocol.verify(account_id, EMAIL, code, OTHER_PASSWORD, OTHER_PASSWORD)
        with pytest.raises(ValidationError) as exc_info:
            protocol.verify(account_id, EMAIL, code, "Third-Pass-99", "Third-Pass-99")
        assert exc_info.value.message == INVALID_OTP_MESSAGE

    def test_wrong_code(self, protocol: ResetProtocol, users, hasher, account_id) -> None:
        code = _issue(protocol)
        wrong = "1" * 6 if code != "1" * 6 else "2" * 6
        with pytest.raises(ValidationError) as exc_info:
            protocol.verify(account_id, EMAIL, wrong, OTHER_PASSWORD, OTHER_PASSWORD)
        assert exc_info.value.code == "invalid_otp"
        assert hasher.verify(STRONG_PASSWORD, users.get_by_email(EMAIL).password_hash) is True

    def test_expired_code(self, protocol: ResetProtocol, account_id, clock) -> None:
        code = _issue(protocol)
        clock.advance(minutes=10)
        with pytest.raises(ValidationError) as exc_info:
            protocol.verify(account_id, EMAIL, code, OTHER_PASSWORD, OTHER_PASSWORD)
        assert exc_info.value.message == INVALID_OTP_MESSAGE

    def test_no_ticket(self, protocol: ResetProtocol, account_id) -> None:
        with pytest.raises(ValidationError):
            protocol.verify(account_id, EMAIL, "123456", OTHER_PASSWORD, OTHER_PASSWORD)

    def test_mismatch_is_checked_first(self, protocol: ResetProtocol, attempts, account_id) -> None:
        code = _issue(protocol)
        with pytest.raises(ValidationError) as exc_info:
            protocol.verify(account_id, EMAIL, code, OTHER_PASSWORD, "Something-Else-1")
        assert exc_info.value.code == "passwords_mismatch"
        assert attempts.get_ticket(account_id).used is False

    def test_email_of_another_account_is_not_found(self, protocol: ResetProtocol, users, hasher, attempts, account_id) -> None:
        users.create_account(Account(email="bob@example.com", username="bob", password_hash=hasher.hash(STRONG_PASSWORD)))
        code = _issue(protocol)
        with pytest.raises(NotFoundError):
            protocol.verify(account_id, "bob@example.com", code, OTHER_PASSWORD, OTHER_PASSWORD)
        assert hasher.verify(STRONG_PASSWORD, users.get_by_email("bob@example.com").password_hash) is True
        assert attempts.get_ticket(account_id).used is False

    def test_store_failure_during_redemption(
        self, protocol: ResetProtocol, users, attempts, hasher, account_id, monkeypatch
    ) -> None:
        code = _issue(protocol)

        def unavailable(*args, **kwargs):
            raise OperationalError("UPDATE reset_tickets", {}, Exception("disk I/O error"))

        monkeypatch.setattr(attempts, "redeem_ticket", unavailable)
        with pytest.raises(DependencyError):
            protocol.verify(account_id, EMAIL, code, OTHER_PASSWORD, OTHER_PASSWORD)
        assert hasher.verify(STRONG_PASSWORD, users.get_by_email(EMAIL).password_hash) is True
        assert attempts.get_ticket(account_id).used is False


class GatedHasher(CredentialHasher):
    """Holds every hash() until all racing threads have reached it."""

    def __init__(self, gate: threading.Barrier) -> None:
        super().__init__(time_cost=1, memory_cost=1024, parallelism=1)
        self._gate = gate

    def hash(self, password: str) -> str:
        digest = super().hash(password)
        self._gate.wait()
        return digest


class TestConcurrentVerify:
    """Two verifies with one code, both past the pre-checks before either writes."""

    def test_code_changes_the_password_only_once(self, tmp_path, hasher, clock) -> None:
        engine = create_store_engine(f"sqlite:///{tmp_path / 'reset.db'}")
        try:
            users, attempts = UserStore(engine), AttemptStore(engine)
            account_id = users.create_account(
                Account(email=EMAIL, username="alice", password_hash=hasher.hash(STRONG_PASSWORD))
            )
            mailer = RecordingMailer()
            gated = GatedHasher(threading.Barrier(2, timeout=10))
            protocol = ResetProtocol(users, attempts, gated, mailer, clock=clock)
            protocol.deliver(protocol.request(EMAIL))
            code = mailer.last_code()

            results: dict[str, str] = {}

            def attempt(password: str) -> None:
                try:
                    protocol.verify(account_id, EMAIL, code, password, password)
                    results[password] = "ok"
                except AuthCoreError as exc:
                    results[password] = exc.code

            passwords = ["Racer-One-1!", "Racer-Two-2!"]
            threads = [threading.Thread(target=attempt, args=(pw,)) for pw in passwords]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=30)

            assert len(results) == 2
            winners = [pw for pw, outcome in results.items() if outcome == "ok"]
            assert len(winners) == 1
            loser = next(pw for pw in passwords if pw not in winners)
            assert results[loser] == "invalid_otp"

            digest = users.get_by_email(EMAIL).password_hash
            assert hasher.verify(winners[0], digest) is True
            assert attempts.get_ticket(account_id).used is True
        finally:
            engine.dispose()


class TestDeliver:
    def test_delivery_error_is_logged_not_raised(self, users, attempts, hasher, clock, account_id, caplog) -> None:
        mailer = RecordingMailer()
        mailer.fail = True
        protocol = ResetProtocol(users, attempts, hasher, mailer, clock=clock)
        delivery = protocol.request(EMAIL)
        with caplog.at_level(logging.ERROR, logger="authcore.auth.reset"):
            protocol.deliver(delivery)
        assert attempts.get_ticket(account_id) is not None
        assert any("not delivered" in r.getMessage() for r in caplog.records)
