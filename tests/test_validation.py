"""Unit tests for auth/validation.py -- input policy."""

from __future__ import annotations

import pytest

from auth.validation import (
    PasswordPolicy,
    check_email,
    check_username,
    normalize_email,
    validate_register,
    validate_reset_verify,
)
from core.errors import ValidationError

POLICY = PasswordPolicy(8, 128)


def test_normalize_email() -> None:
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


@pytest.mark.parametrize("email", ["alice@example.com", "a.b+tag@sub.example.co.uk", "x_y%z@host.io"])
def test_valid_emails(email: str) -> None:
    assert check_email(email) is None


@pytest.mark.parametrize("email", ["", "alice", "alice@", "@example.com", "alice@example", "a b@example.com"])
def test_invalid_emails(email: str) -> None:
    assert check_email(email) is not None


def test_overlong_email() -> None:
    assert check_email("a" * 250 + "@example.com") == "Email is too long"


@pytest.mark.parametrize(
    "username,ok",
    [("abc", True), ("user_01", True), ("a" * 50, True), ("ab", False), ("a" * 51, False), ("bad-name", False), ("", False)],
)
def test_usernames(username: str, ok: bool) -> None:
    assert (check_username(username) is None) is ok


class TestPasswordPolicy:
    def test_strong_password(self) -> None:
        assert POLICY.check("Correct-Horse-42") is None

    @pytest.mark.parametrize(
        "password,fragment",
        [
            ("", "required"),
            ("Ab1!", "at least 8"),
            ("correct-horse-42", "uppercase"),
            ("CORRECT-HORSE-42", "lowercase"),
            ("Correct-Horse-xx", "number"),
            ("CorrectHorse42", "special"),
            ("Password1!", "too common"),
        ],
    )
    def test_rejections(self, password: str, fragment: str) -> None:
        assert fragment in POLICY.check(password)

    def test_max_length(self) -> None:
        assert PasswordPolicy(8, 16).check("Correct-Horse-42-extra") == "Password is too long"


class TestValidateRegister:
    def test_reports_every_failing_field(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_register("x", "not-an-email", "short", POLICY)
        fields = {f["field"] for f in exc_info.value.fields}
        assert fields == {"username", "email", "password"}

    def test_valid(self) -> None:
        validate_register("alice", "alice@example.com", "Correct-Horse-42", POLICY)


class TestValidateResetVerify:
    def test_mismatch_wins(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_reset_verify("bad", "x", "Correct-Horse-42", "Other-Horse-42", POLICY)
        assert exc_info.value.code == "passwords_mismatch"

    @pytest.mark.parametrize("otp", ["12345", "1234567", "12a456", "١٢٣٤٥٦"])
    def test_otp_shape(self, otp: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_reset_verify("alice@example.com", otp, "Correct-Horse-42", "Correct-Horse-42", POLICY)
        assert [f["field"] for f in exc_info.value.fields] == ["otp"]

    def test_configured_digit_count(self) -> None:
        validate_reset_verify("alice@example.com", "12345678", "Correct-Horse-42", "Correct-Horse-42", POLICY, otp_digits=8)

    def test_new_password_policy(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_reset_verify("alice@example.com", "123456", "weak", "weak", POLICY)
        assert [f["field"] for f in exc_info.value.fields] == ["new_password"]
