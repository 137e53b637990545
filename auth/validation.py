"""
auth/validation.py -- Input policy for registration, login and reset payloads.

The compiled patterns and the common-password table are module constants,
built once at import and never mutated.

Each validate_* function collects every failing field before raising, so the
client sees all problems in one 400 instead of fixing them one at a time.
"""

from __future__ import annotations

import re

from core.errors import ValidationError

EMAIL_MAX_LENGTH = 254
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?~`]")

COMMON_PASSWORDS: frozenset[str] = frozenset(
    {
        "password",
        "password1",
        "password123",
        "password1!",
        "passw0rd",
        "p@ssw0rd",
        "p@ssword1",
        "123456",
        "12345678",
        "123456789",
        "qwerty",
        "qwerty123",
        "qwerty123!",
        "letmein",
        "letmein1!",
        "welcome",
        "welcome1!",
        "welcome123!",
        "admin123!",
        "iloveyou",
        "abc123",
        "monkey",
        "dragon",
        "football",
        "baseball",
        "sunshine",
        "princess",
        "trustno1",
        "changeme",
        "changeme1!",
    }
)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_email(email: str) -> str | None:
    if not email:
        return "Email is required"
    if len(email) > EMAIL_MAX_LENGTH:
        return "Email is too long"
    if not _EMAIL_RE.match(email):
        return "Invalid email format"
    return None


def check_username(username: str) -> str | None:
    if not username:
        return "Username is required"
    if len(username) < USERNAME_MIN_LENGTH:
        return f"Username must be at least {USERNAME_MIN_LENGTH} characters long"
    if len(username) > USERNAME_MAX_LENGTH:
        return "Username is too long"
    if not _USERNAME_RE.match(username):
        return "Username can only contain letters, numbers, and underscores"
    return None


class PasswordPolicy:
    """Length bounds come from Settings; the character-class rules are fixed."""

    def __init__(self, min_length: int = 8, max_length: int = 128) -> None:
        self.min_length = min_length
        self.max_length = max_length

    def check(self, password: str) -> str | None:
        if not password:
            return "Password is required"
        if len(password) < self.min_length:
            return f"Password must be at least {self.min_length} characters long"
        if len(password) > self.max_length:
            return "Password is too long"
        if not any(c.isupper() for c in password):
            return "Password must contain at least one uppercase letter"
        if not any(c.islower() for c in password):
            return "Password must contain at least one lowercase letter"
        if not any(c.isdigit() for c in password):
            return "Password must contain at least one number"
        if not _SPECIAL_RE.search(password):
            return "Password must contain at least one special character"
        if password.lower() in COMMON_PASSWORDS:
            return "Password is too common"
        return None


def _raise_if_any(errors: list[dict[str, str]]) -> None:
    if errors:
        raise ValidationError(fields=errors)


def _collect(errors: list[dict[str, str]], field: str, message: str | None) -> None:
    if message is not None:
        errors.append({"field": field, "message": message})


def validate_register(username: str, email: str, password: str, policy: PasswordPolicy) -> None:
    errors: list[dict[str, str]] = []
    _collect(errors, "username", check_username(username.strip()))
    _collect(errors, "email", check_email(email))
    _collect(errors, "password", policy.check(password))
    _raise_if_any(errors)


def validate_login(email: str, password: str) -> None:
    errors: list[dict[str, str]] = []
    _collect(errors, "email", check_email(email))
    if not password:
        _collect(errors, "password", "Password is required")
    _raise_if_any(errors)


def validate_reset_request(email: str) -> None:
    errors: list[dict[str, str]] = []
    _collect(errors, "email", check_email(email))
    _raise_if_any(errors)


def validate_reset_verify(
    email: str,
    otp: str,
    new_password: str,
    confirm_password: str,
    policy: PasswordPolicy,
    otp_digits: int = 6,
) -> None:
    """Check shape and password policy. Raises ValidationError.

    A password/confirmation mismatch is reported on its own with the
    dedicated passwords_mismatch code before any other check runs.
    """
    if new_password != confirm_password:
        raise ValidationError(
            "Passwords do not match",
            code="passwords_mismatch",
            fields=[{"field": "confirm_password", "message": "Passwords do not match"}],
        )
    errors: list[dict[str, str]] = []
    _collect(errors, "email", check_email(email))
    if not (len(otp) == otp_digits and otp.isascii() and otp.isdigit()):
        _collect(errors, "otp", f"OTP must be {otp_digits} digits")
    _collect(errors, "new_password", policy.check(new_password))
    _raise_if_any(errors)
