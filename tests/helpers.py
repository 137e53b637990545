"""
tests/helpers.py -- Test doubles and builders shared by conftest and test modules.

  - FakeClock: a controllable "now" for lockout windows and ticket expiry
  - RecordingMailer: an EmailDispatcher that keeps every message (and can fail)
  - make_settings(): fast, isolated Settings (cheap Argon2, unique shared-memory DB)
  - register(): POST a registration through a TestClient
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.mailer import DeliveryError
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
STRONG_PASSWORD = "Correct-Horse-42"
OTHER_PASSWORD = "Battery-Staple-77"


class FakeClock:
    """Callable returning a fixed UTC instant that tests move forward by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send(self, to: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError("relay unreachable")
        self.sent.append((to, subject, body))

    def last_code(self) -> str:
        """Pull the numeric code out of the most recent message body."""
        _to, _subject, body = self.sent[-1]
        return body.split("code is ", 1)[1].split(".", 1)[0]


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "database_url": f"sqlite:///file:authcore_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
        "argon2_time_cost": 1,
        "argon2_memory_cost": 1024,
        "argon2_parallelism": 1,
        "rate_limit_general_requests": 10_000,
        "rate_limit_auth_requests": 10_000,
        "smtp_host": "",
        "smtp_from": "",
    }
    values.update(overrides)
    return Settings(**values)


def register(
    client: TestClient,
    email: str = "alice@example.com",
    password: str = STRONG_PASSWORD,
    username: str = "alice",
):
    return client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": email, "password": password},
    )
