"""
tests/conftest.py -- Shared fixtures for authcore tests.

This module provides:
  - clock / mailer: a FakeClock and a RecordingMailer (see tests/helpers.py)
  - settings: fast, isolated Settings from make_settings()
  - app / client: a fully wired app from create_app() and its TestClient
  - engine / users / attempts: bare stores on a private in-memory DB
  - hasher: a cheap CredentialHasher shared by the whole session

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the app fixtures because TestClient runs sync route handlers in a thread pool.
Plain ':memory:' DBs are per-connection and would present a blank schema to
each worker thread. Every test gets its own DB name, so nothing leaks between
tests. The unit-level stores run on a single thread and use plain sqlite://.

DEBUG is set before any project import so get_settings() never refuses to
start for lack of a SECRET_KEY.
"""

from __future__ import annotations

import os
from collections.abc import Generator

# Set DEBUG before any core/auth import so get_settings() can auto-generate
# SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.hashing import CredentialHasher
from auth.store import AttemptStore, UserStore, create_store_engine
from core.config import Settings
from tests.helpers import FakeClock, RecordingMailer, make_settings

# ---------------------------------------------------------------------------
# Settings and app
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings, mailer, clock):
    return create_app(settings, mailer=mailer, clock=clock)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Bare stores for unit tests
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = create_store_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def attempts(engine) -> AttemptStore:
    return AttemptStore(engine)


@pytest.fixture(scope="session")
def hasher() -> CredentialHasher:
    return CredentialHasher(time_cost=1, memory_cost=1024, parallelism=1)
