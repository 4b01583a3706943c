"""
tests/conftest.py -- Shared test fixtures for the PayFlow auth tests.

This module provides:
  - engine / user_store / otp_store / service: a fresh isolated database per test
  - api_client: TestClient with a pre-registered user and its bearer token
  - count_otps() / fetch_otp_row(): raw OTP table reads for assertions the
    stores do not expose

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true          -- get_settings() auto-generates SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4     -- bcrypt's minimum cost keeps the suite fast
  ALLOWED_HOSTS       -- TestClient sends Host: testserver
  OTP_SWEEP_INTERVAL_SECONDS=0 -- no background task during tests
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("OTP_SWEEP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from api.main import app
from auth.db import create_db_engine, otps
from auth.delivery import ResponseDelivery
from auth.otp_store import OtpStore
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import create_access_token

PASSWORD = "Abcd12!@"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_engine(db_suffix: str) -> Engine:
    """Create an isolated named shared-memory SQLite engine.

    Args:
        db_suffix: Unique string appended to the DB name so tests and test
                   modules never share state.
    """
    return create_db_engine(f"sqlite:///file:test_payflow_{db_suffix}?mode=memory&cache=shared&uri=true")


def count_otps(engine: Engine, email: str | None = None, unused_only: bool = False) -> int:
    stmt = select(func.count()).select_from(otps)
    if email is not None:
        stmt = stmt.where(otps.c.email == email)
    if unused_only:
        stmt = stmt.where(otps.c.used == 0)
    with engine.connect() as conn:
        return conn.execute(stmt).scalar() or 0


def fetch_otp_row(engine: Engine, otp_id: int):
    """Return the raw otps row for otp_id (used is 0/1), or None if it was deleted."""
    with engine.connect() as conn:
        return conn.execute(select(otps).where(otps.c.id == otp_id)).fetchone()


def _patch_lifespan(engine: Engine, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine and service into app.state so TestClient routes
    hit isolated test DBs rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.user_store = service.user_store
        app.state.otp_store = service.otp_store
        app.state.auth_service = service
        app.state.sweep_task = None
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- a fresh database per unit test
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = _make_test_engine(uuid.uuid4().hex)
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def otp_store(engine: Engine) -> OtpStore:
    return OtpStore(engine)


@pytest.fixture
def service(user_store: UserStore, otp_store: OtpStore) -> AuthService:
    return AuthService(user_store, otp_store, delivery=ResponseDelivery(), otp_ttl_minutes=10)


@pytest.fixture
def otp_count(engine: Engine):
    """Return count_otps bound to this test's engine: otp_count(email=None, unused_only=False)."""

    def _count(email: str | None = None, unused_only: bool = False) -> int:
        return count_otps(engine, email, unused_only)

    return _count


@pytest.fixture
def otp_row(engine: Engine):
    """Return fetch_otp_row bound to this test's engine: otp_row(otp_id)."""

    def _fetch(otp_id: int):
        return fetch_otp_row(engine, otp_id)

    return _fetch


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory store. A user
    (testuser@example.com / PASSWORD) is registered before the client starts
    and a bearer token is generated for it.
    """
    engine = _make_test_engine(f"api_{uuid.uuid4().hex}")
    service = AuthService(UserStore(engine), OtpStore(engine), delivery=ResponseDelivery())
    result = service.signup("Test User", "testuser@example.com", PASSWORD, PASSWORD)
    token = create_access_token(result.user.id, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(engine, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, result.user.id

    engine.dispose()
