"""
tests/conftest.py -- Shared test fixtures for the library identity backend.

This module provides:
  - engine / store / issuer / service: unit-level fixtures over an in-memory DB
  - make_user: factory fixture that registers an identity through the real service
  - api_client: TestClient with a patched lifespan for HTTP integration tests

Design: unit fixtures use plain sqlite:///:memory:. SQLAlchemy serves that
URL from a SingletonThreadPool, so the schema created by the engine and the
IdentityStore connection see the same database inside one test thread.

The api_client fixture uses a named shared-memory URI instead, because
TestClient runs sync route handlers in a thread pool and a plain :memory: DB
would present a blank schema to each worker thread.

The JWT environment variables must be set before any project import so
get_settings() never raises ConfigurationError during collection.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("JWT_KEY", "test-signing-key-0123456789abcdef-0123456789abcdef")
os.environ.setdefault("JWT_ISSUER", "library-tests")
os.environ.setdefault("JWT_AUDIENCE", "library-clients")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import Identity, Role
from auth.service import AccountService
from auth.store import IdentityStore, create_identity_engine
from auth.tokens import TokenIssuer
from auth.totp import TotpSecretManager
from core.config import get_settings

TEST_KEY = os.environ["JWT_KEY"]
TEST_ISSUER = os.environ["JWT_ISSUER"]
TEST_AUDIENCE = os.environ["JWT_AUDIENCE"]
TOTP_ISSUER = "Library online app"

STRONG_PASSWORD = "Passw0rd!"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_identity_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine: Engine) -> Generator[IdentityStore, None, None]:
    s = IdentityStore(engine)
    yield s
    s.close()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(TEST_KEY, TEST_ISSUER, TEST_AUDIENCE)


@pytest.fixture
def totp_manager(store: IdentityStore) -> TotpSecretManager:
    return TotpSecretManager(store, TOTP_ISSUER)


@pytest.fixture
def service(store: IdentityStore, totp_manager: TotpSecretManager, issuer: TokenIssuer) -> AccountService:
    return AccountService(store, totp_manager, issuer)


@pytest.fixture
def make_user(service: AccountService):
    """Return a factory that registers an identity through the real service path."""

    def _make(email: str = "user@example.com", password: str = STRONG_PASSWORD, role: Role = Role.USER) -> Identity:
        return service.register(email, password, password, first_name="Ada", last_name="Lovelace", role=role)

    return _make


# ---------------------------------------------------------------------------
# HTTP integration fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine, issuer: TokenIssuer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine and issuer into app.state so TestClient routes see
    an isolated database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.token_issuer = issuer
        app.state.engine = engine
        yield

    return test_lifespan


@pytest.fixture
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient over a fresh shared-memory identity database.

    The database name is derived from the test's node id so tests never see
    each other's accounts.
    """
    db_name = "".join(ch if ch.isalnum() else "_" for ch in request.node.name)
    eng = create_identity_engine(f"sqlite:///file:test_api_{db_name}?mode=memory&cache=shared&uri=true")
    issuer = TokenIssuer(TEST_KEY, TEST_ISSUER, TEST_AUDIENCE)

    app.router.lifespan_context = _patch_lifespan(eng, issuer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    eng.dispose()
