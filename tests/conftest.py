"""
tests/conftest.py -- Shared test fixtures for the Tigra auth test suite.

This module provides:
  - engine / users / refresh_tokens / credentials / rotation: unit-level
    stores on a throwaway SQLite file per test (tmp_path)
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - api_client: TestClient plus an admin and a regular user with live tokens
  - _reset_rate_limits (autouse): every test starts with empty limiter windows

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG, BCRYPT_ROUNDS and ALLOWED_HOSTS must be set before any app module
import: get_settings() then auto-generates SECRET_KEY, hashing stays fast and
TrustedHostMiddleware admits the TestClient host.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import app, attach_stores
from auth.credentials import CredentialValidator
from auth.models import Role, User
from auth.rotation import RotationProtocol
from auth.store import RefreshTokenStore, UserStore, create_store_engine
from auth.tokens import create_access_token

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"
USER_EMAIL = "user@example.com"
USER_PASSWORD = "user-pass-123"


# ---------------------------------------------------------------------------
# Unit-level stores
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_store_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def users(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def refresh_tokens(engine: Engine) -> RefreshTokenStore:
    return RefreshTokenStore(engine)


@pytest.fixture
def credentials(users: UserStore) -> CredentialValidator:
    return CredentialValidator(users)


@pytest.fixture
def rotation(users: UserStore, refresh_tokens: RefreshTokenStore) -> RotationProtocol:
    return RotationProtocol(users, refresh_tokens)


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    limiter.reset()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_stores(app, engine)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    admin: User
    admin_token: str
    user: User
    user_token: str

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext around a fresh in-memory database.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware and exception handlers but use an
    isolated store. One admin and one regular user exist before the client
    starts, each with a one-hour access token.
    """
    engine = create_store_engine(f"sqlite:///file:tigra_api_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    validator = CredentialValidator(UserStore(engine))
    admin = validator.register(ADMIN_EMAIL, ADMIN_PASSWORD, name="Admin", role=Role.ADMIN)
    user = validator.register(USER_EMAIL, USER_PASSWORD, name="User")
    admin_token, _ = create_access_token(admin.id, Role.ADMIN, expire_seconds=3600)
    user_token, _ = create_access_token(user.id, Role.USER, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, admin, admin_token, user, user_token)

    engine.dispose()
