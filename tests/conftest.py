"""
tests/conftest.py -- Shared test fixtures for Tokenward.

This module provides:
  - settings / engine / services: an isolated auth object graph per test,
    backed by a private in-memory SQLite database
  - make_user: factory that creates a user and grants it a role
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for api_client because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory
instance across all connections in the same process.

DEBUG and LOGIN_RATE_LIMIT must be set before any api/ import: the login
rate limit reads get_settings(), which needs either DEBUG or SECRET_KEY.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set these before any auth/core/api import so get_settings() can
# auto-generate SECRET_KEY and the per-IP login limit does not trip mid-suite.
os.environ.setdefault("DEBUG", "true")
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.db import create_db_engine
from auth.models import AccountStatus, RoleType, User
from auth.passwords import hash_password
from auth.services import AuthServices, build_services
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
PASSWORD = "correct-horse-battery"

# bcrypt is deliberately slow; hash the shared test password once.
PASSWORD_HASH = hash_password(PASSWORD)


def make_settings(**overrides) -> Settings:
    """Settings for tests: fixed secret, no .env file, overridable fields."""
    values = {"secret_key": TEST_SECRET, "debug": False}
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_db_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def services(settings: Settings, engine: Engine) -> AuthServices:
    return build_services(settings, engine)


@pytest.fixture
def make_user(services: AuthServices) -> Callable[..., User]:
    """Return a factory: make_user(email, role=member, **user_fields) -> User.

    Users are verified and active unless overridden. Pass role=None to
    create a user with no role assignment at all.
    """

    def _make(
        email: str = "alice@example.com",
        role: RoleType | None = RoleType.member,
        role_active: bool = True,
        email_verified: bool = True,
        account_status: AccountStatus = AccountStatus.active,
        is_active: bool = True,
    ) -> User:
        user_id = services.accounts.create_user(
            User(
                email=email,
                password_hash=PASSWORD_HASH,
                email_verified=email_verified,
                account_status=account_status,
                is_active=is_active,
            )
        )
        if role is not None:
            services.accounts.grant_role(user_id, role, is_active=role_active)
        return services.accounts.get_user(user_id)

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(services: AuthServices):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test services into app.state so TestClient routes see
    an isolated test DB rather than the configured one.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = services
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthServices], None, None]:
    """Yield (client, services) for API integration tests.

    One shared-memory database per test module, named after the module so
    modules never see each other's rows.
    """
    name = request.module.__name__.rsplit(".", 1)[-1]
    db_url = f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"
    services = build_services(make_settings(database_url=db_url))

    app.router.lifespan_context = _patch_lifespan(services)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, services

    services.close()


def create_account(
    services: AuthServices,
    email: str,
    role: RoleType = RoleType.member,
    **user_fields,
) -> str:
    """Create a verified, active user holding role. Returns the user id."""
    fields = {"email_verified": True}
    fields.update(user_fields)
    user_id = services.accounts.create_user(User(email=email, password_hash=PASSWORD_HASH, **fields))
    services.accounts.grant_role(user_id, role)
    return user_id
