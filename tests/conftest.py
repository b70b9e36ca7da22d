"""
tests/conftest.py -- Shared test fixtures for ServiceDesk tests.

This module provides:
  - make_test_stores(): isolated in-memory database shared by both stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - principal(): builds the base64 JSON identity header the front-end host sends
  - as_admin / as_agent / as_user / principal_headers: identity header fixtures
  - api_client: module-scoped TestClient with seeded admin/agent/user accounts
  - dev_mode / settings_env: switch settings for one test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be fixed before any project import: get_settings() is
cached and the rate limiter reads it at import time.
"""

from __future__ import annotations

import base64
import json
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any project import so the cached settings and the
# module-level limiter see test values.
os.environ.pop("DEV_MODE", None)
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite:///file:test_default?mode=memory&cache=shared&uri=true"

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.store import UserStore
from cmdb.store import CMDBStore
from core.config import get_settings

ADMIN_EMAIL = "admin@test.com"
AGENT_EMAIL = "agent@test.com"
USER_EMAIL = "user@test.com"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[UserStore, CMDBStore]:
    """Create both stores on one isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    url = f"sqlite:///file:test_{db_suffix}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url=url, create=True)
    cmdb = CMDBStore(db_url=url, create=True)
    return user_store, cmdb


def seed_directory(user_store: UserStore) -> None:
    """Add one active account per role."""
    for email, role, oid in (
        (ADMIN_EMAIL, Role.ADMIN, "admin-oid"),
        (AGENT_EMAIL, Role.AGENT, "agent-oid"),
        (USER_EMAIL, Role.USER, "user-oid"),
    ):
        user_store.create_user(
            User(email=email, display_name=email.split("@")[0].title(), role=role, external_id=oid),
            created_by="system",
        )


def _patch_lifespan(user_store: UserStore, cmdb: CMDBStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.cmdb = cmdb
        yield

    return test_lifespan


def principal(email: str = "", user_id: str = "") -> dict[str, str]:
    """Return request headers carrying the given identity."""
    payload = {
        "identityProvider": "aad",
        "userDetails": email,
        "userId": user_id,
        "userRoles": ["anonymous", "authenticated"],
    }
    value = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
    return {get_settings().principal_header: value}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, UserStore, CMDBStore], None, None]:
    """Yield (client, user_store, cmdb) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    One admin, one agent and one user account exist before the first test.
    """
    user_store, cmdb = make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    seed_directory(user_store)

    app.router.lifespan_context = _patch_lifespan(user_store, cmdb)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, user_store, cmdb

    user_store.close()
    cmdb.close()


@pytest.fixture
def as_admin() -> dict[str, str]:
    return principal(ADMIN_EMAIL, "admin-oid")


@pytest.fixture
def as_agent() -> dict[str, str]:
    return principal(AGENT_EMAIL, "agent-oid")


@pytest.fixture
def as_user() -> dict[str, str]:
    return principal(USER_EMAIL, "user-oid")


@pytest.fixture
def settings_env(monkeypatch) -> Generator[Callable[..., None], None, None]:
    """Yield a setter that overrides settings through the environment.

        settings_env(ATOMIC_USER_WRITES="false")

    The settings cache is cleared on set and again on teardown.
    """

    def _set(**values: str) -> None:
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        get_settings.cache_clear()

    yield _set
    get_settings.cache_clear()


@pytest.fixture
def dev_mode(settings_env) -> None:
    """Run one test with DEV_MODE=true."""
    settings_env(DEV_MODE="true")


@pytest.fixture
def principal_headers() -> Callable[..., dict[str, str]]:
    """Return the header builder for identities other than the seeded three."""
    return principal
