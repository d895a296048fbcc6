"""
tests/conftest.py -- Shared test fixtures for CropCase integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DB shared by user, session and plan stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - make_user() / bearer(): create accounts and Authorization headers directly
  - api_client: TestClient with an admin account and a seeded crop catalog

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4          -- bcrypt minimum; keeps signup/login tests fast
  RATE_LIMIT_ENABLED=false -- repeated logins from "testclient" are not throttled
  ALLOWED_HOSTS=["testserver"] -- the Host header TestClient sends
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import -- settings are read once.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import SessionStore, UserStore
from auth.tokens import create_access_token
from plans.catalog import default_crops
from plans.store import PlanStore

ADMIN_EMAIL = "admin@cropcase.in"
ADMIN_PASSWORD = "adminpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore, PlanStore]:
    """Create stores over one isolated named shared-memory SQLite database.

    All three stores point at the same URL so the refresh_tokens -> users
    foreign key resolves, exactly as in production.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. the module name).
    """
    url = f"sqlite:///file:test_cropcase_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), SessionStore(db_url=url), PlanStore(db_url=url)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore, plan_store: PlanStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.plan_store = plan_store
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def make_user(
    store: UserStore,
    email: str,
    password: str = "secret123",
    role: Role = Role.USER,
    name: str | None = None,
) -> User:
    """Create a user directly in the store and return it with its id set."""
    uid = store.create_user(
        User(email=email, name=name, role=role.value, hashed_password=hash_password(password))
    )
    return store.get_by_id(uid)


def bearer(user: User) -> dict[str, str]:
    """Authorization header with a one-hour access token for user."""
    token, _ = create_access_token(user, expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    The admin account and the default crop catalog exist before the client
    starts. Stores are reachable as client.app.state.<name>_store.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, session_store, plan_store = _make_test_stores(suffix)

    admin = make_user(user_store, ADMIN_EMAIL, ADMIN_PASSWORD, role=Role.ADMIN, name="Admin")
    plan_store.seed_crops(default_crops())
    token, _ = create_access_token(admin, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, session_store, plan_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    plan_store.close()
    session_store.close()
    user_store.close()


@pytest.fixture
def file_stores(tmp_path) -> Generator[tuple[UserStore, SessionStore], None, None]:
    """User and session stores over a temporary SQLite file.

    Used where several threads write at once: shared-cache memory databases
    use table-level locks that fail immediately instead of honouring the busy
    timeout.
    """
    url = f"sqlite:///{tmp_path / 'cropcase.db'}"
    users, sessions = UserStore(url), SessionStore(url)
    yield users, sessions
    sessions.close()
    users.close()
