"""
tests/conftest.py -- Shared test fixtures for Keystone.

This module provides:
  - FakeClock: a settable time source for blacklist and token expiry tests
  - engine / user_store / role_store: single-thread in-memory SQLite stores,
    with the permission catalog already synced into role_store
  - auth_service: AuthService over those stores, with a fake-clock blacklist
  - api_env: module-scoped TestClient plus an admin and a staff session

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY instead of raising ValueError, and
so every hash in the suite costs 2^4 rounds rather than 2^12.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_auth_service
from auth.authorization import AuthorizationEngine, RolePermissionCache
from auth.blacklist import InMemoryTokenBlacklist
from auth.database import create_db_engine
from auth.role_store import RoleStore
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings

TEST_SECRET = "x" * 48


class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, now: float | None = None) -> None:
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Unit-level fixtures -- fresh in-memory database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def role_store(engine) -> RoleStore:
    store = RoleStore(engine)
    store.sync_catalog()
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blacklist(clock: FakeClock) -> InMemoryTokenBlacklist:
    return InMemoryTokenBlacklist(clock=clock)


@pytest.fixture
def token_service(blacklist: InMemoryTokenBlacklist) -> TokenService:
    return TokenService(TEST_SECRET, blacklist, expire_seconds=3600)


@pytest.fixture
def auth_service(user_store: UserStore, role_store: RoleStore, token_service: TokenService) -> AuthService:
    authz = AuthorizationEngine(role_store, RolePermissionCache.load(role_store))
    return AuthService(user_store, role_store, token_service, authz, default_role="staff")


# ---------------------------------------------------------------------------
# API fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


class ApiEnv(NamedTuple):
    client: TestClient
    service: AuthService
    admin_token: str
    admin_id: int
    staff_token: str
    staff_id: int


ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"
STAFF_EMAIL = "staff@example.com"
STAFF_PASSWORD = "staffpass123"


def _patch_lifespan(engine, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires a pre-built AuthService into app.state so TestClient routes use an
    isolated test database rather than the configured one.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_env(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, guards and exception handlers. One admin and one
    staff account exist before the client starts.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    engine = create_db_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    service = build_auth_service(engine, get_settings())

    admin = service.create_user("Admin", ADMIN_EMAIL, ADMIN_PASSWORD, roles=["admin"])
    staff = service.create_user("Staff", STAFF_EMAIL, STAFF_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(engine, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            service=service,
            admin_token=service.issue_session(admin).token,
            admin_id=admin.id,
            staff_token=service.issue_session(staff).token,
            staff_id=staff.id,
        )

    engine.dispose()


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """The limiter's memory store is process-wide; start every test at zero."""
    limiter.reset()