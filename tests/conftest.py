"""
tests/conftest.py -- Shared test fixtures for VetClinic integration tests.

This module provides:
  - make_user_store(): creates an isolated in-memory users DB
  - seed_clinic_users(): the admin / vet / assistant accounts every API test uses
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - api_client: TestClient with an admin access token for API integration tests
  - login: helper fixture that POSTs to /api/v1/auth/login

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true          get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4     keeps hashing fast; the cost factor is not under test
  ALLOWED_HOSTS       TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import httpx
import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, init_auth_state
from auth.credentials import register_user
from auth.store import UserStore
from core.config import get_settings

# Policy-compliant passwords for the seeded accounts. None contains a common
# pattern ("admin", "123", ...) or a triple repeat.
ADMIN_PASSWORD = "Cl1nic!Head#Office"
VET_PASSWORD = "Cl1nic!Vet#Secure"
ASSISTANT_PASSWORD = "Fr0nt!Desk#Helper"
LOCKOUT_PASSWORD = "L0ck!Out#Target"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite user store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def seed_clinic_users(store: UserStore) -> dict[str, int]:
    """Register the standard test accounts. Returns username -> id."""
    seeds = [
        ("admin", "admin@vetclinic.com", ADMIN_PASSWORD, "admin"),
        ("dr.smith", "dr.smith@vetclinic.com", VET_PASSWORD, "vet"),
        ("assistant1", "assistant1@vetclinic.com", ASSISTANT_PASSWORD, "assistant"),
        ("lockout.user", "lockout@vetclinic.com", LOCKOUT_PASSWORD, "assistant"),
    ]
    ids: dict[str, int] = {}
    for username, email, password, role in seeds:
        ids[username] = register_user(store, username, email, password, role).id
    return ids


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Builds fresh token/session/2FA services around the test store so each
    test module starts with no sessions, no blacklist and no lockouts.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, user_store, get_settings())
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    """
    user_store = make_user_store(request.module.__name__.rsplit(".", 1)[-1])
    ids = seed_clinic_users(user_store)
    limiter.reset()

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        admin = user_store.get_by_id(ids["admin"])
        token = app.state.token_service.issue_access_token(admin)
        yield client, token, ids["admin"]

    user_store.close()


@pytest.fixture
def login(api_client) -> Callable[..., httpx.Response]:
    """POST /api/v1/auth/login with the given credentials and optional extras."""
    client, _token, _uid = api_client

    def _login(login: str, password: str, **extra) -> httpx.Response:
        return client.post("/api/v1/auth/login", json={"login": login, "password": password, **extra})

    return _login
