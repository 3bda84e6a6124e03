"""
tests/conftest.py -- Shared test fixtures for homegate integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for accounts, vault and audit
  - _patch_lifespan(): wires test stores, services and a mocked backend HTTP
    session into app.state, bypassing real startup
  - backend_response: factory for real requests.Response objects for the mock
  - gateway_env: module-scoped TestClient plus handles on every store
  - login_as, cookie_header: session helpers for the shared client

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment must be set before any homegate import: DEBUG lets get_settings()
auto-generate SECRET_KEY, SECURE_COOKIES=false lets the http:// TestClient
send the session cookie back, and the login rate limit is raised so test
modules can log in freely.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional
from unittest.mock import MagicMock

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEY", "0123456789abcdef0123456789abcdef")

import pytest
import requests
from fastapi.testclient import TestClient

from api.main import SESSION_COOKIE
from asgi import app
from audit.store import AuditLog
from auth.models import User
from auth.passwords import hash_password
from auth.store import UserStore
from bridge import build_bridges
from cache.store import CredentialCache
from core.config import Settings
from core.services import build_service_configs
from vault.crypto import CredentialCipher
from vault.store import CredentialVault

TEST_KEY = "0123456789abcdef0123456789abcdef"
TEST_PASSWORD = "correct-horse-battery"


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def make_settings() -> Settings:
    """Settings with all three backends enabled under example.test."""
    return Settings(
        debug=True,
        secret_key="s" * 32,
        credential_encryption_key=TEST_KEY,
        domain_name="example.test",
        secure_cookies=False,
        jellyfin_base_url="http://jellyfin.internal:8096",
        radarr_base_url="http://radarr.internal:7878",
        sonarr_base_url="http://sonarr.internal:8989",
    )


def _backend_response(
    status: int,
    body: Optional[dict] = None,
    headers: Optional[dict] = None,
    url: str = "http://backend.internal/login",
) -> requests.Response:
    """A real requests.Response, so raise_for_status() and json() behave as in production."""
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(body).encode("utf-8") if body is not None else b""
    resp.headers.update(headers or {})
    resp.url = url
    return resp


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class StoreSet:
    user_store: UserStore
    vault: CredentialVault
    audit: AuditLog
    cache: CredentialCache

    def close(self) -> None:
        self.cache.close()
        self.audit.close()
        self.vault.close()
        self.user_store.close()


def _make_test_stores(db_suffix: str) -> StoreSet:
    """Create isolated named shared-memory stores for one test module.

    Args:
        db_suffix: Unique string appended to each DB name so test modules
                   don't share state (e.g. 'gateway', 'api').
    """
    return StoreSet(
        user_store=UserStore(memory_url(f"test_users_{db_suffix}")),
        vault=CredentialVault(CredentialCipher(TEST_KEY), memory_url(f"test_vault_{db_suffix}")),
        audit=AuditLog(memory_url(f"test_audit_{db_suffix}")),
        cache=CredentialCache(":memory:"),
    )


def _patch_lifespan(stores: StoreSet, settings: Settings, http: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    The bridges are real; only the HTTP session they share is a mock, so tests
    exercise the full login, audit and cache path without a network.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        services = build_service_configs(settings)
        app.state.settings = settings
        app.state.user_store = stores.user_store
        app.state.vault = stores.vault
        app.state.audit = stores.audit
        app.state.cache = stores.cache
        app.state.services = services
        app.state.http = http
        app.state.bridges = build_bridges(services, stores.vault, stores.cache, stores.audit, http=http)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Gateway environment
# ---------------------------------------------------------------------------


@dataclass
class GatewayEnv:
    client: TestClient
    stores: StoreSet
    http: MagicMock
    settings: Settings
    user_ids: dict[str, str] = field(default_factory=dict)

    def reset(self) -> None:
        """Forget cached backend credentials and mock call history between tests."""
        self.http.reset_mock(return_value=True, side_effect=True)
        for bridge in self.client.app.state.bridges.values():
            for uid in self.user_ids.values():
                bridge.invalidate(uid)


def _seed_users(store: UserStore) -> dict[str, str]:
    """admin: admin with no allow-list; alice: jellyfin + sonarr; bob: jellyfin only."""
    seeds = [
        User(username="admin", role="admin", allowed_services=[]),
        User(username="alice", role="user", allowed_services=["jellyfin", "sonarr"], email="alice@example.test"),
        User(username="bob", role="user", allowed_services=["jellyfin"]),
    ]
    ids: dict[str, str] = {}
    for user in seeds:
        user.hashed_password = hash_password(TEST_PASSWORD)
        ids[user.username] = str(store.create_user(user))
    return ids


def _gateway_env(db_suffix: str) -> Generator[GatewayEnv, None, None]:
    stores = _make_test_stores(db_suffix)
    user_ids = _seed_users(stores.user_store)
    settings = make_settings()
    http = MagicMock()

    app.router.lifespan_context = _patch_lifespan(stores, settings, http)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield GatewayEnv(client=client, stores=stores, http=http, settings=settings, user_ids=user_ids)

    stores.close()


@pytest.fixture(scope="module")
def gateway_env(request: pytest.FixtureRequest) -> Generator[GatewayEnv, None, None]:
    """Yield a GatewayEnv for front-door and API integration tests.

    follow_redirects=False is essential: tests assert on redirect Locations
    and Set-Cookie headers, which are invisible once the client follows the
    redirect. Seeded accounts all use TEST_PASSWORD.
    """
    yield from _gateway_env(request.module.__name__.rsplit(".", 1)[-1])


def _login_as(client: TestClient, username: str, password: str = TEST_PASSWORD) -> None:
    """Start a gateway session for username on this client, replacing any previous one."""
    client.cookies.clear()
    resp = client.post("/api/v1/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, f"login as {username} failed: {resp.status_code} {resp.text}"


def _cookie_header(client: TestClient, **extra: str) -> dict[str, str]:
    """A Cookie header carrying the current session plus extra cookies.

    Used to present marker cookies, which the server scopes to the parent
    domain and the test client therefore never stores itself.
    """
    pairs = {}
    session = client.cookies.get(SESSION_COOKIE)
    if session:
        pairs[SESSION_COOKIE] = session
    pairs.update(extra)
    return {"Cookie": "; ".join(f"{k}={v}" for k, v in pairs.items())}


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend_response():
    """Factory for canned backend responses: backend_response(302, headers={...})."""
    return _backend_response


@pytest.fixture
def login_as():
    """login_as(client, "alice") starts a session for a seeded account."""
    return _login_as


@pytest.fixture
def cookie_header():
    """cookie_header(client, jellyfin_auth="true") -> headers carrying session + extra cookies."""
    return _cookie_header


@pytest.fixture
def seed_password() -> str:
    """Password of every seeded account."""
    return TEST_PASSWORD
