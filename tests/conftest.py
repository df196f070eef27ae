"""
tests/conftest.py -- Shared test fixtures for authkit.

This module provides:
  - FakeEmailSender / FakeGoogleProvider: recording stand-ins for the two
    network collaborators, injected the same way the lifespan injects the
    real ones
  - make_actions(): builds an AuthActions stack over a given store
  - memory_store / file_store: isolated UserStore fixtures
  - api_client / web_client: TestClient over the real app with a patched
    lifespan (web_client has follow_redirects=False)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Concurrency tests use file_store instead: shared-cache memory databases
report table locks to concurrent writers immediately rather than waiting.

Environment variables must be set before any auth/core import so
get_settings() sees them on first (cached) call.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("SIGNIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("FORGOT_PASSWORD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.actions import AuthActions
from auth.errors import ProviderUnavailable
from auth.oauth import OAuthProfile
from auth.oauth_flow import GoogleOAuthFlow
from auth.passwords import PasswordHasher
from auth.reset import ResetTokenService
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import Settings, get_settings

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    sender: str
    to: str
    subject: str
    text: str
    html: str


class FakeEmailSender:
    """Records every message instead of calling an email API."""

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[SentEmail] = []

    def send(self, sender: str, to: str, subject: str, text: str, html: str) -> bool:
        self.sent.append(SentEmail(sender, to, subject, text, html))
        return self.succeed

    def close(self) -> None:
        pass


@dataclass
class FakeGoogleProvider:
    """Stands in for GoogleOAuthProvider.

    The authorization code doubles as the key into `profiles`, so a test picks
    the identity Google "returns" by choosing the code. The code "down"
    simulates a provider outage.
    """

    profiles: dict[str, OAuthProfile] = field(default_factory=dict)
    exchanges: list[tuple[str, str]] = field(default_factory=list)

    def authorization_url(self, state: str, code_verifier: str) -> str:
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"

    def exchange_code(self, code: str, code_verifier: str) -> dict:
        self.exchanges.append((code, code_verifier))
        if code == "down":
            raise ProviderUnavailable()
        return {"access_token": code, "token_type": "Bearer"}

    def get_profile(self, token: dict) -> OAuthProfile:
        return self.profiles[token["access_token"]]


# ---------------------------------------------------------------------------
# Stack helpers
# ---------------------------------------------------------------------------


@dataclass
class AuthStack:
    store: UserStore
    actions: AuthActions
    email: FakeEmailSender
    google: FakeGoogleProvider


def make_settings(**overrides) -> Settings:
    base = {"debug": True, "secret_key": os.environ["SECRET_KEY"], "bcrypt_rounds": 4}
    base.update(overrides)
    return Settings(**base)


def make_actions(store: UserStore, settings: Settings | None = None) -> AuthStack:
    """Wire AuthActions over store with fake collaborators."""
    settings = settings or get_settings()
    sessions = SessionManager(store, settings)
    email = FakeEmailSender()
    google = FakeGoogleProvider()
    actions = AuthActions(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        sessions=sessions,
        resets=ResetTokenService(store, settings),
        email_sender=email,
        settings=settings,
        google=GoogleOAuthFlow(google, store, sessions, settings),
    )
    return AuthStack(store=store, actions=actions, email=email, google=google)


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:test_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(stack: AuthStack):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stack into app.state so TestClient routes see an isolated
    database and fake network collaborators.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stack.store
        app.state.auth = stack.actions
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_db_url("unit"))
    yield store
    store.close()


@pytest.fixture
def file_store(tmp_path) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
    yield store
    store.close()


@pytest.fixture
def stack(memory_store: UserStore) -> AuthStack:
    return make_actions(memory_store)


# ---------------------------------------------------------------------------
# Module-scoped clients -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthStack], None, None]:
    """Yield (client, stack) for JSON API integration tests."""
    stack = make_actions(UserStore(db_url=memory_db_url("api")))
    app.router.lifespan_context = _patch_lifespan(stack)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, stack

    stack.store.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, AuthStack], None, None]:
    """Yield (client, stack) for web route integration tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /signin), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    stack = make_actions(UserStore(db_url=memory_db_url("web")))
    app.router.lifespan_context = _patch_lifespan(stack)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, stack

    stack.store.close()


@pytest.fixture(autouse=True)
def _fresh_cookie_jar(request):
    """Start every test with an empty cookie jar on whichever client it uses.

    The clients are module-scoped, so a session cookie set by one test would
    otherwise authenticate the next.
    """
    for name in ("api_client", "web_client"):
        if name in request.fixturenames:
            client, _ = request.getfixturevalue(name)
            client.cookies.clear()
    yield


@pytest.fixture
def settings_factory():
    """Return make_settings so tests can build Settings with overrides."""
    return make_settings


@pytest.fixture
def file_stack(file_store: UserStore) -> AuthStack:
    return make_actions(file_store)
