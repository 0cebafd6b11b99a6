"""
tests/conftest.py -- Shared test fixtures for Keyward.

This module provides:
  - db_url: a unique named shared-memory SQLite URI per test
  - user_store / session_store: real SQLAlchemy stores on that URI
  - auth: AuthService wired with a low-cost bcrypt hasher and real TOTP
  - make_user / alice: user factories
  - api_client: TestClient against create_app() with the stores above

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool and the two
stores hold separate engines. Plain :memory: DBs are per-connection and would
present a blank schema to each of them. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

DEBUG is set before any app import so get_settings() (test_config.py) can
auto-generate SECRET_KEY instead of raising ConfigurationError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from auth.hashing import BcryptHasher
from auth.models import User
from auth.service import AuthService
from auth.store import SessionStore, UserStore
from auth.two_factor import TotpVerifier
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
ALICE_PASSWORD = "correct horse battery staple"


@pytest.fixture
def hasher() -> BcryptHasher:
    """bcrypt at its minimum cost factor -- same algorithm, fast suite."""
    return BcryptHasher(rounds=4)


@pytest.fixture
def db_url() -> str:
    return f"sqlite:///file:keyward_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url)
    yield store
    store.close()


@pytest.fixture
def session_store(db_url: str) -> Generator[SessionStore, None, None]:
    store = SessionStore(db_url, max_age=3600)
    yield store
    store.close()


@pytest.fixture
def auth(user_store: UserStore, session_store: SessionStore, hasher: BcryptHasher) -> AuthService:
    return AuthService(user_store, session_store, hasher, TotpVerifier())


@pytest.fixture
def make_user(user_store: UserStore, hasher: BcryptHasher) -> Callable[..., User]:
    """Create and return a persisted user. Extra kwargs go to User()."""

    def _make(username: str, password: str, **fields) -> User:
        uid = user_store.create_user(User(username=username, hashed_password=hasher.hash(password), **fields))
        return user_store.get_by_id(uid)

    return _make


@pytest.fixture
def alice(make_user) -> User:
    return make_user("alice", ALICE_PASSWORD, email="alice@example.com")


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key=TEST_SECRET, expose_temp_password_route=True)


@pytest.fixture
def api_client(
    settings: Settings,
    user_store: UserStore,
    session_store: SessionStore,
    hasher: BcryptHasher,
) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated in-memory stores.

    The client keeps cookies between requests, so the session cookie set by
    one call is presented on the next, like a browser.
    """
    app = create_app(settings, user_store=user_store, session_store=session_store, hasher=hasher)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client
