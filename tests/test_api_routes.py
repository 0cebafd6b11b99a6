"""
tests/test_api_routes.py -- Integration tests for the /api/v1/user routes.

These tests exercise the full stack: SessionMiddleware cookie -> session
dependency -> AuthService -> SQLAlchemy stores -> response models -> error
envelope. The TestClient keeps cookies between calls, so each test reads like
a browser session.

Coverage:
  - login (plain and 2FA) binds the session; GET /user then resolves it
  - bad credentials, bad 2FA, logged-out logout, stale session, unknown field
    all surface as the ErrorResponse envelope with their own code
  - temp-password route issues a usable single-use credential
  - responses never carry password hashes or TOTP seeds
  - login issues a new session id, so a planted cookie never gets logged in
"""

from __future__ import annotations

import time

import pyotp
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from api.main import create_app
from auth.dependencies import require_login
from auth.two_factor import generate_secret

ALICE_PASSWORD = "correct horse battery staple"


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


def _wrong_totp(secret: str) -> str:
    """A six-digit code outside the verifier's accepted window."""
    totp = pyotp.TOTP(secret)
    now = time.time()
    accepted = {totp.at(now, offset) for offset in (-1, 0, 1)}
    return next(code for code in ("123456", "654321", "111111") if code not in accepted)


class TestLogin:
    def test_login_sets_session(self, api_client: TestClient, alice) -> None:
        resp = api_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["username"] == "alice"
        assert "hashed_password" not in body
        assert resp.headers["cache-control"] == "no-store"

        me = api_client.get("/api/v1/user")
        assert me.status_code == 200
        assert me.json()["id"] == alice.id

    def test_bad_password(self, api_client: TestClient, alice) -> None:
        resp = api_client.post("/api/v1/user/login", json={"username": "alice", "password": "wrong"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_credentials"

    def test_unknown_user_same_response(self, api_client: TestClient, alice) -> None:
        unknown = api_client.post("/api/v1/user/login", json={"username": "ghost", "password": "wrong"})
        wrong = api_client.post("/api/v1/user/login", json={"username": "alice", "password": "wrong"})
        assert unknown.status_code == wrong.status_code
        assert unknown.json() == wrong.json()

    def test_failed_login_leaves_session_logged_out(self, api_client: TestClient, alice) -> None:
        api_client.post("/api/v1/user/login", json={"username": "alice", "password": "wrong"})
        resp = api_client.get("/api/v1/user")
        assert resp.status_code == 401
        assert _error_code(resp) == "needs_login"

    def test_empty_body_is_validation_error(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/user/login", json={})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"


class TestTwoFactorLogin:
    @pytest.fixture
    def secret(self) -> str:
        return generate_secret()

    @pytest.fixture
    def carol(self, make_user, secret):
        return make_user("carol", "carol-password", two_factor_enabled=True, two_factor_secret=secret)

    def test_valid_code(self, api_client: TestClient, carol, secret) -> None:
        resp = api_client.post(
            "/api/v1/user/login/2fa",
            json={"username": "carol", "password": "carol-password", "two_factor": pyotp.TOTP(secret).now()},
        )
        assert resp.status_code == 200
        assert resp.json()["two_factor_enabled"] is True
        assert "two_factor_secret" not in resp.json()

    def test_missing_code(self, api_client: TestClient, carol) -> None:
        resp = api_client.post("/api/v1/user/login/2fa", json={"username": "carol", "password": "carol-password"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_2fa"
        assert api_client.get("/api/v1/user").status_code == 401

    def test_wrong_code(self, api_client: TestClient, carol, secret) -> None:
        resp = api_client.post(
            "/api/v1/user/login/2fa",
            json={"username": "carol", "password": "carol-password", "two_factor": _wrong_totp(secret)},
        )
        assert _error_code(resp) == "invalid_2fa"

    def test_wrong_password_before_code(self, api_client: TestClient, carol) -> None:
        resp = api_client.post("/api/v1/user/login/2fa", json={"username": "carol", "password": "nope"})
        assert _error_code(resp) == "invalid_credentials"

    def test_plain_login_ignores_2fa(self, api_client: TestClient, carol) -> None:
        resp = api_client.post("/api/v1/user/login", json={"username": "carol", "password": "carol-password"})
        assert resp.status_code == 200


class TestLogout:
    def test_logout_then_logout_again(self, api_client: TestClient, alice) -> None:
        api_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        first = api_client.post("/api/v1/user/logout")
        assert first.status_code == 200
        assert first.json() == {}
        second = api_client.post("/api/v1/user/logout")
        assert second.status_code == 400
        assert _error_code(second) == "already_logged_out"

    def test_logout_without_login(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/user/logout")
        assert _error_code(resp) == "already_logged_out"

    def test_user_after_logout_needs_login(self, api_client: TestClient, alice) -> None:
        api_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        api_client.post("/api/v1/user/logout")
        assert _error_code(api_client.get("/api/v1/user")) == "needs_login"

    def test_tampered_cookie_starts_fresh_session(self, api_client: TestClient, settings, alice) -> None:
        api_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        api_client.cookies.clear()
        api_client.cookies.set(settings.session_cookie, "forged.value")
        assert api_client.get("/api/v1/user").status_code == 401

    def test_planted_cookie_not_authenticated_by_victim_login(self, api_client: TestClient, make_user, alice) -> None:
        make_user("mallory", "mallory-password")
        api_client.post("/api/v1/user/login", json={"username": "mallory", "password": "mallory-password"})
        api_client.post("/api/v1/user/logout")

        # No context manager: the app lifespan already runs under api_client.
        victim = TestClient(api_client.app)
        for name, value in api_client.cookies.items():
            victim.cookies.set(name, value)
        resp = victim.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert resp.status_code == 200
        assert victim.get("/api/v1/user").json()["id"] == alice.id

        resp = api_client.get("/api/v1/user")
        assert resp.status_code == 401
        assert _error_code(resp) == "needs_login"


class TestCurrentUser:
    def test_stale_session(self, api_client: TestClient, user_store, alice) -> None:
        api_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        user_store.delete_user(alice.id)
        resp = api_client.get("/api/v1/user")
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_user_id"


class TestTempPasswordRoute:
    def test_issue_and_use(self, api_client: TestClient, alice) -> None:
        resp = api_client.post("/api/v1/user/temp-password", json={"username": "alice"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["username"] == "alice"
        assert "hashed_password" not in body["user"]

        login = api_client.post("/api/v1/user/login", json={"username": "alice", "password": body["temp_password"]})
        assert login.status_code == 200

    def test_second_request_rejected(self, api_client: TestClient, alice) -> None:
        api_client.post("/api/v1/user/temp-password", json={"username": "alice"})
        resp = api_client.post("/api/v1/user/temp-password", json={"username": "alice"})
        assert resp.status_code == 400
        assert _error_code(resp) == "temp_password_already_active"

    def test_unknown_user(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/user/temp-password", json={"username": "nobody"})
        assert _error_code(resp) == "unknown_user"

    def test_route_hidden_by_default(self, settings, user_store, session_store, hasher) -> None:
        settings.expose_temp_password_route = False
        app = create_app(settings, user_store=user_store, session_store=session_store, hasher=hasher)
        with TestClient(app) as client:
            resp = client.post("/api/v1/user/temp-password", json={"username": "alice"})
        assert resp.status_code == 404


class TestFieldExists:
    def test_existing(self, api_client: TestClient, alice) -> None:
        resp = api_client.post("/api/v1/user/field-exists", json={"key": "username", "value": "alice"})
        assert resp.status_code == 200
        assert resp.json() == {"exists": True}

    def test_missing(self, api_client: TestClient, alice) -> None:
        resp = api_client.post("/api/v1/user/field-exists", json={"key": "email", "value": "x@example.com"})
        assert resp.json() == {"exists": False}

    def test_invalid_field(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/user/field-exists", json={"key": "hashed_password", "value": "x"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_field"


class TestRequireLogin:
    """require_login is the precondition other routes depend on."""

    @pytest.fixture
    def guarded_client(self, settings, user_store, session_store, hasher):
        app = create_app(settings, user_store=user_store, session_store=session_store, hasher=hasher)

        @app.get("/api/v1/notes")
        def notes(user_id: int = Depends(require_login)) -> dict:
            return {"owner": user_id}

        with TestClient(app) as client:
            yield client

    def test_logged_out_needs_login(self, guarded_client: TestClient) -> None:
        resp = guarded_client.get("/api/v1/notes")
        assert resp.status_code == 401
        assert _error_code(resp) == "needs_login"

    def test_logged_in_passes_user_id(self, guarded_client: TestClient, alice) -> None:
        guarded_client.post("/api/v1/user/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert guarded_client.get("/api/v1/notes").json() == {"owner": alice.id}
