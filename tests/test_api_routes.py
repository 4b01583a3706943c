"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> request models ->
AuthService -> UserStore/OtpStore -> response model serialization and the
error envelope. Unit testing individual route functions would miss the
exception handlers and the camelCase aliases -- integration tests are the
right tool here.

Coverage:
  - Signup: 201 with user + token, 400 with per-field errors, 409 on duplicates
  - Two-step login: password -> OTP -> token, replayed OTP rejected
  - Unknown email and wrong password return byte-identical 401 bodies
  - GET /me: missing, garbage and expired tokens map to distinct codes
  - Responses carrying tokens or codes are marked Cache-Control: no-store
  - POST /change-password end to end
  - Database failures become a generic 500 with no SQL or driver text

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient plus a token for the
    pre-registered user testuser@example.com / Abcd12!@.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from auth.otp_store import OtpStore
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import create_access_token

PASSWORD = "Abcd12!@"


def _signup(client: TestClient, name: str, email: str, password: str = PASSWORD, confirm: str | None = None):
    return client.post(
        "/api/v1/auth/signup",
        json={"name": name, "email": email, "password": password, "confirmPassword": confirm or password},
    )


def _ensure_user(client: TestClient, name: str, email: str) -> None:
    """Sign up once per module; later tests in the module reuse the account."""
    resp = _signup(client, name, email)
    assert resp.status_code in (201, 409), resp.text


def _login_and_verify(client: TestClient, email: str, password: str = PASSWORD):
    login = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert login.status_code == 200, login.text
    otp = login.json()["otp"]
    return client.post("/api/v1/auth/verify-otp", json={"email": email, "password": password, "otp": otp})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignupRoute:
    def test_signup_then_me(self, api_client: tuple[TestClient, str, int]) -> None:
        """A fresh signup returns 201 and its token resolves to the same account."""
        client, _token, _uid = api_client
        resp = _signup(client, "Jane Doe", "jane@x.com")
        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["email"] == "jane@x.com"
        assert body["user"]["name"] == "Jane Doe"
        assert "createdAt" in body["user"] and "updatedAt" in body["user"]
        assert resp.headers["Cache-Control"] == "no-store"

        me = client.get("/api/v1/auth/me", headers=_bearer(body["token"]))
        assert me.status_code == 200
        assert me.json()["user"]["email"] == "jane@x.com"
        assert me.json()["user"]["id"] == body["user"]["id"]

    def test_user_projection_has_no_password_fields(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _signup(client, "Pat Smith", "pat@x.com")
        assert resp.status_code == 201
        keys = {k.lower() for k in resp.json()["user"]}
        assert not any("password" in k for k in keys)

    def test_duplicate_email_any_case(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _signup(client, "Test User", "TESTUSER@example.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_missing_confirm_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"name": "Sam Lee", "email": "sam@x.com", "password": PASSWORD},
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "confirmPassword" in error["fields"]

    def test_password_mismatch(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _signup(client, "Sam Lee", "sam@x.com", confirm="Abcd12!#")
        assert resp.status_code == 400
        assert resp.json()["error"]["fields"] == {"confirmPassword": "Password and Confirm Password do not match"}

    def test_weak_password_and_bad_name(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _signup(client, "S4m", "sam@x.com", password="password")
        assert resp.status_code == 400
        assert set(resp.json()["error"]["fields"]) == {"name", "password"}


class TestLoginRoutes:
    def test_two_step_login(self, api_client: tuple[TestClient, str, int]) -> None:
        """Password gives a 6-digit code; code plus password gives a token."""
        client, _token, uid = api_client
        login = client.post("/api/v1/auth/login", json={"email": "testuser@example.com", "password": PASSWORD})
        assert login.status_code == 200
        body = login.json()
        assert len(body["otp"]) == 6 and body["otp"].isdigit()
        assert body["expiresIn"] == "10 minutes"
        assert login.headers["Cache-Control"] == "no-store"

        verify = client.post(
            "/api/v1/auth/verify-otp",
            json={"email": "testuser@example.com", "password": PASSWORD, "otp": body["otp"]},
        )
        assert verify.status_code == 200
        assert verify.json()["user"]["id"] == uid
        assert verify.headers["Cache-Control"] == "no-store"

        me = client.get("/api/v1/auth/me", headers=_bearer(verify.json()["token"]))
        assert me.json()["user"]["email"] == "testuser@example.com"

    def test_otp_replay_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        login = client.post("/api/v1/auth/login", json={"email": "testuser@example.com", "password": PASSWORD})
        payload = {"email": "testuser@example.com", "password": PASSWORD, "otp": login.json()["otp"]}
        assert client.post("/api/v1/auth/verify-otp", json=payload).status_code == 200
        replay = client.post("/api/v1/auth/verify-otp", json=payload)
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "invalid_otp"
        assert replay.json()["error"]["message"] == "Invalid or expired OTP. Please request a new OTP."

    def test_wrong_password_and_unknown_email_identical(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        wrong = client.post("/api/v1/auth/login", json={"email": "testuser@example.com", "password": "Wrong12!@"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "invalid_credentials"
        assert wrong.headers["WWW-Authenticate"] == "Bearer"

    def test_verify_with_wrong_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        login = client.post("/api/v1/auth/login", json={"email": "testuser@example.com", "password": PASSWORD})
        resp = client.post(
            "/api/v1/auth/verify-otp",
            json={"email": "testuser@example.com", "password": "Wrong12!@", "otp": login.json()["otp"]},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_login_missing_field(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "testuser@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["fields"] == {"password": "password is required"}


class TestMeRoute:
    def test_me_with_fixture_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == uid

    def test_me_without_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"

    def test_me_with_garbage_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_with_expired_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer(create_access_token(uid, expire_seconds=-60)))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"

    def test_lowercase_bearer_scheme(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"bearer {token}"})
        assert resp.status_code == 200


class TestScenarios:
    def test_signup_login_verify(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _ensure_user(client, "Jane Doe", "jane@x.com")
        verify = _login_and_verify(client, "jane@x.com")
        assert verify.status_code == 200
        me = client.get("/api/v1/auth/me", headers=_bearer(verify.json()["token"]))
        assert me.json()["user"]["email"] == "jane@x.com"

    def test_second_login_invalidates_first_code(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _ensure_user(client, "Jane Doe", "jane@x.com")
        creds = {"email": "jane@x.com", "password": PASSWORD}
        first = client.post("/api/v1/auth/login", json=creds).json()["otp"]
        second = client.post("/api/v1/auth/login", json=creds).json()["otp"]
        if first != second:
            stale = client.post("/api/v1/auth/verify-otp", json={**creds, "otp": first})
            assert stale.status_code == 401
        assert client.post("/api/v1/auth/verify-otp", json={**creds, "otp": second}).status_code == 200


class TestChangePasswordRoute:
    def test_change_password_flow(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _ensure_user(client, "Alex Kim", "alex@x.com")
        token = _login_and_verify(client, "alex@x.com").json()["token"]
        new = "Wxyz98?%"

        resp = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": new, "confirmPassword": new},
            headers=_bearer(token),
        )
        assert resp.status_code == 200
        old = client.post("/api/v1/auth/login", json={"email": "alex@x.com", "password": PASSWORD})
        assert old.status_code == 401
        assert _login_and_verify(client, "alex@x.com", new).status_code == 200

    def test_change_password_requires_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "Wxyz98?%", "confirmPassword": "Wxyz98?%"},
        )
        assert resp.status_code == 401


class TestErrorEnvelope:
    def test_unknown_route_uses_envelope(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"

    def test_store_failure_returns_generic_500(
        self, api_client: tuple[TestClient, str, int], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A database error surfaces as internal_error; SQL and driver text stay in the log."""
        client, _token, _uid = api_client
        broken = MagicMock(spec=UserStore)
        broken.find_by_email.side_effect = OperationalError(
            "SELECT users.password_hash FROM users WHERE users.email = ?",
            ("testuser@example.com",),
            Exception("disk I/O error"),
        )
        monkeypatch.setattr(
            client.app.state, "auth_service", AuthService(broken, MagicMock(spec=OtpStore))
        )

        resp = client.post("/api/v1/auth/login", json={"email": "testuser@example.com", "password": PASSWORD})
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "internal_error"
        assert error["message"] == "An unexpected error occurred."
        assert "SELECT" not in resp.text
        assert "password_hash" not in resp.text
        assert "disk I/O" not in resp.text
        assert "WWW-Authenticate" not in resp.headers
