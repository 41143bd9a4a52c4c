"""
tests/test_api_routes.py -- Integration tests for the HTTP binding.

These tests exercise the full stack: FastAPI routing -> request validation ->
AuthService / AuthorizationGuard -> SqlCredentialStore -> error envelope.

Coverage:
  - signup: 201, default role, 409 conflicts, 400 unknown role, 422 validation
  - signin: 200 token pair with no-store, 401 bad_credentials for both causes
  - refreshtoken: rotation, 403 on reuse, generic refresh error code
  - signout: revokes the chain
  - /test/*: public, 401 without/with bad token, 403 wrong role, 200 right role

Fixtures used (from conftest.py):
  - api_client: (client, store) -- TestClient with an isolated shared-memory DB
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from auth.models import Role
from auth.tokens import AccessTokenCodec
from core.config import get_settings


def _signup(client: TestClient, username: str, roles: list[str] | None = None) -> None:
    body = {"username": username, "email": f"{username}@example.com", "password": "pw123456"}
    if roles is not None:
        body["roles"] = roles
    resp = client.post("/api/v1/auth/signup", json=body)
    assert resp.status_code == 201, resp.text


def _signin(client: TestClient, username: str, password: str = "pw123456") -> dict:
    resp = client.post("/api/v1/auth/signin", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def accounts(api_client) -> dict[str, dict]:
    """Sign up one account per role once per module; return their signin bodies."""
    client, _store = api_client
    _signup(client, "plainuser")
    _signup(client, "moduser", ["mod"])
    _signup(client, "adminuser", ["admin", "user"])
    return {name: _signin(client, name) for name in ("plainuser", "moduser", "adminuser")}


class TestSignup:
    def test_signup_defaults_to_user(self, api_client) -> None:
        client, _store = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "alice", "email": "a@x.com", "password": "pw123456"},
        )
        assert resp.status_code == 201
        assert resp.json() == {"message": "User registered successfully!"}
        assert _signin(client, "alice")["roles"] == [Role.USER.value]

    def test_signup_accepts_role_alias_field(self, api_client) -> None:
        client, _store = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "carol", "email": "c@x.com", "password": "pw123456", "role": ["mod"]},
        )
        assert resp.status_code == 201
        assert _signin(client, "carol")["roles"] == [Role.MODERATOR.value]

    def test_single_role_string_is_one_role(self, api_client) -> None:
        client, _store = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "solo", "email": "solo@x.com", "password": "pw123456", "role": "admin"},
        )
        assert resp.status_code == 201
        assert _signin(client, "solo")["roles"] == [Role.ADMIN.value]

    def test_duplicate_username(self, api_client) -> None:
        client, _store = api_client
        _signup(client, "dupname")
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "dupname", "email": "fresh@x.com", "password": "pw123456"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_duplicate_email(self, api_client) -> None:
        client, _store = api_client
        _signup(client, "emailone")
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "emailtwo", "email": "emailone@example.com", "password": "pw123456"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "email_taken"

    def test_unknown_role(self, api_client) -> None:
        client, _store = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "emperor", "email": "e@x.com", "password": "pw123456", "roles": ["emperor"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_role"

    @pytest.mark.parametrize(
        "body",
        [
            {"username": "ab", "email": "ab@x.com", "password": "pw123456"},
            {"username": "x" * 21, "email": "long@x.com", "password": "pw123456"},
            {"username": "bademail", "email": "not-an-email", "password": "pw123456"},
            {"username": "shortpw", "email": "s@x.com", "password": "12345"},
            {"username": "longpw", "email": "l@x.com", "password": "p" * 41},
            {"username": "emojipw", "email": "em@x.com", "password": "\U0001f600" * 20},
            {"username": "badroles", "email": "br@x.com", "password": "pw123456", "roles": 5},
        ],
    )
    def test_validation(self, api_client, body: dict) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/signup", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert body["password"] not in resp.text


class TestSignin:
    def test_signin_returns_pair(self, api_client, accounts) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/signin", json={"username": "plainuser", "password": "pw123456"})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["type"] == "Bearer"
        assert data["username"] == "plainuser"
        assert data["email"] == "plainuser@example.com"
        assert data["expires_in"] == get_settings().access_token_expire_seconds
        assert data["token"] and data["refresh_token"]

    @pytest.mark.parametrize("username, password", [("plainuser", "wrongpw"), ("nobody", "pw123456")])
    def test_bad_credentials_indistinguishable(self, api_client, accounts, username: str, password: str) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/signin", json={"username": username, "password": password})
        assert resp.status_code == 401
        assert resp.json() == {
            "error": {"code": "bad_credentials", "message": "Invalid username or password.", "detail": None}
        }


    @pytest.mark.parametrize("username", ["plainuser", "nobody"])
    def test_overlong_password_is_401(self, api_client, accounts, username: str) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/signin", json={"username": username, "password": "x" * 100})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestRefreshAndSignout:
    def test_refresh_rotates(self, api_client) -> None:
        client, _store = api_client
        _signup(client, "rotator")
        first = _signin(client, "rotator")

        resp = client.post("/api/v1/auth/refreshtoken", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "Bearer"
        assert data["refresh_token"] != first["refresh_token"]
        assert client.get("/api/v1/test/user", headers=_bearer(data["access_token"])).status_code == 200

    def test_reuse_is_rejected_and_revokes_chain(self, api_client) -> None:
        client, _store = api_client
        _signup(client, "victim")
        first = _signin(client, "victim")
        second = client.post("/api/v1/auth/refreshtoken", json={"refreshToken": first["refresh_token"]}).json()

        replay = client.post("/api/v1/auth/refreshtoken", json={"refresh_token": first["refresh_token"]})
        assert replay.status_code == 403
        assert replay.json()["error"]["code"] == "refresh_token_rejected"

        follow_up = client.post("/api/v1/auth/refreshtoken", json={"refresh_token": second["refresh_token"]})
        assert follow_up.status_code == 403

    def test_unknown_refresh_token(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/api/v1/auth/refreshtoken", json={"refresh_token": "never-issued"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "refresh_token_rejected"

    def test_signout(self, api_client) -> None:
        client, _store = api_client
        _signup(client, "leaver")
        pair = _signin(client, "leaver")

        resp = client.post("/api/v1/auth/signout", json={"refresh_token": pair["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Log out successful!"}

        again = client.post("/api/v1/auth/refreshtoken", json={"refresh_token": pair["refresh_token"]})
        assert again.status_code == 403


class TestRoleGatedContent:
    def test_public(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/test/all")
        assert resp.status_code == 200
        assert resp.text == "Public Content."

    @pytest.mark.parametrize("path", ["/api/v1/test/user", "/api/v1/test/mod", "/api/v1/test/admin", "/api/v1/auth/me"])
    def test_no_token_is_401(self, api_client, path: str) -> None:
        client, _store = api_client
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_malformed_header_is_401(self, api_client, accounts) -> None:
        client, _store = api_client
        token = accounts["adminuser"]["token"]
        resp = client.get("/api/v1/test/admin", headers={"Authorization": f"Token {token}"})
        assert resp.status_code == 401

    def test_expired_token_is_401(self, api_client) -> None:
        client, _store = api_client
        codec = AccessTokenCodec(get_settings().secret_key, ttl_seconds=60)
        stale = codec.issue("adminuser", {Role.ADMIN}, datetime.now(timezone.utc) - timedelta(hours=1)).value
        resp = client.get("/api/v1/test/admin", headers=_bearer(stale))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_forged_token_is_401(self, api_client) -> None:
        client, _store = api_client
        codec = AccessTokenCodec("f" * 48, ttl_seconds=600)
        forged = codec.issue("adminuser", {Role.ADMIN}, datetime.now(timezone.utc)).value
        assert client.get("/api/v1/test/admin", headers=_bearer(forged)).status_code == 401

    @pytest.mark.parametrize(
        "account, path, expected",
        [
            ("plainuser", "/api/v1/test/user", 200),
            ("plainuser", "/api/v1/test/mod", 403),
            ("plainuser", "/api/v1/test/admin", 403),
            ("moduser", "/api/v1/test/user", 200),
            ("moduser", "/api/v1/test/mod", 200),
            ("moduser", "/api/v1/test/admin", 403),
            ("adminuser", "/api/v1/test/user", 200),
            ("adminuser", "/api/v1/test/mod", 403),
            ("adminuser", "/api/v1/test/admin", 200),
        ],
    )
    def test_role_matrix(self, api_client, accounts, account: str, path: str, expected: int) -> None:
        client, _store = api_client
        resp = client.get(path, headers=_bearer(accounts[account]["token"]))
        assert resp.status_code == expected
        if expected == 403:
            assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_board_text(self, api_client, accounts) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/test/admin", headers=_bearer(accounts["adminuser"]["token"]))
        assert resp.text == "Admin Board."

    def test_me(self, api_client, accounts) -> None:
        client, _store = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer(accounts["moduser"]["token"]))
        assert resp.status_code == 200
        assert resp.json()["username"] == "moduser"
        assert resp.json()["roles"] == [Role.MODERATOR.value]

