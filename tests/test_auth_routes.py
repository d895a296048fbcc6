"""
tests/test_auth_routes.py -- Integration tests for the /api/v1/auth endpoints.

These tests exercise the full stack: FastAPI routing -> request validation ->
credential hashing / token issuance -> UserStore/SessionStore -> response
serialization and the shared error envelope.

Coverage:
  - Signup: 201 with both tokens, duplicate email 409, validation failures 400
  - Login: 200 with tokens and last_login_at, wrong password / unknown email 401
  - Refresh: rotation issues a new pair and burns the old token
  - Logout: idempotent 200, revoked token cannot refresh
  - Me: GET/PUT with bearer token, 401 without or with a bad token
  - Rate limiting: login answers 429 once the per-IP limit is exceeded

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with admin JWT
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.models import User
from auth.tokens import create_access_token, decode_access_token
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD

SIGNUP = "/api/v1/auth/signup"
LOGIN = "/api/v1/auth/login"
REFRESH = "/api/v1/auth/refresh"
LOGOUT = "/api/v1/auth/logout"
ME = "/api/v1/auth/me"


def _signup(client: TestClient, email: str, password: str = "secret123", **extra):
    return client.post(SIGNUP, json={"email": email, "password": password, **extra})


def _login(client: TestClient, email: str, password: str = "secret123"):
    return client.post(LOGIN, json={"email": email, "password": password})


class TestSignup:
    def test_signup_returns_201_with_tokens(self, api_client: tuple[TestClient, str, int]) -> None:
        """POST /auth/signup with a fresh email must return 201 with user and both tokens."""
        client, _token, _uid = api_client
        resp = _signup(client, "a@b.com", name="Asha")
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["user"]["email"] == "a@b.com"
        assert data["user"]["name"] == "Asha"
        assert data["user"]["role"] == "USER"
        assert data["accessToken"]
        assert data["refreshToken"]
        assert data["tokenType"] == "bearer"
        assert data["expiresIn"] > 0
        assert "hashedPassword" not in data["user"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_signup_access_token_names_new_user(self, api_client: tuple[TestClient, str, int]) -> None:
        """The access token returned by signup must decode to the new user's id."""
        client, _token, _uid = api_client
        data = _signup(client, "decode@cropcase.in").json()
        claims = decode_access_token(data["accessToken"])
        assert claims["user_id"] == data["user"]["id"]
        assert claims["role"] == "USER"

    def test_duplicate_email_returns_409(self, api_client: tuple[TestClient, str, int]) -> None:
        """A second signup with the same email (any case) must return 409 conflict."""
        client, _token, _uid = api_client
        assert _signup(client, "dupe@cropcase.in").status_code == 201
        resp = _signup(client, "Dupe@CropCase.in")
        assert resp.status_code == 409, f"Expected 409, got {resp.status_code}: {resp.text}"
        error = resp.json()["error"]
        assert error["code"] == "conflict"
        assert error["fields"][0]["field"] == "email"

    def test_empty_password_returns_400_and_creates_nothing(self, api_client: tuple[TestClient, str, int]) -> None:
        """An empty password must be rejected with validation_error before any user is stored."""
        client, _token, _uid = api_client
        resp = _signup(client, "empty@cropcase.in", password="")
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert any(f["field"] == "password" for f in error["fields"])
        assert client.app.state.user_store.get_by_email("empty@cropcase.in") is None

    @pytest.mark.parametrize(
        "body, field",
        [
            ({"email": "not-an-email", "password": "secret123"}, "email"),
            ({"email": "short@cropcase.in", "password": "12345"}, "password"),
            ({"email": "long@cropcase.in", "password": "é" * 37}, "password"),
            ({"email": "name@cropcase.in", "password": "secret123", "name": "x" * 101}, "name"),
            ({"email": "extra@cropcase.in", "password": "secret123", "role": "ADMIN"}, "role"),
            ({"password": "secret123"}, "email"),
        ],
    )
    def test_invalid_signup_bodies_return_400(
        self, api_client: tuple[TestClient, str, int], body: dict, field: str
    ) -> None:
        """Malformed signup bodies must return 400 validation_error naming the bad field."""
        client, _token, _uid = api_client
        resp = client.post(SIGNUP, json=body)
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        fields = [f["field"] for f in resp.json()["error"]["fields"]]
        assert field in fields

    def test_password_at_byte_limit_is_accepted(self, api_client: tuple[TestClient, str, int]) -> None:
        """A 72-byte password (36 two-byte characters) is the longest bcrypt accepts."""
        client, _token, _uid = api_client
        resp = _signup(client, "bytes@cropcase.in", password="é" * 36)
        assert resp.status_code == 201, f"Expected 201, got {resp.status_code}: {resp.text}"
        assert _login(client, "bytes@cropcase.in", "é" * 36).status_code == 200


class TestLogin:
    def test_signup_then_login_flow(self, api_client: tuple[TestClient, str, int]) -> None:
        """signup a@b-style account; wrong password 401 invalid_credentials; right password 200 with tokens."""
        client, _token, _uid = api_client
        assert _signup(client, "flow@cropcase.in", "secret123").status_code == 201

        bad = _login(client, "flow@cropcase.in", "wrongpass")
        assert bad.status_code == 401, f"Expected 401, got {bad.status_code}: {bad.text}"
        assert bad.json()["error"]["code"] == "invalid_credentials"

        good = _login(client, "flow@cropcase.in", "secret123")
        assert good.status_code == 200, f"Expected 200, got {good.status_code}: {good.text}"
        data = good.json()
        assert data["accessToken"] and data["refreshToken"]
        assert data["user"]["lastLoginAt"] is not None
        assert decode_access_token(data["accessToken"])["user_id"] == data["user"]["id"]

    def test_unknown_email_matches_wrong_password(self, api_client: tuple[TestClient, str, int]) -> None:
        """Unknown email must produce the same status, code and message as a wrong password."""
        client, _token, _uid = api_client
        unknown = _login(client, "nobody@cropcase.in", "whatever1")
        wrong = _login(client, ADMIN_EMAIL, "not-the-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_login_email_is_case_insensitive(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _login(client, ADMIN_EMAIL.upper(), ADMIN_PASSWORD)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        assert resp.json()["user"]["role"] == "ADMIN"

    def test_login_accepts_snake_case_body(self, api_client: tuple[TestClient, str, int]) -> None:
        """Field names are camelCase on the wire but snake_case input is accepted too."""
        client, _token, _uid = api_client
        tokens = _login(client, ADMIN_EMAIL, ADMIN_PASSWORD).json()
        resp = client.post(REFRESH, json={"refresh_token": tokens["refreshToken"]})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    def test_empty_password_returns_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = _login(client, ADMIN_EMAIL, "")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestRefreshAndLogout:
    def test_refresh_rotates_tokens(self, api_client: tuple[TestClient, str, int]) -> None:
        """POST /auth/refresh must return a new pair; the old refresh token must stop working."""
        client, _token, _uid = api_client
        first = _signup(client, "rotate@cropcase.in").json()

        resp = client.post(REFRESH, json={"refreshToken": first["refreshToken"]})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        second = resp.json()
        assert second["refreshToken"] != first["refreshToken"]
        assert second["user"]["id"] == first["user"]["id"]
        assert resp.headers["Cache-Control"] == "no-store"

        reuse = client.post(REFRESH, json={"refreshToken": first["refreshToken"]})
        assert reuse.status_code == 401, f"Expected 401, got {reuse.status_code}: {reuse.text}"
        assert reuse.json()["error"]["code"] == "invalid_token"

        again = client.post(REFRESH, json={"refreshToken": second["refreshToken"]})
        assert again.status_code == 200

    def test_refresh_with_unknown_token_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REFRESH, json={"refreshToken": "definitely-not-issued"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_refresh_without_token_returns_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REFRESH, json={})
        assert resp.status_code == 400
        assert resp.json()["error"]["fields"][0]["field"] == "refreshToken"

    def test_logout_is_idempotent(self, api_client: tuple[TestClient, str, int]) -> None:
        """Logging out twice with the same token must return 200 both times."""
        client, _token, _uid = api_client
        tokens = _signup(client, "logout@cropcase.in").json()
        body = {"refreshToken": tokens["refreshToken"]}
        first = client.post(LOGOUT, json=body)
        second = client.post(LOGOUT, json=body)
        assert first.status_code == 200, f"Expected 200, got {first.status_code}: {first.text}"
        assert second.status_code == 200, f"Expected 200, got {second.status_code}: {second.text}"
        assert "message" in second.json()

    def test_refresh_after_logout_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        """A just-revoked refresh token must not produce a new access token."""
        client, _token, _uid = api_client
        tokens = _signup(client, "revoked@cropcase.in").json()
        client.post(LOGOUT, json={"refreshToken": tokens["refreshToken"]})
        resp = client.post(REFRESH, json={"refreshToken": tokens["refreshToken"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout_does_not_touch_other_sessions(self, api_client: tuple[TestClient, str, int]) -> None:
        """Each login is its own session; logging one out leaves the others usable."""
        client, _token, _uid = api_client
        _signup(client, "twodevices@cropcase.in")
        phone = _login(client, "twodevices@cropcase.in").json()
        laptop = _login(client, "twodevices@cropcase.in").json()
        client.post(LOGOUT, json={"refreshToken": phone["refreshToken"]})
        resp = client.post(REFRESH, json={"refreshToken": laptop["refreshToken"]})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"


class TestMe:
    def test_me_without_token_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        """GET /api/v1/auth/me without Authorization header must return 401 unauthorized."""
        client, _token, _uid = api_client
        resp = client.get(ME)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_garbage_token_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_with_expired_token_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        admin = client.app.state.user_store.get_by_id(uid)
        expired, _ = create_access_token(admin, expire_seconds=-10)
        resp = client.get(ME, headers={"Authorization": f"Bearer {expired}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_for_deleted_user_returns_401(self, api_client: tuple[TestClient, str, int]) -> None:
        """A validly signed token naming a user that no longer exists must not authenticate."""
        client, _token, _uid = api_client
        ghost = User(id=999999, email="ghost@cropcase.in")
        token, _ = create_access_token(ghost, expire_seconds=3600)
        resp = client.get(ME, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_me_returns_profile(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.get(ME, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["id"] == uid
        assert data["email"] == ADMIN_EMAIL
        assert "hashedPassword" not in data

    def test_update_profile(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        tokens = _signup(client, "profile@cropcase.in").json()
        headers = {"Authorization": f"Bearer {tokens['accessToken']}"}
        resp = client.put(ME, json={"name": "Ravi", "avatar": "https://img.example.in/ravi.png"}, headers=headers)
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        user = resp.json()["user"]
        assert user["name"] == "Ravi"
        assert user["avatar"] == "https://img.example.in/ravi.png"
        assert client.get(ME, headers=headers).json()["name"] == "Ravi"

    @pytest.mark.parametrize(
        "body",
        [{}, {"avatar": "javascript:alert(1)"}, {"email": "new@cropcase.in"}, {"name": ""}],
    )
    def test_update_profile_rejects_bad_bodies(self, api_client: tuple[TestClient, str, int], body: dict) -> None:
        client, token, _uid = api_client
        resp = client.put(ME, json=body, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 400, f"Expected 400, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "validation_error"


class TestRateLimit:
    def test_login_is_rate_limited(self, api_client: tuple[TestClient, str, int]) -> None:
        """Once the per-IP login limit is used up, further attempts get 429 with Retry-After."""
        client, _token, _uid = api_client
        limiter.reset()
        limiter.enabled = True
        try:
            responses = [_login(client, "nobody@cropcase.in", "whatever1") for _ in range(11)]
        finally:
            limiter.enabled = False
            limiter.reset()
        assert [r.status_code for r in responses[:10]] == [401] * 10
        assert responses[10].status_code == 429
        assert responses[10].json()["error"]["code"] == "rate_limited"
        assert int(responses[10].headers["Retry-After"]) > 0
