"""
tests/test_api_auth.py -- Integration tests for the /auth routes.

These tests exercise the full stack: middleware -> routing -> validation ->
CredentialValidator / RotationProtocol -> stores -> envelope serialization.

Coverage:
  - register: 201 with user + tokens, no hash on the wire, 409 duplicate, 400 validation
  - login: success, identical failures for wrong password and unknown email
  - refresh: rotation, reuse detection revokes the chain, camelCase body
  - logout: idempotent, silent for unknown tokens
  - me: 200, 401 missing / expired / tampered token, 404 deleted account
  - token responses carry Cache-Control: no-store

Fixtures used (from conftest.py):
  - api_client: ApiContext with an admin and a regular user (user@example.com / user-pass-123)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import OperationalError

from auth.models import Role
from auth.tokens import create_access_token

if TYPE_CHECKING:
    from conftest import ApiContext

USER_EMAIL = "user@example.com"
USER_PASSWORD = "user-pass-123"

REGISTER = "/api/v1/auth/register"
LOGIN = "/api/v1/auth/login"
REFRESH = "/api/v1/auth/refresh"
LOGOUT = "/api/v1/auth/logout"
ME = "/api/v1/auth/me"


def _login(ctx: ApiContext, email: str = USER_EMAIL, password: str = USER_PASSWORD) -> dict:
    resp = ctx.client.post(LOGIN, json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["tokens"]


class TestRegister:
    def test_register_returns_user_and_tokens(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(
            REGISTER, json={"email": "New.Person@Example.com", "password": "brand-new-pass", "name": " New "}
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["success"] is True
        user = body["data"]["user"]
        assert user["email"] == "new.person@example.com"
        assert user["name"] == "New"
        assert user["role"] == "USER"
        assert user["emailVerified"] is False
        tokens = body["data"]["tokens"]
        assert tokens["tokenType"] == "bearer"
        assert tokens["expiresIn"] == 900
        assert tokens["accessToken"] and tokens["refreshToken"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_register_never_exposes_password(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REGISTER, json={"email": "secret@example.com", "password": "hunter2-hunter2"})
        assert resp.status_code == 201
        text = resp.text.lower()
        assert "hunter2-hunter2" not in text
        assert "password" not in text
        assert "$2b$" not in text

    def test_registered_access_token_works(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REGISTER, json={"email": "fresh@example.com", "password": "fresh-pass-1"})
        access = resp.json()["data"]["tokens"]["accessToken"]
        me = api_client.client.get(ME, headers=api_client.bearer(access))
        assert me.status_code == 200
        assert me.json()["data"]["email"] == "fresh@example.com"

    def test_duplicate_email_is_409(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REGISTER, json={"email": USER_EMAIL.upper(), "password": "another-pass"})
        assert resp.status_code == 409
        body = resp.json()
        assert body["success"] is False
        assert body["data"] is None
        assert body["error"]["code"] == "duplicate_email"

    def test_invalid_email_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REGISTER, json={"email": "not-an-email", "password": "long-enough"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_short_password_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REGISTER, json={"email": "short@example.com", "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_password_over_72_bytes_is_400(self, api_client: ApiContext) -> None:
        # 25 three-byte characters: 25 chars, 75 bytes.
        resp = api_client.client.post(REGISTER, json={"email": "long@example.com", "password": "€" * 25})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_success(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(LOGIN, json={"email": USER_EMAIL, "password": USER_PASSWORD})
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["user"]["id"] == api_client.user.id
        assert body["data"]["tokens"]["refreshToken"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_failures_are_indistinguishable(self, api_client: ApiContext) -> None:
        wrong_password = api_client.client.post(LOGIN, json={"email": USER_EMAIL, "password": "wrong-password"})
        unknown_email = api_client.client.post(LOGIN, json={"email": "nobody@example.com", "password": USER_PASSWORD})
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "invalid_credentials"

    def test_empty_fields_are_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(LOGIN, json={"email": "", "password": ""})
        assert resp.status_code == 400


class TestRefresh:
    def test_refresh_rotates(self, api_client: ApiContext) -> None:
        tokens = _login(api_client)
        resp = api_client.client.post(REFRESH, json={"refreshToken": tokens["refreshToken"]})
        assert resp.status_code == 200, resp.text
        rotated = resp.json()["data"]
        assert rotated["refreshToken"] != tokens["refreshToken"]
        assert rotated["tokenType"] == "bearer"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_snake_case_body_is_accepted(self, api_client: ApiContext) -> None:
        tokens = _login(api_client)
        resp = api_client.client.post(REFRESH, json={"refresh_token": tokens["refreshToken"]})
        assert resp.status_code == 200

    def test_reuse_revokes_chain(self, api_client: ApiContext) -> None:
        original = _login(api_client)["refreshToken"]
        rotated = api_client.client.post(REFRESH, json={"refreshToken": original}).json()["data"]["refreshToken"]

        reuse = api_client.client.post(REFRESH, json={"refreshToken": original})
        assert reuse.status_code == 401
        assert reuse.json()["error"]["code"] == "token_reuse_detected"

        follow_up = api_client.client.post(REFRESH, json={"refreshToken": rotated})
        assert follow_up.status_code == 401

    def test_unknown_token_is_invalid(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REFRESH, json={"refreshToken": "never-issued"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid"

    def test_missing_token_is_400(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(REFRESH, json={})
        assert resp.status_code == 400


class TestLogout:
    def test_logout_is_idempotent(self, api_client: ApiContext) -> None:
        refresh_token = _login(api_client)["refreshToken"]
        for _ in range(2):
            resp = api_client.client.post(LOGOUT, json={"refreshToken": refresh_token})
            assert resp.status_code == 200
            assert resp.json()["success"] is True
            assert resp.json()["data"] is None

    def test_logout_unknown_token_succeeds(self, api_client: ApiContext) -> None:
        resp = api_client.client.post(LOGOUT, json={"refreshToken": "never-issued"})
        assert resp.status_code == 200

    def test_logged_out_token_cannot_refresh(self, api_client: ApiContext) -> None:
        refresh_token = _login(api_client)["refreshToken"]
        api_client.client.post(LOGOUT, json={"refreshToken": refresh_token})
        resp = api_client.client.post(REFRESH, json={"refreshToken": refresh_token})
        assert resp.status_code == 401


class TestMe:
    def test_me(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(ME, headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["id"] == api_client.user.id
        assert data["email"] == USER_EMAIL
        assert "passwordHash" not in data

    def test_me_without_token(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(ME)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_non_bearer_scheme(self, api_client: ApiContext) -> None:
        resp = api_client.client.get(ME, headers={"Authorization": f"Basic {api_client.user_token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_expired_token(self, api_client: ApiContext) -> None:
        expired, _ = create_access_token(api_client.user.id, Role.USER, expire_seconds=-5)
        resp = api_client.client.get(ME, headers=api_client.bearer(expired))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"

    def test_me_with_tampered_token(self, api_client: ApiContext) -> None:
        header, payload, signature = api_client.user_token.split(".")
        tampered = ".".join([header, payload, signature[::-1]])
        resp = api_client.client.get(ME, headers=api_client.bearer(tampered))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid"

    def test_me_for_deleted_account(self, api_client: ApiContext) -> None:
        api_client.client.app.state.user_store.soft_delete(api_client.user.id)
        resp = api_client.client.get(ME, headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestStoreUnavailable:
    @staticmethod
    def _locked(*args, **kwargs):
        raise OperationalError("SELECT * FROM users", {}, Exception("database is locked"))

    def test_store_failure_is_503_without_driver_detail(self, api_client: ApiContext, monkeypatch) -> None:
        monkeypatch.setattr(api_client.client.app.state.user_store, "get_by_id", self._locked)
        resp = api_client.client.get(ME, headers=api_client.bearer(api_client.user_token))
        assert resp.status_code == 503
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "service_unavailable"
        assert resp.headers["Retry-After"] == "1"
        assert "locked" not in resp.text
        assert "SELECT" not in resp.text

    def test_store_failure_during_login_is_not_a_credential_error(self, api_client: ApiContext, monkeypatch) -> None:
        monkeypatch.setattr(api_client.client.app.state.user_store, "get_by_email", self._locked)
        resp = api_client.client.post(LOGIN, json={"email": USER_EMAIL, "password": USER_PASSWORD})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "service_unavailable"
