"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against a live store
  - No authentication required
  - Unknown routes still answer in the error envelope
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"
    assert data["components"]["rate_limiter"] in ("enabled", "disabled")


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_unknown_route_uses_error_envelope(api_client):
    resp = api_client.client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["data"] is None
    assert body["error"]["code"] == "not_found"


def test_untrusted_host_is_rejected(api_client):
    resp = api_client.client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400


def test_startup_seeds_configured_admin(tmp_path, monkeypatch):
    """The real lifespan opens DATABASE_URL and promotes ADMIN_EMAIL to ADMIN."""
    from fastapi.testclient import TestClient

    from api.main import app, lifespan, settings
    from auth.models import Role

    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'startup.db'}")
    monkeypatch.setattr(settings, "admin_email", "Boot@Example.com")
    monkeypatch.setattr(settings, "admin_password", "boot-pass-123")
    monkeypatch.setattr(app.router, "lifespan_context", lifespan)

    with TestClient(app) as client:
        seeded = client.app.state.user_store.get_by_email("boot@example.com")
        assert seeded is not None
        assert seeded.role is Role.ADMIN
        login = client.post("/api/v1/auth/login", json={"email": "boot@example.com", "password": "boot-pass-123"})
        assert login.status_code == 200
