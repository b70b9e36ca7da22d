"""
tests/test_health.py -- Integration tests for GET /api/health and app-wide HTTP behavior.

Covers:
  - 200 response with status, version and database fields
  - degraded status when the database does not answer
  - OPTIONS on any path answered with 200
  - CORS preflight handled by CORSMiddleware
  - framework 404/405 and schema errors rendered as the error envelope
"""

from __future__ import annotations

from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from api.main import VERSION


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database."""
    client, _, _ = api_client
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION, "database": "ok"}


def test_health_no_auth_required(api_client):
    client, _, _ = api_client
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_database_unreachable(api_client, monkeypatch):
    client, _, cmdb = api_client
    broken = MagicMock()
    broken.connect.side_effect = OperationalError("SELECT 1", {}, Exception("unable to open database file"))
    monkeypatch.setattr(cmdb, "engine", broken)

    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["database"] == "unavailable"


def test_options_any_path(api_client):
    """Bare OPTIONS requests get 200 with allow headers, even on unknown paths."""
    client, _, _ = api_client
    for path in ("/api/configuration-items", "/api/user-roles/someone@test.com", "/api/does-not-exist"):
        resp = client.options(path)
        assert resp.status_code == 200, f"{path}: expected 200, got {resp.status_code}"
        assert "OPTIONS" in resp.headers["access-control-allow-methods"]


def test_cors_preflight(api_client):
    client, _, _ = api_client
    resp = client.options(
        "/api/configuration-items",
        headers={
            "Origin": "https://portal.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-ms-client-principal",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] in ("*", "https://portal.example.com")


def test_unknown_path_envelope(api_client):
    client, _, _ = api_client
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["code"] == "not_found"
    assert body["details"] == {"path": "/api/nothing-here"}


def test_unsupported_method_envelope(api_client):
    client, _, _ = api_client
    resp = client.patch("/api/configuration-items/1", json={})
    assert resp.status_code == 405
    assert resp.json()["code"] == "method_not_allowed"
    assert resp.json()["details"] == {"method": "PATCH"}


def test_schema_error_envelope(api_client):
    """A query parameter of the wrong type is a 400 validation_error, not FastAPI's 422."""
    client, _, _ = api_client
    resp = client.get("/api/configuration-items", params={"id": "twelve"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["details"][0]["loc"] == ["query", "id"]
