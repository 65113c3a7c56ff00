"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test database
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_env):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data
    assert data["components"]["database"] == "ok"


def test_health_reports_blacklist_size(api_env):
    token = api_env.service.issue_session(api_env.service.user_store.get_by_id(api_env.staff_id)).token
    api_env.client.post("/api/v1/auth/logout", headers={"Authorization": f"Bearer {token}"})
    data = api_env.client.get("/api/v1/health").json()
    assert int(data["components"]["blacklist_entries"]) >= 1


def test_health_no_auth_required(api_env):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_env.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_host_is_rejected(api_env):
    """TrustedHostMiddleware answers 400 for hosts outside ALLOWED_HOSTS."""
    resp = api_env.client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400
