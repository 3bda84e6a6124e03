"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' while the stores answer
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import patch


def test_health_returns_200_with_components(gateway_env):
    """Health endpoint returns 200 with status, version, and components."""
    resp = gateway_env.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(gateway_env):
    """Health endpoint is accessible without a session."""
    gateway_env.client.cookies.clear()
    resp = gateway_env.client.get("/api/v1/health")
    assert resp.status_code == 200


def test_health_degraded_when_database_down(gateway_env):
    with patch.object(gateway_env.stores.audit, "ping", return_value=False):
        data = gateway_env.client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"
