"""Tests for the FastAPI application wiring.

Covers the health endpoint, correlation ID middleware and route
registration. Webhook behaviour is covered by the contract tests.
"""

import pytest
from fastapi.testclient import TestClient

from webhook_guard import __version__
from webhook_guard.api.app import app, create_app
from webhook_guard.api.middleware import CORRELATION_ID_HEADER


@pytest.fixture
def client() -> TestClient:
    """Create a test client for the FastAPI app."""
    return TestClient(app)


class TestHealthCheck:
    """Tests for the /health endpoint."""

    def test_health_returns_ok(self, client: TestClient):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "webhook-guard"
        assert data["version"] == __version__
        assert "timestamp" in data


class TestCorrelationId:
    """Tests for the correlation ID middleware."""

    def test_incoming_id_is_echoed(self, client: TestClient):
        response = client.get("/api/health", headers={CORRELATION_ID_HEADER: "corr-abc"})

        assert response.headers[CORRELATION_ID_HEADER] == "corr-abc"

    def test_id_generated_when_missing(self, client: TestClient):
        response = client.get("/api/health")

        assert response.headers[CORRELATION_ID_HEADER]

    def test_each_request_gets_its_own_id(self, client: TestClient):
        first = client.get("/api/health").headers[CORRELATION_ID_HEADER]
        second = client.get("/api/health").headers[CORRELATION_ID_HEADER]

        assert first != second


class TestRoutesRegistered:
    """Tests that all expected routes are registered."""

    def test_routes(self):
        paths = {route.path for route in create_app().routes}

        assert "/api/health" in paths
        assert "/api/webhooks/{provider}" in paths
