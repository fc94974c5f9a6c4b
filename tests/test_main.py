"""
Tests for the application shell: root, metrics and validation handling.
"""

from unittest.mock import MagicMock, patch

from quota_bridge.api.dependencies import get_current_identity, get_donation_service
from quota_bridge.config import settings


class TestRoot:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"
        assert response.json()["version"] == settings.api_version


class TestMetricsEndpoint:
    def test_prometheus_format(self, client):
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "quota_bridge_http_requests_total" in response.text

    def test_disabled(self, client):
        with patch.object(settings, "metrics_enabled", False):
            assert client.get("/metrics").status_code == 404


class TestValidationHandler:
    def test_submitted_keys_are_not_echoed(self, app, client, bound_identity):
        app.dependency_overrides[get_current_identity] = lambda: bound_identity
        app.dependency_overrides[get_donation_service] = lambda: MagicMock()

        response = client.post("/v1/donate", json={"keys": "sk-secret-value"})

        assert response.status_code == 422
        assert "sk-secret-value" not in response.text
