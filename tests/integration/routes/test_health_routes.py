"""
Integration tests for the health, readiness and metrics endpoints.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from sync_guesty.state import Services


@pytest.mark.integration
def test_health(api_client: TestClient) -> None:
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.integration
def test_ready(api_client: TestClient) -> None:
    response = api_client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "checks": {"availability": "0/3 loaded", "database": "ok"},
    }


@pytest.mark.integration
def test_ready_reports_loaded_properties(api_client: TestClient, services: Services) -> None:
    services.availability.refresh_property("kotti")

    response = api_client.get("/ready")

    assert response.json()["checks"]["availability"] == "1/3 loaded"


@pytest.mark.integration
def test_not_ready_when_database_down(api_client: TestClient) -> None:
    with patch("sync_guesty.routes.health.check_engine_health", return_value=False):
        response = api_client.get("/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["database"] == "failed"


@pytest.mark.integration
def test_request_id_is_echoed(api_client: TestClient) -> None:
    response = api_client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"


@pytest.mark.integration
def test_metrics(api_client: TestClient) -> None:
    api_client.get("/health")

    response = api_client.get("/metrics")

    assert response.status_code == 200
    assert "guesty_" in response.text
