"""
Unit tests for middleware components.
"""

from __future__ import annotations

import pytest
import structlog
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from sync_guesty.middleware import RequestIDMiddleware


@pytest.fixture
def client() -> TestClient:
    """FastAPI test client with RequestIDMiddleware and an echo endpoint."""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def echo(request: Request) -> dict[str, str]:
        bound = structlog.contextvars.get_contextvars()
        return {"request_id": request.state.request_id, "bound": bound.get("request_id", "")}

    return TestClient(app)


@pytest.mark.unit
def test_request_id_header_matches_state(client: TestClient) -> None:
    """Test that the generated id is returned in X-Request-ID and stored in request.state."""
    response = client.get("/test")

    assert response.status_code == 200
    assert len(response.headers["X-Request-ID"]) == 36  # UUID length
    assert response.json()["request_id"] == response.headers["X-Request-ID"]


@pytest.mark.unit
def test_request_id_bound_for_logging(client: TestClient) -> None:
    """Test that the request id is bound into structlog contextvars during the request."""
    response = client.get("/test")

    assert response.json()["bound"] == response.headers["X-Request-ID"]


@pytest.mark.unit
def test_incoming_request_id_is_reused(client: TestClient) -> None:
    response = client.get("/test", headers={"X-Request-ID": "trace-abc"})

    assert response.headers["X-Request-ID"] == "trace-abc"


@pytest.mark.unit
def test_each_request_gets_new_id(client: TestClient) -> None:
    first = client.get("/test").headers["X-Request-ID"]
    second = client.get("/test").headers["X-Request-ID"]

    assert first != second
