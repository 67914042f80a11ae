"""Tests for health check endpoints."""

from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from engage.main import app


@pytest.fixture
def client() -> TestClient:
    """Create a test client for FastAPI app."""
    return TestClient(app)


def _job_status(consecutive_failures: int) -> dict[str, Any]:
    return {
        "job_name": "dispatch_tick",
        "last_success": "2026-01-01T00:00:00+00:00",
        "last_failure": "2026-01-01T01:00:00+00:00" if consecutive_failures else None,
        "last_error": "database is locked" if consecutive_failures else None,
        "consecutive_failures": consecutive_failures,
        "success_count": 10,
        "failure_count": consecutive_failures,
        "currently_running": False,
        "current_run_started": None,
    }


@pytest.mark.unit
def test_health_endpoint_returns_healthy(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.unit
def test_scheduler_health_endpoint_healthy(client: TestClient) -> None:
    """Test scheduler health endpoint when the dispatch tick is healthy."""
    with patch("engage.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(return_value=_job_status(0))

        response = client.get("/health/scheduler")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["jobs"]["dispatch_tick"]["success_count"] == 10
    assert "connected" in data["cache"]


@pytest.mark.unit
def test_scheduler_health_endpoint_degraded_with_failures(client: TestClient) -> None:
    with patch("engage.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(return_value=_job_status(1))

        response = client.get("/health/scheduler")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"


@pytest.mark.unit
def test_scheduler_health_endpoint_critical_after_repeated_failures(client: TestClient) -> None:
    with patch("engage.main.job_tracker") as mock_tracker:
        mock_tracker.get_job_status = AsyncMock(return_value=_job_status(3))

        response = client.get("/health/scheduler")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "critical"
    assert data["jobs"]["dispatch_tick"]["last_error"] == "database is locked"
