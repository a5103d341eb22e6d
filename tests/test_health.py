"""Tests for the health endpoint."""

import pytest
from fastapi.testclient import TestClient

from mediawatch.schema import HealthStatus
from mediawatch.scraper.health import create_health_app


class StubService:
    def __init__(self, health):
        self._health = health

    async def health(self):
        return self._health


@pytest.mark.parametrize(
    "status, expected_code",
    [
        ("ok", 200),
        ("degraded", 503),
        ("down", 503),
    ],
)
def test_health_status_codes(status, expected_code):
    health = HealthStatus(
        status=status,
        version="0.1.0",
        scheduler="ok",
        validator="ok" if status == "ok" else "down",
        workers_alive=2,
        workers_total=2,
        queue={"crawl": {"waiting": 3, "active": 2, "failed": 0}},
    )
    client = TestClient(create_health_app(StubService(health)))

    response = client.get("/health")

    assert response.status_code == expected_code
    body = response.json()
    assert body["status"] == status
    assert body["queue"]["crawl"]["waiting"] == 3


def test_docs_are_disabled():
    client = TestClient(create_health_app(StubService(HealthStatus())))

    assert client.get("/docs").status_code == 404
