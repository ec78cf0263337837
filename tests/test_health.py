from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_executors_endpoint_lists_registered_categories(client: TestClient) -> None:
    response = client.get("/executors")

    assert response.status_code == 200
    assert response.json() == {"categories": ["entertainment", "message", "shopping"]}
