from __future__ import annotations

from fastapi.testclient import TestClient

from delegation_api.models import Task
from delegation_api.orchestrator import Orchestrator

from .conftest import FailingGateway


def _submit(client: TestClient, **overrides: str) -> dict:
    payload = {
        "category": "message",
        "prompt": "send a thank-you note to client@example.com",
        "requester_id": "u1",
        "requester_contact": "u1@mail.com",
    }
    payload.update(overrides)
    return client.post("/tasks", json=payload).json()


def _processing_task(orchestrator: Orchestrator, requester_id: str = "u1") -> Task:
    return orchestrator.storage.create_task(
        category="entertainment",
        prompt="book 2 tickets for tonight",
        title="Entertainment Task",
        requester_id=requester_id,
        requester_contact=f"{requester_id}@mail.com",
        interpretation=None,
    )


def test_submit_then_fetch_task(client: TestClient) -> None:
    created = client.post(
        "/tasks",
        json={
            "category": "shopping",
            "prompt": "buy a wireless mouse under $100",
            "requester_id": "u1",
            "requester_contact": "u1@mail.com",
        },
    )
    assert created.status_code == 200
    body = created.json()
    assert body["status"] == "completed"
    assert body["interpretation_summary"]

    fetched = client.get(f"/tasks/{body['task_id']}")
    assert fetched.status_code == 200
    task = fetched.json()
    assert task["category"] == "shopping"
    assert task["title"] == "Shopping Task"
    assert task["outcome"]["found_products"]
    assert task["completed_at"] is not None
    assert task["api_calls"][0]["service"] == "catalog_simulation"


def test_category_defaults_to_message(client: TestClient) -> None:
    response = client.post(
        "/tasks",
        json={"prompt": "ping a@b.com", "requester_id": "u1", "requester_contact": "u1@mail.com"},
    )

    task = client.get(f"/tasks/{response.json()['task_id']}").json()
    assert task["category"] == "message"


def test_list_tasks_is_scoped_to_requester(client: TestClient) -> None:
    mine = _submit(client)
    _submit(client, requester_id="someone-else")

    response = client.get("/tasks", params={"requester_id": "u1"})

    assert response.status_code == 200
    assert [task["task_id"] for task in response.json()] == [mine["task_id"]]


def test_list_tasks_requires_requester(client: TestClient) -> None:
    assert client.get("/tasks").status_code == 422


def test_cancel_flow_and_audit_trail(client: TestClient, orchestrator: Orchestrator) -> None:
    task = _processing_task(orchestrator)

    cancelled = client.post(f"/tasks/{task.task_id}/cancel", json={"requester_id": "u1"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["error_detail"] == "Task was cancelled by user"

    again = client.post(f"/tasks/{task.task_id}/cancel", json={"requester_id": "u1"})
    assert again.status_code == 409
    assert again.json()["error_code"] == "invalid_state"
    assert again.json()["message"] == "Cannot cancel task with status: cancelled"

    audit = client.get(f"/tasks/{task.task_id}/audit")
    assert audit.status_code == 200
    entries = audit.json()
    assert len(entries) == 1
    assert entries[0]["action"] == "cancelled"
    assert entries[0]["actor_id"] == "u1"


def test_cancel_by_other_requester_is_forbidden(
    client: TestClient, orchestrator: Orchestrator
) -> None:
    task = _processing_task(orchestrator, requester_id="owner")

    response = client.post(f"/tasks/{task.task_id}/cancel", json={"requester_id": "intruder"})

    assert response.status_code == 403
    assert response.json()["error_code"] == "forbidden"
    assert client.get(f"/tasks/{task.task_id}").json()["status"] == "processing"


def test_unknown_task_is_not_found(client: TestClient) -> None:
    assert client.get("/tasks/missing").json()["error_code"] == "not_found"
    response = client.post("/tasks/missing/cancel", json={"requester_id": "u1"})
    assert response.status_code == 404


def test_blank_prompt_is_rejected(client: TestClient) -> None:
    response = client.post(
        "/tasks",
        json={
            "category": "message",
            "prompt": "   ",
            "requester_id": "u1",
            "requester_contact": "u1@mail.com",
        },
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "validation_error"
    assert client.get("/tasks", params={"requester_id": "u1"}).json() == []


def test_gateway_failure_maps_to_service_unavailable(
    client: TestClient, orchestrator: Orchestrator
) -> None:
    orchestrator.gateway = FailingGateway("rate_limited")

    response = client.post(
        "/tasks",
        json={
            "category": "message",
            "prompt": "ping a@b.com",
            "requester_id": "u1",
            "requester_contact": "u1@mail.com",
        },
    )

    assert response.status_code == 503
    assert response.json()["error_code"] == "gateway_rate_limited"
    assert client.get("/tasks", params={"requester_id": "u1"}).json() == []


def test_malformed_body_uses_error_envelope(client: TestClient) -> None:
    response = client.post(
        "/tasks",
        json={"category": "message", "requester_id": "u1", "requester_contact": "u1@mail.com"},
    )

    assert response.status_code == 422
    body = response.json()
    assert set(body) == {"error_code", "message"}
    assert body["error_code"] == "validation_error"
    assert "prompt" in body["message"]


def test_audit_trail_of_unknown_task_is_not_found(client: TestClient) -> None:
    response = client.get("/tasks/missing/audit")

    assert response.status_code == 404
    assert response.json()["error_code"] == "not_found"
