"""In-memory storage backends for tests and local runs."""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from delegation_api.models import ApiCall, AuditEntry, InterpretationResult, Task, TaskStatus


class InMemoryTaskStorage:
    """Dict-backed task store with the same conditional-update rules as Postgres."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def create_task(
        self,
        *,
        category: str,
        prompt: str,
        title: str,
        requester_id: str,
        requester_contact: str,
        interpretation: InterpretationResult | None,
    ) -> Task:
        now = datetime.now(UTC)
        record = Task(
            task_id=str(uuid4()),
            category=category,
            prompt=prompt,
            title=title,
            status="processing",
            requester_id=requester_id,
            requester_contact=requester_contact,
            interpretation=interpretation,
            created_at=now,
            started_at=now,
            updated_at=now,
        )
        with self._lock:
            self._tasks[record.task_id] = record
        return record.model_copy(deep=True)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    def list_tasks(self, requester_id: str, *, limit: int = 50) -> list[Task]:
        with self._lock:
            owned = [task for task in self._tasks.values() if task.requester_id == requester_id]
        owned.sort(key=lambda task: task.created_at, reverse=True)
        return [task.model_copy(deep=True) for task in owned[:limit]]

    def transition(
        self,
        task_id: str,
        *,
        expected_status: TaskStatus,
        status: TaskStatus,
        completed_at: datetime,
        outcome: dict[str, Any] | None = None,
        error_detail: str | None = None,
        api_calls: list[ApiCall] | None = None,
    ) -> Task | None:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None or current.status != expected_status:
                return None
            update: dict[str, Any] = {
                "status": status,
                "completed_at": completed_at,
                "updated_at": datetime.now(UTC),
            }
            if outcome is not None:
                update["outcome"] = outcome
            if error_detail is not None:
                update["error_detail"] = error_detail
            if api_calls is not None:
                update["api_calls"] = list(current.api_calls) + list(api_calls)
            updated = current.model_copy(update=update, deep=True)
            self._tasks[task_id] = updated
        return updated.model_copy(deep=True)


class InMemoryAuditLog:
    """Append-only list of audit entries."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def append(
        self,
        *,
        task_id: str,
        action: str,
        actor_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditEntry:
        entry = AuditEntry(
            entry_id=str(uuid4()),
            task_id=task_id,
            action=action,
            actor_id=actor_id,
            before=dict(before),
            after=dict(after),
            timestamp=datetime.now(UTC),
        )
        with self._lock:
            self._entries.append(entry)
        return entry.model_copy(deep=True)

    def list_for_task(self, task_id: str) -> list[AuditEntry]:
        with self._lock:
            matching = [entry for entry in self._entries if entry.task_id == task_id]
        return [entry.model_copy(deep=True) for entry in matching]
