"""Storage interfaces for the task record and its audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from delegation_api.models import ApiCall, AuditEntry, InterpretationResult, Task, TaskStatus


class TaskStorage(Protocol):
    def migrate(self) -> None: ...

    def create_task(
        self,
        *,
        category: str,
        prompt: str,
        title: str,
        requester_id: str,
        requester_contact: str,
        interpretation: InterpretationResult | None,
    ) -> Task: ...

    def get_task(self, task_id: str) -> Task | None: ...

    def list_tasks(self, requester_id: str, *, limit: int = 50) -> list[Task]: ...

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
        """Conditionally move a task from ``expected_status`` to ``status``.

        Returns the updated task, or None when the persisted status no longer
        matches ``expected_status`` (or the task does not exist).
        """
        ...


class AuditLog(Protocol):
    def migrate(self) -> None: ...

    def append(
        self,
        *,
        task_id: str,
        action: str,
        actor_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> AuditEntry: ...

    def list_for_task(self, task_id: str) -> list[AuditEntry]: ...
