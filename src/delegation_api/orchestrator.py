"""End-to-end task pipeline and the cancellation path.

Beginner terms:
- Pipeline: validate → interpret → create task → execute → apply outcome → notify.
- Conditional update: a status write that only lands if the stored status is
  still the one we read; losing writers see ``None`` back from storage.
- Fire-and-forget: notification is queued and never awaited by the caller.

The orchestrator keeps no state of its own between calls. Everything durable
lives in the task store and the audit log.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from delegation_api.errors import (
    Forbidden,
    GatewayError,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from delegation_api.executors.registry import ExecutorRegistry
from delegation_api.interpretation import InterpretationGateway
from delegation_api.models import (
    DEFAULT_CATEGORY,
    AuditEntry,
    ExecutionOutcome,
    InterpretationResult,
    SubmitResult,
    Task,
    can_transition,
    derive_title,
)
from delegation_api.notifier import NotificationDispatcher, NotificationRequest
from delegation_api.storage.base import AuditLog, TaskStorage

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
CANCELLED_DETAIL = "Task was cancelled by user"
MAX_LIST_LIMIT = 200


class Orchestrator:
    def __init__(
        self,
        *,
        storage: TaskStorage,
        audit_log: AuditLog,
        gateway: InterpretationGateway,
        registry: ExecutorRegistry,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.storage = storage
        self.audit_log = audit_log
        self.gateway = gateway
        self.registry = registry
        self.dispatcher = dispatcher

    def submit(
        self,
        category: str,
        prompt: str,
        requester_id: str,
        requester_contact: str,
    ) -> SubmitResult:
        """Run the synchronous pipeline and return the finalized task.

        Raises ValidationError or GatewayError before a task exists. Once the
        task is persisted, executor problems only show up in its status.
        """
        # 1) Validate input; nothing is written on failure.
        clean_prompt = (prompt or "").strip()
        if not clean_prompt:
            raise ValidationError("prompt must not be empty")
        clean_requester = (requester_id or "").strip()
        if not clean_requester:
            raise ValidationError("requester_id must not be empty")
        clean_contact = (requester_contact or "").strip()
        if not clean_contact:
            raise ValidationError("requester_contact must not be empty")
        resolved_category = self.registry.canonical_category(category or "") or DEFAULT_CATEGORY

        # 2) Interpret. Gateway failures abort the submission.
        interpretation = self._interpret(resolved_category, clean_prompt)

        # 3) Persist the task in "processing".
        task = self.storage.create_task(
            category=resolved_category,
            prompt=clean_prompt,
            title=derive_title(resolved_category),
            requester_id=clean_requester,
            requester_contact=clean_contact,
            interpretation=interpretation,
        )
        logger.info(
            "task_submit event=created task_id=%s category=%s requester_id=%s status=%s",
            task.task_id,
            task.category,
            task.requester_id,
            task.status,
        )

        # 4) Execute. The registry converts every failure into an outcome.
        outcome = self.registry.execute(
            task.category,
            task_id=task.task_id,
            interpretation=interpretation,
            requester_contact=clean_contact,
        )

        # 5) Fold the outcome into the task, then notify without waiting.
        final, applied = self._apply_outcome(task.task_id, outcome)
        if applied:
            # A cancel that won the race already notified the owner.
            self._notify(final)
        return SubmitResult(
            task_id=final.task_id,
            status=final.status,
            interpretation_summary=interpretation.summary(),
            task=final,
        )

    def apply_outcome(self, task_id: str, outcome: ExecutionOutcome) -> Task:
        """Move a processing task to completed/failed.

        A task that already left "processing" (e.g. cancelled mid-flight) is left
        untouched and returned as stored.
        """
        task, _ = self._apply_outcome(task_id, outcome)
        return task

    def _apply_outcome(self, task_id: str, outcome: ExecutionOutcome) -> tuple[Task, bool]:
        target = "completed" if outcome.success else "failed"
        updated = self.storage.transition(
            task_id,
            expected_status="processing",
            status=target,
            completed_at=datetime.now(UTC),
            outcome=outcome.payload,
            error_detail=None if outcome.success else outcome.error_message,
            api_calls=[outcome.api_call] if outcome.api_call is not None else None,
        )
        if updated is None:
            current = self.storage.get_task(task_id)
            if current is None:
                raise NotFound(f"Task {task_id} not found")
            logger.info(
                "task_outcome event=discarded task_id=%s status=%s attempted=%s",
                task_id,
                current.status,
                target,
            )
            return current, False

        logger.info(
            "task_outcome event=applied task_id=%s status=%s error=%s",
            task_id,
            updated.status,
            updated.error_detail,
        )
        self._audit_pipeline_transition(task_id, before="processing", after=updated.status)
        return updated, True

    def cancel(self, task_id: str, requester_id: str) -> Task:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        if task.requester_id != (requester_id or "").strip():
            raise Forbidden(f"Task {task_id} belongs to another requester")
        if not can_transition(task.status, "cancelled"):
            raise InvalidStateTransition(f"Cannot cancel task with status: {task.status}")

        updated = self.storage.transition(
            task_id,
            expected_status=task.status,
            status="cancelled",
            completed_at=datetime.now(UTC),
            error_detail=CANCELLED_DETAIL,
        )
        if updated is None:
            # Lost the race against the pipeline (or another cancel).
            latest = self.storage.get_task(task_id)
            latest_status = latest.status if latest is not None else "unknown"
            logger.info(
                "task_cancel event=rejected task_id=%s status=%s reason=concurrent_update",
                task_id,
                latest_status,
            )
            raise InvalidStateTransition(f"Cannot cancel task with status: {latest_status}")

        self.audit_log.append(
            task_id=task_id,
            action="cancelled",
            actor_id=task.requester_id,
            before={"status": task.status},
            after={"status": updated.status},
        )
        logger.info(
            "task_cancel event=cancelled task_id=%s requester_id=%s previous_status=%s",
            task_id,
            task.requester_id,
            task.status,
        )
        self._notify(updated)
        return updated

    def get_task(self, task_id: str) -> Task:
        task = self.storage.get_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found")
        return task

    def list_tasks(self, requester_id: str, *, limit: int = 50) -> list[Task]:
        """Tasks owned by ``requester_id``, newest first."""
        bounded = max(1, min(limit, MAX_LIST_LIMIT))
        return self.storage.list_tasks(requester_id, limit=bounded)

    def audit_trail(self, task_id: str) -> list[AuditEntry]:
        self.get_task(task_id)
        return self.audit_log.list_for_task(task_id)

    def _interpret(self, category: str, prompt: str) -> InterpretationResult:
        try:
            return self.gateway.interpret(category, prompt)
        except GatewayError as exc:
            logger.warning(
                "task_submit event=interpretation_failed category=%s kind=%s reason=%s",
                category,
                exc.kind,
                exc.message,
            )
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "task_submit event=interpretation_failed category=%s kind=unavailable reason=%s",
                category,
                exc,
            )
            raise GatewayError("unavailable", f"Interpretation failed: {exc}") from exc

    def _audit_pipeline_transition(self, task_id: str, *, before: str, after: str) -> None:
        try:
            self.audit_log.append(
                task_id=task_id,
                action="status_changed",
                actor_id=SYSTEM_ACTOR,
                before={"status": before},
                after={"status": after},
            )
        except Exception as exc:  # noqa: BLE001
            # The task row is authoritative; a missing pipeline audit row is tolerated.
            logger.warning("task_audit event=append_failed task_id=%s error=%s", task_id, exc)

    def _notify(self, task: Task) -> None:
        self.dispatcher.dispatch(
            NotificationRequest(
                contact=task.requester_contact,
                category=task.category,
                description=task.prompt,
                outcome=task.outcome if task.outcome is not None else _error_payload(task),
                status=task.status,
                task_id=task.task_id,
            )
        )


def _error_payload(task: Task) -> dict[str, str] | None:
    if task.error_detail:
        return {"error": task.error_detail}
    return None
