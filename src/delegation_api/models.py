"""Pydantic models shared across API, orchestrator, executors, and storage.

Beginner terms used in this file:
- Model: a typed schema class used for validation/serialization.
- Literal: restricts a field to a fixed set of allowed string values.
- Terminal status: a status the task can never leave again.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

# Task lifecycle states used by storage + API responses.
TaskStatus = Literal["processing", "completed", "failed", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})

# Legal edges of the status state machine. Nothing leaves a terminal state.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "processing": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}

DEFAULT_CATEGORY = "message"


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def derive_title(category: str) -> str:
    """Human-readable task title, e.g. "Shopping Task"."""
    label = category.strip() or DEFAULT_CATEGORY
    return f"{label[:1].upper()}{label[1:]} Task"


class InterpretationResult(BaseModel):
    """Opaque oracle output: raw text plus optional structured fields."""

    category: str
    text: str
    # Only set when the oracle returned a well-formed structured payload.
    fields: dict[str, Any] | None = None
    source: str = "deterministic"

    def summary(self, max_chars: int = 200) -> str:
        collapsed = " ".join(self.text.split())
        if len(collapsed) <= max_chars:
            return collapsed
        return collapsed[: max_chars - 3].rstrip() + "..."


class ApiCall(BaseModel):
    """One external capability call reported by an executor."""

    service: str
    method: str
    success: bool
    timestamp: datetime


class ExecutionOutcome(BaseModel):
    """Value object returned by every executor."""

    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)
    # Set iff success is False.
    error_message: str | None = None
    api_call: ApiCall | None = None

    @classmethod
    def ok(cls, payload: dict[str, Any], *, api_call: ApiCall | None = None) -> ExecutionOutcome:
        return cls(success=True, payload=payload, api_call=api_call)

    @classmethod
    def failure(cls, message: str, *, api_call: ApiCall | None = None) -> ExecutionOutcome:
        return cls(
            success=False,
            payload={"error": message},
            error_message=message or "Executor failed",
            api_call=api_call,
        )


class Task(BaseModel):
    """Canonical task record shape returned by API/storage."""

    task_id: str
    category: str
    prompt: str
    title: str
    status: TaskStatus = "processing"
    requester_id: str
    requester_contact: str
    # Artifacts captured at each pipeline stage.
    interpretation: InterpretationResult | None = None
    outcome: dict[str, Any] | None = None
    error_detail: str | None = None
    api_calls: list[ApiCall] = Field(default_factory=list)
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime


class AuditEntry(BaseModel):
    """Immutable record of one state-changing action on a task."""

    entry_id: str
    task_id: str
    action: str
    actor_id: str
    before: dict[str, Any] = Field(default_factory=dict)
    after: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class SubmitResult(BaseModel):
    """What the orchestrator hands back once a submission is persisted."""

    task_id: str
    status: TaskStatus
    interpretation_summary: str
    task: Task


class SubmitTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    # Unknown categories are accepted and routed to the default executor.
    category: str = DEFAULT_CATEGORY
    prompt: str
    requester_id: str
    requester_contact: str


class SubmitTaskResponse(BaseModel):
    """Response body for POST /tasks."""

    task_id: str
    status: TaskStatus
    interpretation_summary: str


class CancelTaskRequest(BaseModel):
    """Request body for POST /tasks/{task_id}/cancel."""

    requester_id: str


class ErrorBody(BaseModel):
    error_code: str
    message: str
