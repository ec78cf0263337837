"""Error taxonomy for the delegation pipeline.

Errors raised before a task exists reach the caller. Errors raised after a
task exists are folded into the task's ``failed`` status instead.
"""

from __future__ import annotations

from typing import Literal

GatewayErrorKind = Literal["unavailable", "invalid_credentials", "rate_limited"]


class OrchestratorError(Exception):
    """Base exception for user-facing orchestration errors."""

    error_code = "orchestrator_error"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(OrchestratorError):
    """Bad submission input; rejected before any task is created."""

    error_code = "validation_error"
    http_status = 422


class GatewayError(OrchestratorError):
    """Interpretation oracle could not be used; the caller should retry."""

    http_status = 503

    def __init__(self, kind: GatewayErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def error_code(self) -> str:  # type: ignore[override]
        return f"gateway_{self.kind}"


class ExecutorError(OrchestratorError):
    """Raised by capabilities; executors convert it into a failed outcome."""

    error_code = "executor_error"


class InvalidStateTransition(OrchestratorError):
    error_code = "invalid_state"
    http_status = 409


class Forbidden(OrchestratorError):
    error_code = "forbidden"
    http_status = 403


class NotFound(OrchestratorError):
    error_code = "not_found"
    http_status = 404


class NotificationError(OrchestratorError):
    """Delivery failure. Always swallowed and logged by the dispatcher."""

    error_code = "notification_error"
