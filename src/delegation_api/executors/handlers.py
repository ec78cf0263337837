"""Category executors.

Every executor honours the same contract:
``execute(task_id, interpretation, requester_contact) -> ExecutionOutcome``.
Capability failures come back as ``ExecutionOutcome(success=False)``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from delegation_api.errors import ExecutorError
from delegation_api.executors.capabilities import BookingSearch, CatalogSearch, EmailSender
from delegation_api.executors.parsing import (
    coerce_float,
    coerce_int,
    coerce_list,
    interpretation_text,
    resolve_fields,
)
from delegation_api.models import ApiCall, ExecutionOutcome, InterpretationResult

logger = logging.getLogger(__name__)


class Executor(Protocol):
    category: str

    def execute(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> ExecutionOutcome: ...


class CategoryExecutor:
    """Shared error isolation and api-call bookkeeping."""

    category = "message"
    method = "execute"

    def _service(self) -> str:
        raise NotImplementedError

    def _run(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> dict[str, Any]:
        raise NotImplementedError

    def execute(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> ExecutionOutcome:
        try:
            payload = self._run(task_id, interpretation, requester_contact)
            if not isinstance(payload, dict):
                raise ExecutorError(
                    f"{self._service()} returned {type(payload).__name__}, expected an object"
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "executor_run event=failed task_id=%s category=%s error=%s",
                task_id,
                self.category,
                exc,
            )
            return ExecutionOutcome.failure(str(exc), api_call=self._api_call(success=False))

        payload.setdefault("timestamp", datetime.now(UTC).isoformat())
        payload.setdefault("provider", self._service())
        logger.info(
            "executor_run event=completed task_id=%s category=%s provider=%s",
            task_id,
            self.category,
            payload["provider"],
        )
        return ExecutionOutcome.ok(payload, api_call=self._api_call(success=True))

    def _annotate(self, result: Any, source: str) -> dict[str, Any]:
        if not isinstance(result, dict):
            raise ExecutorError(
                f"{self._service()} returned {type(result).__name__}, expected an object"
            )
        result["parameters_source"] = source
        return result

    def _api_call(self, *, success: bool) -> ApiCall:
        return ApiCall(
            service=self._service(),
            method=self.method,
            success=success,
            timestamp=datetime.now(UTC),
        )


class MessageExecutor(CategoryExecutor):
    category = "message"
    method = "send_email"

    def __init__(self, sender: EmailSender) -> None:
        self.sender = sender

    def _service(self) -> str:
        return self.sender.service

    def _run(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> dict[str, Any]:
        fields, source = resolve_fields(
            interpretation,
            category=self.category,
            defaults={
                "recipients": [requester_contact],
                "subject": "Automated message",
                "content": interpretation_text(interpretation),
            },
        )
        recipients = coerce_list(fields.get("recipients")) or [requester_contact]
        subject = str(fields.get("subject") or "Automated message")
        body = str(fields.get("content") or fields.get("message") or "")
        result = self.sender.send(recipients=recipients, subject=subject, body=body)
        return self._annotate(result, source)


class ShoppingExecutor(CategoryExecutor):
    category = "shopping"
    method = "product_search"
    default_budget = 100.0

    def __init__(self, catalog: CatalogSearch) -> None:
        self.catalog = catalog

    def _service(self) -> str:
        return self.catalog.service

    def _run(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> dict[str, Any]:
        fields, source = resolve_fields(
            interpretation,
            category=self.category,
            defaults={"productName": "wireless mouse", "budget": self.default_budget},
        )
        product = str(fields.get("productName") or fields.get("product") or "wireless mouse")
        budget = coerce_float(fields.get("budget"), default=self.default_budget)
        result = self.catalog.search(query=product, budget=budget)
        return self._annotate(result, source)


class EntertainmentExecutor(CategoryExecutor):
    category = "entertainment"
    method = "showtime_search"

    def __init__(self, booking: BookingSearch) -> None:
        self.booking = booking

    def _service(self) -> str:
        return self.booking.service

    def _run(
        self,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> dict[str, Any]:
        fields, source = resolve_fields(
            interpretation,
            category=self.category,
            defaults={
                "movieType": "latest",
                "preferredTime": "evening",
                "location": "downtown",
                "tickets": 2,
            },
        )
        result = self.booking.search(
            genre=str(fields.get("movieType") or "latest"),
            preferred_time=str(fields.get("preferredTime") or "evening"),
            location=str(fields.get("location") or "downtown"),
            tickets=coerce_int(fields.get("tickets"), default=2),
        )
        return self._annotate(result, source)
