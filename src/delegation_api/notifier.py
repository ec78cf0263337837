"""Best-effort outcome notifications.

Nothing in this module may change a task's status or fail a caller: the
dispatcher runs senders on a background pool and only logs their failures.
"""

from __future__ import annotations

import html
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Protocol

from delegation_api.email_client import ResendEmailClient
from delegation_api.errors import NotificationError

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    "message": "Email/Message",
    "shopping": "Shopping Order",
    "entertainment": "Movie Ticket Booking",
}


@dataclass(frozen=True)
class NotificationRequest:
    contact: str
    category: str
    description: str
    outcome: dict[str, Any] | None
    status: str
    task_id: str | None = None


class Notifier(Protocol):
    def notify(
        self,
        contact: str,
        category: str,
        description: str,
        outcome: dict[str, Any] | None,
        status: str,
    ) -> None: ...


class LogOnlyNotifier:
    """Logs instead of sending; used when no email provider is configured."""

    def notify(
        self,
        contact: str,
        category: str,
        description: str,
        outcome: dict[str, Any] | None,
        status: str,
    ) -> None:
        subject, _ = render_notification(category, description, outcome, status)
        logger.info("notify event=logged status=%s subject=%r", status, subject[:80])
        logger.debug("notify recipient=%s", contact)


class EmailNotifier:
    """Renders the outcome email and sends it through Resend."""

    def __init__(self, client: ResendEmailClient) -> None:
        self.client = client

    def notify(
        self,
        contact: str,
        category: str,
        description: str,
        outcome: dict[str, Any] | None,
        status: str,
    ) -> None:
        subject, body = render_notification(category, description, outcome, status)
        try:
            self.client.send(to=[contact], subject=subject, html=body)
        except Exception as exc:  # noqa: BLE001
            raise NotificationError(f"Outcome email to {contact} failed: {exc}") from exc


def render_notification(
    category: str,
    description: str,
    outcome: dict[str, Any] | None,
    status: str,
) -> tuple[str, str]:
    label = CATEGORY_LABELS.get(category, "Task")
    details = (
        f"<p><strong>Type:</strong> {html.escape(label)}</p>"
        f"<p><strong>Description:</strong> {html.escape(description)}</p>"
    )
    if status == "completed":
        subject = f"{label} Completed"
        heading = "Task Completed Successfully"
        if outcome:
            rendered = html.escape(json.dumps(outcome, indent=2, default=str))
            details += f"<pre>{rendered}</pre>"
    elif status == "failed":
        subject = f"{label} Failed"
        heading = "Task Processing Failed"
        error_text = (outcome or {}).get("error") or "Unknown error"
        details += f"<p><strong>Error:</strong> {html.escape(str(error_text))}</p>"
    elif status == "cancelled":
        subject = f"{label} Cancelled"
        heading = "Task Cancelled"
    else:
        subject = f"{label} Processing"
        heading = "Task Received and Processing"
    return subject, f"<h1>{heading}</h1>{details}"


class NotificationDispatcher:
    """Fire-and-forget delivery on a small thread pool."""

    def __init__(self, notifier: Notifier, *, enabled: bool = True, max_workers: int = 2) -> None:
        self.notifier = notifier
        self.enabled = enabled
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: set[Future[None]] = set()
        self._lock = threading.Lock()

    def dispatch(self, notification: NotificationRequest) -> None:
        if not self.enabled:
            logger.debug("notify event=skipped reason=disabled task_id=%s", notification.task_id)
            return
        try:
            future = self._pool.submit(self._deliver, notification)
        except RuntimeError as exc:
            # Pool already shut down.
            logger.warning(
                "notify event=dropped task_id=%s error=%s", notification.task_id, exc
            )
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def flush(self, timeout_s: float | None = 5.0) -> None:
        """Block until queued notifications finish. Tests and shutdown only."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout_s)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    def _deliver(self, notification: NotificationRequest) -> None:
        try:
            self.notifier.notify(
                notification.contact,
                notification.category,
                notification.description,
                notification.outcome,
                notification.status,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notify event=failed task_id=%s status=%s error=%s",
                notification.task_id,
                notification.status,
                exc,
            )
            return
        logger.info(
            "notify event=sent task_id=%s status=%s", notification.task_id, notification.status
        )

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
