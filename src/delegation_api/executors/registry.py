"""Category → executor resolution with per-category timeouts."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError

from delegation_api.executors.capabilities import (
    BookingSearch,
    CatalogSearch,
    EmailSender,
    SimulatedBookingSearch,
    SimulatedCatalogSearch,
    SimulatedEmailSender,
)
from delegation_api.executors.handlers import (
    EntertainmentExecutor,
    Executor,
    MessageExecutor,
    ShoppingExecutor,
)
from delegation_api.models import DEFAULT_CATEGORY, ExecutionOutcome, InterpretationResult

logger = logging.getLogger(__name__)

CATEGORY_ALIASES: dict[str, str] = {
    "messages": "message",
    "email": "message",
    "emails": "message",
    "movies": "entertainment",
}


class ExecutorRegistry:
    """Uniform dispatch over category executors."""

    def __init__(
        self,
        executors: dict[str, Executor],
        *,
        timeouts: dict[str, float] | None = None,
        default_timeout_s: float = 5.0,
        default_category: str = DEFAULT_CATEGORY,
    ) -> None:
        if default_category not in executors:
            raise ValueError(f"Default category '{default_category}' has no executor")
        self.executors = dict(executors)
        self.timeouts = dict(timeouts or {})
        self.default_timeout_s = default_timeout_s
        self.default_category = default_category

    def categories(self) -> list[str]:
        return sorted(self.executors.keys())

    def canonical_category(self, category: str) -> str:
        normalized = category.strip().lower()
        return CATEGORY_ALIASES.get(normalized, normalized)

    def resolve(self, category: str) -> Executor:
        """Return the executor for ``category``; unknown categories get the default one."""
        canonical = self.canonical_category(category)
        executor = self.executors.get(canonical)
        if executor is None:
            logger.info(
                "executor_resolve event=fallback category=%s default=%s",
                category,
                self.default_category,
            )
            return self.executors[self.default_category]
        return executor

    def timeout_for(self, category: str) -> float:
        return float(self.timeouts.get(self.canonical_category(category), self.default_timeout_s))

    def execute(
        self,
        category: str,
        *,
        task_id: str,
        interpretation: InterpretationResult | None,
        requester_contact: str,
    ) -> ExecutionOutcome:
        """Run the resolved executor under a bounded timeout. Never raises."""
        executor = self.resolve(category)
        timeout_s = self.timeout_for(category)
        started_at = time.perf_counter()

        # The pool is not used as a context manager: exiting one would wait for
        # a timed-out worker to finish.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"executor-{category}")
        try:
            future = pool.submit(executor.execute, task_id, interpretation, requester_contact)
            try:
                outcome = future.result(timeout=timeout_s)
            except TimeoutError:
                logger.warning(
                    "executor_dispatch event=timeout task_id=%s category=%s timeout_s=%.2f",
                    task_id,
                    category,
                    timeout_s,
                )
                return ExecutionOutcome.failure(
                    f"Unavailable: executor '{executor.category}' timed out after {timeout_s:.2f}s"
                )
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "executor_dispatch event=crashed task_id=%s category=%s error=%s",
                    task_id,
                    category,
                    exc,
                )
                return ExecutionOutcome.failure(f"Executor '{executor.category}' crashed: {exc}")
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if not isinstance(outcome, ExecutionOutcome):
            return ExecutionOutcome.failure(
                f"Executor '{executor.category}' returned a malformed outcome"
            )
        logger.info(
            "executor_dispatch event=finished task_id=%s category=%s success=%s duration_ms=%.2f",
            task_id,
            category,
            outcome.success,
            (time.perf_counter() - started_at) * 1000.0,
        )
        return outcome


def build_registry(
    *,
    email_sender: EmailSender | None = None,
    catalog: CatalogSearch | None = None,
    booking: BookingSearch | None = None,
    timeouts: dict[str, float] | None = None,
    default_timeout_s: float = 5.0,
) -> ExecutorRegistry:
    """Wire the built-in executors; missing capabilities use the simulated ones."""
    return ExecutorRegistry(
        {
            "message": MessageExecutor(email_sender or SimulatedEmailSender()),
            "shopping": ShoppingExecutor(catalog or SimulatedCatalogSearch()),
            "entertainment": EntertainmentExecutor(booking or SimulatedBookingSearch()),
        },
        timeouts=timeouts,
        default_timeout_s=default_timeout_s,
    )
