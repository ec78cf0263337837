from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from delegation_api.api.main import create_app
from delegation_api.config.settings import Settings
from delegation_api.errors import GatewayError, GatewayErrorKind
from delegation_api.executors.registry import ExecutorRegistry, build_registry
from delegation_api.interpretation import DeterministicInterpretationGateway
from delegation_api.models import InterpretationResult
from delegation_api.notifier import NotificationDispatcher
from delegation_api.orchestrator import Orchestrator
from delegation_api.storage.memory import InMemoryAuditLog, InMemoryTaskStorage


class RecordingNotifier:
    """Test double that records every notification it is asked to send."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def notify(
        self,
        contact: str,
        category: str,
        description: str,
        outcome: dict[str, Any] | None,
        status: str,
    ) -> None:
        with self._lock:
            self.calls.append(
                {
                    "contact": contact,
                    "category": category,
                    "description": description,
                    "outcome": outcome,
                    "status": status,
                }
            )


class ExplodingNotifier:
    def __init__(self) -> None:
        self.attempts = 0
        self._lock = threading.Lock()

    def notify(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            self.attempts += 1
        raise RuntimeError("smtp relay is down")


class FailingGateway:
    def __init__(self, kind: GatewayErrorKind = "unavailable") -> None:
        self.kind = kind

    def interpret(self, category: str, prompt: str) -> InterpretationResult:
        raise GatewayError(self.kind, f"oracle refused: {self.kind}")


class PlainTextGateway:
    """Oracle that answers in prose only, with no JSON at all."""

    def interpret(self, category: str, prompt: str) -> InterpretationResult:
        return InterpretationResult(
            category=category,
            text=f"The user wants help with this request: {prompt}",
            source="llm",
        )


def make_orchestrator(
    *,
    gateway: Any = None,
    registry: ExecutorRegistry | None = None,
    notifier: Any = None,
    notifications_enabled: bool = True,
) -> Orchestrator:
    return Orchestrator(
        storage=InMemoryTaskStorage(),
        audit_log=InMemoryAuditLog(),
        gateway=gateway or DeterministicInterpretationGateway(),
        registry=registry or build_registry(default_timeout_s=2.0),
        dispatcher=NotificationDispatcher(
            notifier or RecordingNotifier(), enabled=notifications_enabled
        ),
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def orchestrator(notifier: RecordingNotifier) -> Iterator[Orchestrator]:
    instance = make_orchestrator(notifier=notifier)
    yield instance
    instance.dispatcher.shutdown()


@pytest.fixture
def client(orchestrator: Orchestrator) -> Iterator[TestClient]:
    app = create_app(
        orchestrator=orchestrator,
        settings_override=Settings(database_url="", interpretation_mode="deterministic"),
    )
    with TestClient(app) as test_client:
        yield test_client
