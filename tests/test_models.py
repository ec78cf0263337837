from __future__ import annotations

import pytest

from delegation_api.models import (
    TERMINAL_STATUSES,
    InterpretationResult,
    can_transition,
    derive_title,
)


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_statuses_have_no_exits(status: str) -> None:
    for target in ("processing", "completed", "failed", "cancelled"):
        assert can_transition(status, target) is False


def test_processing_can_reach_every_terminal_status() -> None:
    assert all(can_transition("processing", target) for target in TERMINAL_STATUSES)
    assert can_transition("processing", "processing") is False


def test_derive_title() -> None:
    assert derive_title("shopping") == "Shopping Task"
    assert derive_title("  ") == "Message Task"


def test_interpretation_summary_is_bounded() -> None:
    result = InterpretationResult(category="message", text="word " * 100)

    summary = result.summary()

    assert len(summary) == 200
    assert summary.endswith("...")
