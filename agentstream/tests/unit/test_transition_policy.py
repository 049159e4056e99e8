"""Unit tests for the run lifecycle transition policy."""

from __future__ import annotations

import pytest

from agentstream.agui.transition_policy import RunTransitionPolicy


@pytest.mark.parametrize(
    ("current", "event_type", "expected"),
    [
        ("running", "run_finished", "completed"),
        ("running", "run_error", "error"),
        ("running", "run_cancelled", "cancelled"),
        ("running", "hil_interrupt_detected", "paused"),
        ("running", "run_paused", "paused"),
        ("paused", "run_resumed", "running"),
        ("paused", "hil_execution_resumed", "running"),
        ("paused", "run_finished", "completed"),
        ("paused", "hil_interrupt_detected", "paused"),
        ("running", "text_message_content", "running"),
        ("running", "run_resumed", "running"),
        ("completed", "run_started", "running"),
    ],
)
def test_next_status_follows_run_lifecycle(current: str, event_type: str, expected: str) -> None:
    assert RunTransitionPolicy().next_status(current=current, event_type=event_type) == expected


def test_terminal_run_only_accepts_run_started() -> None:
    policy = RunTransitionPolicy()

    assert policy.accepts(current="completed", event_type="run_started") is True
    assert policy.accepts(current="error", event_type="text_message_content") is False
    assert policy.accepts(current="cancelled", event_type="hil_interrupt_detected") is False
    assert policy.accepts(current="paused", event_type="run_finished") is True


def test_terminal_status_never_changes_without_restart() -> None:
    policy = RunTransitionPolicy()

    assert policy.next_status(current="error", event_type="run_resumed") == "error"
    assert policy.next_status(current="cancelled", event_type="run_finished") == "cancelled"
