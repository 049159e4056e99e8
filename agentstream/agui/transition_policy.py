"""State transition policy for the per-thread run lifecycle."""

from __future__ import annotations

from typing import Literal

RunStatus = Literal["running", "paused", "completed", "error", "cancelled"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "error", "cancelled"})

_TERMINAL_EVENTS: dict[str, RunStatus] = {
    "run_finished": "completed",
    "run_error": "error",
    "run_cancelled": "cancelled",
}
_PAUSE_EVENTS = frozenset({"hil_interrupt_detected", "run_paused"})
_RESUME_EVENTS = frozenset({"run_resumed", "hil_execution_resumed"})


class RunTransitionPolicy:
    """Determine the next run status from an incoming event type."""

    def is_terminal(self, status: str) -> bool:
        return status in TERMINAL_STATUSES

    def accepts(self, *, current: str, event_type: str) -> bool:
        """A terminal run only accepts `run_started`, which replaces it."""
        if self.is_terminal(current):
            return event_type == "run_started"
        return True

    def next_status(self, *, current: RunStatus, event_type: str) -> RunStatus:
        if event_type == "run_started":
            return "running"
        if self.is_terminal(current):
            return current

        terminal = _TERMINAL_EVENTS.get(event_type)
        if terminal is not None:
            return terminal
        if event_type in _PAUSE_EVENTS and current == "running":
            return "paused"
        if event_type in _RESUME_EVENTS and current == "paused":
            return "running"
        return current
