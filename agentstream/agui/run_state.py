"""In-memory run and message state tracked by the event standardizer."""

from __future__ import annotations

from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass, field

from agentstream.agui.transition_policy import RunStatus


@dataclass
class ActiveRun:
    """One streaming run; at most one per thread."""

    run_id: str
    thread_id: str
    status: RunStatus = "running"
    started_at: float = 0.0
    current_message_id: str | None = None
    active_tool_calls: set[str] = field(default_factory=set)
    checkpoints: list[str] = field(default_factory=list)
    interrupts: list[str] = field(default_factory=list)


@dataclass
class ActiveMessage:
    message_id: str
    role: str = "assistant"
    content_chunks: list[str] = field(default_factory=list)
    started_at: float = 0.0
    completed: bool = False

    @property
    def full_content(self) -> str:
        return "".join(self.content_chunks)


class RunStateStore:
    """Runs keyed by thread_id and messages keyed by message_id."""

    def __init__(self) -> None:
        self._runs: dict[str, ActiveRun] = {}
        self._messages: dict[str, ActiveMessage] = {}

    def run(self, thread_id: str) -> ActiveRun | None:
        return self._runs.get(thread_id)

    def put_run(self, run: ActiveRun) -> ActiveRun | None:
        """Store `run` as the thread's run; return the entry it replaced."""
        previous = self._runs.get(run.thread_id)
        self._runs[run.thread_id] = run
        return previous

    def message(self, message_id: str) -> ActiveMessage | None:
        return self._messages.get(message_id)

    def put_message(self, message: ActiveMessage) -> None:
        self._messages[message.message_id] = message

    def snapshot_run(self, thread_id: str) -> ActiveRun | None:
        run = self._runs.get(thread_id)
        return deepcopy(run) if run is not None else None

    def snapshot_message(self, message_id: str) -> ActiveMessage | None:
        message = self._messages.get(message_id)
        return deepcopy(message) if message is not None else None

    def sweep(
        self,
        *,
        now: float,
        max_age: float,
        is_terminal: Callable[[str], bool],
    ) -> tuple[int, int]:
        """Drop finished runs and completed messages older than `max_age` seconds."""
        stale_runs = [
            thread_id
            for thread_id, run in self._runs.items()
            if is_terminal(run.status) and now - run.started_at > max_age
        ]
        for thread_id in stale_runs:
            del self._runs[thread_id]

        stale_messages = [
            message_id
            for message_id, message in self._messages.items()
            if message.completed and now - message.started_at > max_age
        ]
        for message_id in stale_messages:
            del self._messages[message_id]
        return len(stale_runs), len(stale_messages)

    def counts(self) -> tuple[int, int]:
        return len(self._runs), len(self._messages)
