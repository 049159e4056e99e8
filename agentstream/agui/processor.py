"""Event standardizer: track run/message state and dispatch canonical events."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict, dataclass, fields
from typing import Any

from pydantic import ValidationError

from agentstream.agui.legacy_bridge import LegacyCallbackBridge, LegacyEventConverter
from agentstream.agui.run_state import ActiveMessage, ActiveRun, RunStateStore
from agentstream.agui.transition_policy import RunTransitionPolicy
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import (
    AGUI_EVENT_MODELS,
    AGUIEvent,
    HILCheckpointCreatedEvent,
    HILInterruptDetectedEvent,
    TextMessageContentEvent,
    TextMessageStartEvent,
    ToolCallEndEvent,
    ToolCallErrorEvent,
    ToolCallStartEvent,
    now_ms,
    parse_agui_event,
)
from agentstream.protocol.callbacks import AGUIEventCallbacks, SSEParserCallbacks, merge_callbacks, safe_invoke

logger = get_logger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0


@dataclass(frozen=True)
class ProcessorOptions:
    enable_agui_standardization: bool = True
    enable_legacy_compatibility: bool = True
    enable_event_logging: bool = False
    enable_state_tracking: bool = True


class AGUIEventProcessor:
    """Standardize events into one canonical stream.

    Every processed event first updates run/message state, then reaches the
    registered ``on_<type>`` handler and, when legacy compatibility is on, the
    flat stream callbacks. A raising handler never blocks the others.
    """

    def __init__(
        self,
        options: ProcessorOptions | None = None,
        *,
        policy: RunTransitionPolicy | None = None,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.options = options or ProcessorOptions()
        self._policy = policy or RunTransitionPolicy()
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._sleep = sleep
        self._sweeper: asyncio.Task[None] | None = None
        self._store = RunStateStore()
        self._agui_callbacks = AGUIEventCallbacks()
        self._bridge = LegacyCallbackBridge()
        self._converter = LegacyEventConverter(self._store)

    def register_agui_callbacks(self, callbacks: AGUIEventCallbacks) -> None:
        self._agui_callbacks = merge_callbacks(self._agui_callbacks, callbacks)

    def register_legacy_callbacks(self, callbacks: SSEParserCallbacks) -> None:
        self._bridge.callbacks = merge_callbacks(self._bridge.callbacks, callbacks)

    def process_event(self, event: AGUIEvent | Mapping[str, Any]) -> AGUIEvent | None:
        try:
            event = self._coerce(event)
        except ValidationError as exc:
            logger.warning("agui.invalid_event errors=%s", exc.error_count())
            return None

        if self.options.enable_event_logging:
            logger.info(
                "agui.event type=%s thread_id=%s run_id=%s",
                event.type,
                event.thread_id,
                event.run_id,
            )
        if self.options.enable_state_tracking:
            self._track(event)
        if self.options.enable_agui_standardization:
            safe_invoke(self._agui_callbacks.handler_for(event.type), event, label=f"on_{event.type}")
        if self.options.enable_legacy_compatibility:
            self._bridge.forward(event)
        return event

    def process_legacy_event(self, payload: str | Mapping[str, Any], thread_id: str) -> list[AGUIEvent]:
        """Convert one raw router payload and process the resulting canonical events."""
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                logger.warning("agui.legacy_decode_failed thread_id=%s error=%s", thread_id, exc)
                return []
        if not isinstance(payload, Mapping):
            return []

        processed: list[AGUIEvent] = []
        for event in self._converter.convert(payload, thread_id=thread_id):
            result = self.process_event(event)
            if result is not None:
                processed.append(result)
        return processed

    def get_active_run(self, thread_id: str) -> ActiveRun | None:
        return self._store.snapshot_run(thread_id)

    def get_active_message(self, message_id: str) -> ActiveMessage | None:
        return self._store.snapshot_message(message_id)

    def cleanup(self, max_age: float | None = None) -> tuple[int, int]:
        """Drop finished runs and completed messages older than `max_age` seconds."""
        removed_runs, removed_messages = self._store.sweep(
            now=self._clock(),
            max_age=self._retention_seconds if max_age is None else max_age,
            is_terminal=self._policy.is_terminal,
        )
        if removed_runs or removed_messages:
            logger.info("agui.cleanup runs=%s messages=%s", removed_runs, removed_messages)
        return removed_runs, removed_messages

    def start_cleanup_sweeper(self, interval_seconds: float) -> None:
        """Run `cleanup` every `interval_seconds` until `aclose`; must run inside the event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_seconds), name="agui-run-sweeper")

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await self._sleep(interval_seconds)
            self.cleanup()

    async def aclose(self) -> None:
        if self._sweeper is None:
            return
        sweeper, self._sweeper = self._sweeper, None
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        active_runs, active_messages = self._store.counts()
        return {
            "active_runs": active_runs,
            "active_messages": active_messages,
            "agui_callbacks": _count_registered(self._agui_callbacks),
            "legacy_callbacks": _count_registered(self._bridge.callbacks),
            "features": asdict(self.options),
            "cleanup_sweeper_active": self._sweeper is not None and not self._sweeper.done(),
        }

    def _coerce(self, event: AGUIEvent | Mapping[str, Any]) -> AGUIEvent:
        if isinstance(event, Mapping):
            return parse_agui_event(event)
        # Base-model instances of a known type are upgraded so typed fields are available.
        if type(event) is AGUIEvent and event.type in AGUI_EVENT_MODELS:
            return parse_agui_event(event.model_dump())
        return event

    def _track(self, event: AGUIEvent) -> None:
        thread_id = event.thread_id
        now = self._clock()

        if event.type == "run_started":
            previous = self._store.put_run(
                ActiveRun(
                    run_id=event.run_id or f"run_{now_ms()}",
                    thread_id=thread_id,
                    started_at=now,
                )
            )
            if previous is not None and not self._policy.is_terminal(previous.status):
                logger.info("agui.run_replaced thread_id=%s previous_run_id=%s", thread_id, previous.run_id)
            return

        run = self._store.run(thread_id)
        if run is not None:
            if not self._policy.accepts(current=run.status, event_type=event.type):
                logger.info(
                    "agui.event_dropped thread_id=%s type=%s run_status=%s",
                    thread_id,
                    event.type,
                    run.status,
                )
                return
            run.status = self._policy.next_status(current=run.status, event_type=event.type)

        if isinstance(event, TextMessageStartEvent):
            self._store.put_message(ActiveMessage(message_id=event.message_id, role=event.role, started_at=now))
            if run is not None:
                run.current_message_id = event.message_id
        elif isinstance(event, TextMessageContentEvent):
            message = self._store.message(event.message_id)
            if message is None or message.completed:
                logger.debug("agui.content_without_open_message message_id=%s", event.message_id)
                return
            message.content_chunks.append(event.delta)
        elif event.type == "text_message_end" and event.message_id:
            message = self._store.message(event.message_id)
            if message is not None:
                message.completed = True
            if run is not None and run.current_message_id == event.message_id:
                run.current_message_id = None
        elif run is None:
            return
        elif isinstance(event, ToolCallStartEvent):
            run.active_tool_calls.add(event.tool_call_id)
        elif isinstance(event, (ToolCallEndEvent, ToolCallErrorEvent)):
            run.active_tool_calls.discard(event.tool_call_id)
        elif isinstance(event, HILCheckpointCreatedEvent):
            run.checkpoints.append(event.checkpoint.id)
        elif isinstance(event, HILInterruptDetectedEvent):
            run.interrupts.append(event.interrupt.id)


def _count_registered(callbacks: Any) -> int:
    return sum(1 for item in fields(callbacks) if getattr(callbacks, item.name) is not None)
