"""Two-way bridge between canonical events and the flat router generation.

``LegacyCallbackBridge`` replays canonical events into ``SSEParserCallbacks``;
``LegacyEventConverter`` turns raw router payloads into canonical events.
Both are fixed tables, not generic transforms.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from agentstream.agui.run_state import ActiveRun, RunStateStore
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import (
    AGUIEvent,
    AGUIEventBuilder,
    HILInterrupt,
    HILInterruptDetectedEvent,
    RunErrorEvent,
    RunStartedEvent,
    TextMessageContentEvent,
    ToolCallStartEvent,
    now_ms,
)
from agentstream.protocol.callbacks import SSEParserCallbacks, safe_invoke

logger = get_logger(__name__)


class RunFailedError(RuntimeError):
    """Delivered to ``on_error`` when a run ends with ``run_error``."""

    def __init__(self, message: str, *, code: str = "unknown_error") -> None:
        super().__init__(message)
        self.code = code


class LegacyCallbackBridge:
    """Translate canonical events into flat stream callbacks."""

    def __init__(self, callbacks: SSEParserCallbacks | None = None) -> None:
        self.callbacks = callbacks or SSEParserCallbacks()
        self._table: dict[str, Callable[[AGUIEvent], None]] = {
            "run_started": self._run_started,
            "text_message_content": self._text_message_content,
            "text_message_end": self._stream_complete,
            "run_finished": self._stream_complete,
            "run_error": self._run_error,
            "tool_call_start": self._tool_call_start,
            "hil_interrupt_detected": self._hil_interrupt_detected,
        }

    def forward(self, event: AGUIEvent) -> None:
        handler = self._table.get(event.type)
        if handler is not None:
            handler(event)

    def _run_started(self, event: AGUIEvent) -> None:
        run_id = event.run_id or f"run_{now_ms()}"
        safe_invoke(self.callbacks.on_stream_start, run_id, "Starting...", label="on_stream_start")

    def _text_message_content(self, event: AGUIEvent) -> None:
        if isinstance(event, TextMessageContentEvent):
            safe_invoke(self.callbacks.on_stream_content, event.delta, label="on_stream_content")

    def _stream_complete(self, event: AGUIEvent) -> None:
        safe_invoke(self.callbacks.on_stream_complete, label="on_stream_complete")

    def _run_error(self, event: AGUIEvent) -> None:
        if isinstance(event, RunErrorEvent):
            error = RunFailedError(event.error.message, code=event.error.code)
        else:
            error = RunFailedError("An error occurred")
        safe_invoke(self.callbacks.on_error, error, label="on_error")

    def _tool_call_start(self, event: AGUIEvent) -> None:
        if isinstance(event, ToolCallStartEvent):
            safe_invoke(
                self.callbacks.on_stream_status,
                f"🔧 Calling {event.tool_name}...",
                label="on_stream_status",
            )

    def _hil_interrupt_detected(self, event: AGUIEvent) -> None:
        if isinstance(event, HILInterruptDetectedEvent):
            safe_invoke(
                self.callbacks.on_stream_status,
                f"⏸️ {event.interrupt.title}",
                label="on_stream_status",
            )


class LegacyEventConverter:
    """Convert raw router payloads into canonical events for one thread.

    Content-bearing payloads attach to the run's current message; when no
    message is open they produce nothing.
    """

    def __init__(self, store: RunStateStore) -> None:
        self._store = store

    def convert(self, payload: Mapping[str, Any], *, thread_id: str) -> list[AGUIEvent]:
        kind = str(payload.get("type") or "")
        run = self._store.run(thread_id)
        builder = AGUIEventBuilder(thread_id, run.run_id if run is not None else None)

        if kind == "start":
            return self._start(payload, thread_id)
        if kind in {"custom_event", "custom_stream", "token"}:
            return self._content(payload, builder, run)
        if kind == "tool_start":
            tool_name = str(payload.get("tool_name") or "unknown_tool")
            return [builder.tool_call_start(_tool_call_id(payload, tool_name), tool_name)]
        if kind == "tool_completed":
            tool_name = str(payload.get("tool_name") or "unknown_tool")
            final_status = "failed" if payload.get("error") else "completed"
            return [builder.tool_call_end(_tool_call_id(payload, tool_name), final_status)]
        if kind in {"end", "complete"}:
            events: list[AGUIEvent] = []
            if run is not None and run.current_message_id:
                events.append(self._message_end(builder, run.current_message_id))
            events.append(builder.run_finished(payload.get("result") or payload.get("content")))
            return events
        if kind == "error":
            return [self._run_error(payload, builder)]
        if kind == "hil_interrupt_detected":
            return [self._interrupt(payload, builder)]

        logger.debug("legacy_converter.skip type=%s", kind)
        return []

    def _start(self, payload: Mapping[str, Any], thread_id: str) -> list[AGUIEvent]:
        stamp = now_ms()
        run_id = str(payload.get("run_id") or f"run_{stamp}")
        message_id = str(payload.get("message_id") or f"msg_{stamp}")
        builder = AGUIEventBuilder(thread_id, run_id)
        started: RunStartedEvent = builder.run_started(agent_info=_dict_or_none(payload.get("agent_info")))
        return [started, builder.text_message_start(message_id)]

    def _content(
        self,
        payload: Mapping[str, Any],
        builder: AGUIEventBuilder,
        run: ActiveRun | None,
    ) -> list[AGUIEvent]:
        message_id = run.current_message_id if run is not None else None
        if not message_id:
            logger.debug("legacy_converter.no_open_message thread_id=%s", builder.thread_id)
            return []

        if payload.get("type") == "custom_event":
            metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
            chunk = metadata.get("raw_chunk") if isinstance(metadata.get("raw_chunk"), dict) else {}
            batch = chunk.get("response_batch")
            if isinstance(batch, dict) and batch.get("status") == "streaming":
                return [builder.text_message_content(message_id, str(batch.get("tokens") or ""))]
            token = chunk.get("response_token")
            if isinstance(token, dict) and token.get("status") == "completed":
                return [self._message_end(builder, message_id)]
            return []

        if payload.get("type") == "custom_stream":
            content = payload.get("content") if isinstance(payload.get("content"), dict) else {}
            delta = content.get("custom_llm_chunk") or payload.get("custom_llm_chunk")
        else:
            delta = payload.get("content") or payload.get("token")
        if not isinstance(delta, str) or not delta:
            return []
        return [builder.text_message_content(message_id, delta)]

    def _message_end(self, builder: AGUIEventBuilder, message_id: str) -> AGUIEvent:
        message = self._store.message(message_id)
        return builder.text_message_end(message_id, message.full_content if message is not None else "")

    def _run_error(self, payload: Mapping[str, Any], builder: AGUIEventBuilder) -> AGUIEvent:
        error = payload.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or "An error occurred")
            code = str(error.get("code") or "unknown_error")
        else:
            message = str(error or payload.get("content") or "An error occurred")
            code = "stream_error"
        return builder.run_error(message, code=code)

    def _interrupt(self, payload: Mapping[str, Any], builder: AGUIEventBuilder) -> AGUIEvent:
        raw = payload.get("hil_interrupt") or payload.get("interrupt")
        raw = raw if isinstance(raw, dict) else {}
        fields: dict[str, Any] = {
            "interrupt_type": raw.get("interrupt_type") or raw.get("type") or "approval",
            "data": raw.get("data") or raw.get("context"),
        }
        if raw.get("id"):
            fields["id"] = str(raw["id"])
        if raw.get("title"):
            fields["title"] = str(raw["title"])
        message = raw.get("message") or raw.get("description")
        if message:
            fields["message"] = str(message)
        return builder.hil_interrupt_detected(HILInterrupt(**fields))


def _tool_call_id(payload: Mapping[str, Any], tool_name: str) -> str:
    return str(payload.get("tool_call_id") or payload.get("id") or f"tool_{tool_name}")


def _dict_or_none(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None
