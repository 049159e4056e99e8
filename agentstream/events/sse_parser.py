"""Raw event router: decode one frame payload and dispatch it to callback hooks.

Handled event types:
- lifecycle: ``start``, ``end``, ``error``, ``content``
- token/progress streams: ``custom_event``, ``custom_stream``, ``message_stream``
- status: ``graph_update``, ``node_update``, ``memory_update``, ``billing``, ``credits``
- human-in-the-loop: ``hil_interrupt``, ``hil_checkpoint``, ``hil_status``,
  ``hil_approval_required``, ``hil_review_required``, ``hil_input_required``

Unknown types are logged and dropped. ``parse`` never raises; problems are
reported through ``on_error``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from agentstream.events.content_extractor import LegacyContentExtractor
from agentstream.events.interrupts import GRAPH_UPDATE_MATCHERS, MESSAGE_STREAM_MATCHERS, match_first
from agentstream.events.status_labels import StatusLabelCatalog
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import (
    HILApprovalRequest,
    HILApprovalRequiredEvent,
    HILCheckpoint,
    HILCheckpointCreatedEvent,
    HILInputRequest,
    HILInputRequiredEvent,
    HILInterrupt,
    HILInterruptDetectedEvent,
    HILReviewRequest,
    HILReviewRequiredEvent,
    now_ms,
)
from agentstream.protocol.callbacks import HILCallbacks, SSEParserCallbacks, merge_callbacks, safe_invoke
from agentstream.protocol.events import Artifact, BillingUpdate, RawEvent, TaskItem, TaskProgress
from agentstream.protocol.execution import ExecutionStatus, to_hil_status

logger = get_logger(__name__)

_PROGRESS_PATTERN = re.compile(r"^\[([^\]]+)\]\s+(.+?)\s*(?:\((\d+)/(\d+)\))?\s*$")
_WORKFLOW_ACTIVE_STATES = {"starting", "deciding"}
_TASK_LIST_NODES = ("call_tool", "agent_executor")


class SSEParseError(ValueError):
    """Raised (via ``on_error``) when a frame cannot be decoded or validated."""


class StreamEventError(RuntimeError):
    """Backend-reported failure carried inside the stream."""


@dataclass
class _Emitter:
    """Per-call view of the caller's hooks with exception isolation."""

    callbacks: SSEParserCallbacks
    hil: HILCallbacks
    thread_id: str
    run_id: str | None = None

    def status(self, text: str) -> None:
        safe_invoke(self.callbacks.on_stream_status, text, label="on_stream_status")

    def content(self, text: str) -> None:
        safe_invoke(self.callbacks.on_stream_content, text, label="on_stream_content")

    def complete(self) -> None:
        safe_invoke(self.callbacks.on_stream_complete, label="on_stream_complete")

    def error(self, exc: Exception) -> None:
        safe_invoke(self.callbacks.on_error, exc, label="on_error")

    def artifact(self, artifact: Artifact) -> None:
        safe_invoke(self.callbacks.on_artifact_created, artifact, label="on_artifact_created")

    def task_progress(self, progress: TaskProgress) -> None:
        safe_invoke(self.callbacks.on_task_progress, progress, label="on_task_progress")

    def task_list(self, tasks: list[TaskItem]) -> None:
        safe_invoke(self.callbacks.on_task_list_update, tasks, label="on_task_list_update")

    def task_status(self, task_id: str, status: str, result: Any = None) -> None:
        safe_invoke(self.callbacks.on_task_status_update, task_id, status, result, label="on_task_status_update")

    def interrupt(self, interrupt: HILInterrupt) -> None:
        event = HILInterruptDetectedEvent(thread_id=self.thread_id, run_id=self.run_id, interrupt=interrupt)
        safe_invoke(self.hil.on_hil_interrupt_detected, event, label="on_hil_interrupt_detected")
        self.status(f"⏸️ {interrupt.title}")


class SSEParser:
    """Route decoded stream events to UI callbacks.

    ``default_hil_callbacks`` is the application-level HIL handler used for
    any hook the per-call ``hil_callbacks`` leave unset.
    """

    def __init__(
        self,
        *,
        labels: StatusLabelCatalog | None = None,
        content_extractor: LegacyContentExtractor | None = None,
        default_hil_callbacks: HILCallbacks | None = None,
    ) -> None:
        self._labels = labels or StatusLabelCatalog.from_file()
        self._extractor = content_extractor or LegacyContentExtractor()
        self._default_hil = default_hil_callbacks or HILCallbacks()
        self._handlers: dict[str, Callable[[RawEvent, _Emitter], None]] = {
            "start": self._handle_start,
            "custom_event": self._handle_custom_event,
            "custom_stream": self._handle_custom_stream,
            "message_stream": self._handle_message_stream,
            "graph_update": self._handle_graph_update,
            "memory_update": self._handle_memory_update,
            "billing": self._handle_billing,
            "node_update": self._handle_node_update,
            "content": self._handle_content,
            "end": self._handle_end,
            "error": self._handle_error,
            "credits": self._handle_credits,
            "hil_interrupt": self._handle_hil_interrupt,
            "hil_checkpoint": self._handle_hil_checkpoint,
            "hil_status": self._handle_hil_status,
            "hil_approval_required": self._handle_hil_approval_required,
            "hil_review_required": self._handle_hil_review_required,
            "hil_input_required": self._handle_hil_input_required,
        }

    @property
    def default_hil_callbacks(self) -> HILCallbacks:
        return self._default_hil

    def set_default_hil_callbacks(self, callbacks: HILCallbacks) -> None:
        self._default_hil = callbacks

    def parse(
        self,
        payload: str,
        callbacks: SSEParserCallbacks,
        hil_callbacks: HILCallbacks | None = None,
        *,
        thread_id: str | None = None,
    ) -> None:
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            logger.warning("sse_parser.decode_failed error=%s payload=%s", exc, payload[:200])
            safe_invoke(callbacks.on_error, SSEParseError(f"SSE parsing failed: {exc}"), label="on_error")
            return
        if not isinstance(decoded, dict):
            safe_invoke(
                callbacks.on_error,
                SSEParseError("SSE parsing failed: event payload is not a JSON object"),
                label="on_error",
            )
            return
        try:
            event = RawEvent.model_validate(decoded)
        except ValidationError as exc:
            safe_invoke(callbacks.on_error, SSEParseError(f"SSE parsing failed: {exc}"), label="on_error")
            return

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("sse_parser.unknown_event type=%s", event.type)
            return
        logger.debug("sse_parser.event type=%s", event.type)

        extra = event.model_extra or {}
        emitter = _Emitter(
            callbacks=callbacks,
            hil=merge_callbacks(self._default_hil, hil_callbacks) if hil_callbacks else self._default_hil,
            thread_id=event.thread_id or thread_id or "unknown",
            run_id=extra.get("run_id"),
        )
        try:
            handler(event, emitter)
        except ValidationError as exc:
            logger.warning("sse_parser.invalid_event type=%s errors=%s", event.type, exc.error_count())
            emitter.error(SSEParseError(f"Invalid {event.type} event: {exc}"))

    # Lifecycle / content

    def _handle_start(self, event: RawEvent, emit: _Emitter) -> None:
        message_id = f"streaming-{now_ms()}"
        safe_invoke(
            emit.callbacks.on_stream_start,
            message_id,
            "Connecting to AI...",
            label="on_stream_start",
        )

    def _handle_content(self, event: RawEvent, emit: _Emitter) -> None:
        if not isinstance(event.content, str) or not event.content:
            return
        safe_invoke(emit.callbacks.on_message_complete, event.content, label="on_message_complete")
        self._emit_images(event.content, emit, id_prefix="content_image")

    def _handle_end(self, event: RawEvent, emit: _Emitter) -> None:
        emit.complete()

    def _handle_error(self, event: RawEvent, emit: _Emitter) -> None:
        logger.warning("sse_parser.error_event content=%s", event.content)
        emit.error(StreamEventError(f"API Error: {event.content}"))

    def _handle_credits(self, event: RawEvent, emit: _Emitter) -> None:
        logger.info("sse_parser.credits content=%s", event.content)

    # Token and progress streams

    def _handle_custom_event(self, event: RawEvent, emit: _Emitter) -> None:
        metadata = event.metadata if isinstance(event.metadata, dict) else {}
        chunk = metadata.get("raw_chunk")
        if not isinstance(chunk, dict):
            return

        batch = chunk.get("response_batch")
        if isinstance(batch, dict) and batch.get("status") == "streaming":
            emit.content(str(batch.get("tokens") or ""))
            emit.status(f"🚀 Streaming... ({batch.get('total_index')} chars)")
            return

        token = chunk.get("response_token")
        if isinstance(token, dict) and token.get("status") == "completed":
            emit.complete()
            return

        for step, value in chunk.items():
            if isinstance(value, dict) and value.get("status") in _WORKFLOW_ACTIVE_STATES:
                emit.status(self._labels.workflow_label(step))
                return

    def _handle_custom_stream(self, event: RawEvent, emit: _Emitter) -> None:
        content = event.content
        if not isinstance(content, dict):
            return
        kind = content.get("type")

        if content.get("custom_llm_chunk"):
            emit.content(str(content["custom_llm_chunk"]))
        elif isinstance(content.get("task_state"), dict):
            self._emit_task_state(content["task_state"], emit)
        elif kind == "task_completed" or isinstance(content.get("task_completed"), dict):
            self._emit_task_completed(content.get("task_completed") or content, emit)
        elif kind == "agent_execution" or isinstance(content.get("agent_execution"), dict):
            self._emit_agent_execution(content.get("agent_execution") or content, emit)
        elif kind == "progress" and isinstance(content.get("data"), str):
            progress = parse_task_progress(content["data"])
            if progress is not None:
                emit.task_progress(progress)
            emit.status(content["data"])
        elif kind == "task_list" and isinstance(content.get("tasks"), list):
            emit.task_list(_task_items(content["tasks"]))
        elif kind == "task_status" and content.get("task_id"):
            emit.task_status(str(content["task_id"]), str(content.get("status") or ""), content.get("result"))
        else:
            logger.debug("sse_parser.custom_stream_unmatched keys=%s", sorted(content))

    def _emit_task_state(self, state: dict[str, Any], emit: _Emitter) -> None:
        raw_tasks = state.get("tasks") if isinstance(state.get("tasks"), list) else []
        total = _as_int(state.get("total_tasks")) or len(raw_tasks)
        completed = _as_int(state.get("completed_tasks")) or 0
        current = _as_int(state.get("current_task_index"))
        if current is None:
            current = completed
        overall = str(state.get("status") or "running")

        tasks = _task_items(raw_tasks)
        for index, task in enumerate(tasks):
            if overall == "completed" or index < completed:
                task.status = "completed"
            elif index == current:
                task.status = "failed" if overall == "failed" else "running"
            else:
                task.status = "pending"

        if 0 <= current < len(tasks):
            description = tasks[current].title
        else:
            description = str(state.get("current_task") or "Working...")
        if overall in {"completed", "failed"}:
            progress_status = overall
        elif completed == 0 and current == 0:
            progress_status = "starting"
        else:
            progress_status = "running"
        step = min(current + 1, total) if total else None

        emit.task_progress(
            TaskProgress(
                tool_name=str(state.get("tool_name") or "task_manager"),
                description=description,
                current_step=step,
                total_steps=total or None,
                status=progress_status,
            )
        )
        if tasks:
            emit.task_list(tasks)
        emit.status(f"📋 {description} ({step}/{total})" if step else f"📋 {description}")

    def _emit_task_completed(self, payload: dict[str, Any], emit: _Emitter) -> None:
        task_id = payload.get("task_id") or payload.get("id")
        if task_id:
            emit.task_status(str(task_id), "completed", payload.get("result"))
        title = payload.get("task_title") or payload.get("title") or task_id or "task"
        emit.status(f"✅ Task completed: {title}")

    def _emit_agent_execution(self, payload: dict[str, Any], emit: _Emitter) -> None:
        parts = [f"🤖 Agent {payload.get('status') or 'working'}"]
        total = _as_int(payload.get("total_tasks"))
        if total:
            parts.append(f"{_as_int(payload.get('completed_tasks')) or 0}/{total} tasks")
        if payload.get("current_step"):
            parts.append(str(payload["current_step"]))
        emit.status(" · ".join(parts))

    def _handle_message_stream(self, event: RawEvent, emit: _Emitter) -> None:
        content = event.content if isinstance(event.content, dict) else {}
        raw_message = content.get("raw_message")
        if not isinstance(raw_message, str):
            logger.debug("sse_parser.message_stream_without_raw_message")
            return

        extracted = self._extractor.extract_content(raw_message)
        if extracted and extracted.strip():
            emit.status(extracted)
        else:
            emit.status("🔧 Processing tools...")

        scanned = extracted if extracted is not None else raw_message
        self._emit_images(scanned, emit, id_prefix="image")
        blob = self._extractor.find_json_object(scanned)
        if blob is not None:
            emit.artifact(Artifact(id=f"data_{now_ms()}", type="data", content=json.dumps(blob, ensure_ascii=False)))

        interrupt = match_first(MESSAGE_STREAM_MATCHERS, event, self._extractor)
        if interrupt is not None:
            emit.interrupt(interrupt)

    # Status events

    def _handle_graph_update(self, event: RawEvent, emit: _Emitter) -> None:
        interrupt = match_first(GRAPH_UPDATE_MATCHERS, event, self._extractor)
        if interrupt is not None:
            emit.interrupt(interrupt)
            return

        tasks = self._task_list_from_graph_content(event.content)
        if tasks is not None:
            emit.task_list(tasks)
            return

        data = event.data if isinstance(event.data, dict) else {}
        reason_model = data.get("reason_model") if isinstance(data.get("reason_model"), dict) else {}
        action = reason_model.get("next_action")
        if action:
            emit.status(self._labels.next_action_label(str(action)))
        else:
            emit.status("🧠 AI processing...")

    def _task_list_from_graph_content(self, content: Any) -> list[TaskItem] | None:
        if isinstance(content, str):
            try:
                content = json.loads(content)
            except json.JSONDecodeError:
                return None
        if not isinstance(content, dict):
            return None
        for node in _TASK_LIST_NODES:
            node_state = content.get(node)
            if isinstance(node_state, dict) and isinstance(node_state.get("task_list"), list):
                return _task_items(node_state["task_list"])
        return None

    def _handle_node_update(self, event: RawEvent, emit: _Emitter) -> None:
        metadata = event.metadata if isinstance(event.metadata, dict) else {}
        emit.status(self._labels.node_label(metadata.get("node_name")))

    def _handle_memory_update(self, event: RawEvent, emit: _Emitter) -> None:
        data = event.data if isinstance(event.data, dict) else {}
        stored = data.get("memories_stored")
        emit.status(f"💾 Stored {stored} memories" if stored else "💾 Updating memory...")

    def _handle_billing(self, event: RawEvent, emit: _Emitter) -> None:
        data = event.data if isinstance(event.data, dict) else {}
        remaining = data.get("credits_remaining")
        if remaining is not None and data.get("success") is not False:
            update = BillingUpdate(
                credits_remaining=remaining,
                total_credits=data.get("total_credits") or remaining,
                model_calls=data.get("model_calls") or 0,
                tool_calls=data.get("tool_calls") or 0,
            )
            safe_invoke(emit.callbacks.on_billing_update, update, label="on_billing_update")
            used = data.get("credits_used") or 1
            emit.status(f"💰 Credits used: {used}, Remaining: {remaining}")
        elif data.get("error_message"):
            logger.warning("sse_parser.billing_error message=%s", data["error_message"])
            emit.error(StreamEventError(f"Billing Error: {data['error_message']}"))
        else:
            logger.debug("sse_parser.billing_incomplete keys=%s", sorted(data))

    # Human-in-the-loop events

    def _handle_hil_interrupt(self, event: RawEvent, emit: _Emitter) -> None:
        body = _hil_body(event)
        body.setdefault("interrupt_type", body.get("type") or "approval")
        emit.interrupt(HILInterrupt.model_validate(body))

    def _handle_hil_checkpoint(self, event: RawEvent, emit: _Emitter) -> None:
        body = _hil_body(event)
        body.setdefault("id", body.get("checkpoint_id"))
        checkpoint = HILCheckpoint.model_validate(body)
        created = HILCheckpointCreatedEvent(thread_id=emit.thread_id, run_id=emit.run_id, checkpoint=checkpoint)
        safe_invoke(emit.hil.on_hil_checkpoint_created, created, label="on_hil_checkpoint_created")
        emit.status(f"📍 Checkpoint saved at {checkpoint.node or 'current step'}")

    def _handle_hil_status(self, event: RawEvent, emit: _Emitter) -> None:
        body = _hil_body(event)
        body.setdefault("thread_id", emit.thread_id)
        status = to_hil_status(ExecutionStatus.model_validate(body))
        safe_invoke(emit.hil.on_hil_status_changed, status, label="on_hil_status_changed")
        emit.status(f"ℹ️ Execution {status.status}")

    def _handle_hil_approval_required(self, event: RawEvent, emit: _Emitter) -> None:
        request = HILApprovalRequest.model_validate(_hil_body(event))
        required = HILApprovalRequiredEvent(thread_id=emit.thread_id, run_id=emit.run_id, approval_request=request)
        safe_invoke(emit.hil.on_hil_approval_required, required, label="on_hil_approval_required")
        emit.status(f"✋ Approval required: {request.title}")

    def _handle_hil_review_required(self, event: RawEvent, emit: _Emitter) -> None:
        request = HILReviewRequest.model_validate(_hil_body(event))
        required = HILReviewRequiredEvent(thread_id=emit.thread_id, run_id=emit.run_id, review_request=request)
        safe_invoke(emit.hil.on_hil_review_required, required, label="on_hil_review_required")
        emit.status(f"📝 Review required ({request.content_type})")

    def _handle_hil_input_required(self, event: RawEvent, emit: _Emitter) -> None:
        request = HILInputRequest.model_validate(_hil_body(event))
        required = HILInputRequiredEvent(thread_id=emit.thread_id, run_id=emit.run_id, input_request=request)
        safe_invoke(emit.hil.on_hil_input_required, required, label="on_hil_input_required")
        emit.status(f"❓ {request.question}")

    def _emit_images(self, text: str, emit: _Emitter, *, id_prefix: str) -> None:
        stamp = now_ms()
        for index, url in enumerate(self._extractor.find_image_urls(text)):
            emit.artifact(Artifact(id=f"{id_prefix}_{stamp}_{index}", type="image", content=url))


def parse_task_progress(text: str) -> TaskProgress | None:
    """Parse ``"[tool] description (i/n)"`` progress lines."""
    match = _PROGRESS_PATTERN.match(text.strip())
    if match is None:
        return None
    tool_name, description, current, total = match.groups()
    lowered = description.lower()
    if "starting" in lowered:
        status = "starting"
    elif "completed" in lowered:
        status = "completed"
    elif "failed" in lowered:
        status = "failed"
    else:
        status = "running"
    return TaskProgress(
        tool_name=tool_name,
        description=description,
        current_step=int(current) if current else None,
        total_steps=int(total) if total else None,
        status=status,
    )


def _hil_body(event: RawEvent) -> dict[str, Any]:
    if isinstance(event.data, dict):
        return dict(event.data)
    if isinstance(event.content, dict):
        return dict(event.content)
    return {}


def _task_items(raw_tasks: list[Any]) -> list[TaskItem]:
    items: list[TaskItem] = []
    for index, raw in enumerate(raw_tasks):
        if isinstance(raw, dict):
            title = raw.get("title") or raw.get("name") or raw.get("description") or f"Task {index + 1}"
            status = raw.get("status")
            items.append(
                TaskItem(
                    id=str(raw.get("id") or f"task_{index + 1}"),
                    title=str(title),
                    description=raw.get("description"),
                    status=status if status in {"pending", "running", "completed", "failed"} else "pending",
                    progress=_as_int(raw.get("progress")),
                    result=raw.get("result"),
                )
            )
        else:
            items.append(TaskItem(id=f"task_{index + 1}", title=str(raw)))
    return items


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
