"""Protocol layer: callback sets exposed by router, standardizer and HIL control."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from typing import Any, TypeVar

from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import (
    AGUIEvent,
    HILApprovalRequiredEvent,
    HILCheckpointCreatedEvent,
    HILInputRequiredEvent,
    HILInterruptDetectedEvent,
    HILReviewRequiredEvent,
)
from agentstream.protocol.events import Artifact, BillingUpdate, TaskItem, TaskProgress
from agentstream.protocol.execution import HILExecutionStatusData, ResumeResult

logger = get_logger(__name__)

_CallbackSet = TypeVar("_CallbackSet")
EventHandler = Callable[[AGUIEvent], None]


def safe_invoke(callback: Callable[..., Any] | None, *args: Any, label: str) -> None:
    """Call one handler; a raising handler is logged and never reaches the caller."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("callback.failed name=%s", label)


def merge_callbacks(base: _CallbackSet, override: _CallbackSet) -> _CallbackSet:
    """Return `base` with every handler set on `override` replacing its own."""
    updates = {
        item.name: getattr(override, item.name)
        for item in fields(override)
        if getattr(override, item.name) is not None
    }
    return replace(base, **updates)


@dataclass
class SSEParserCallbacks:
    """Flat callback shape used by the raw router (the legacy generation)."""

    on_stream_start: Callable[[str, str | None], None] | None = None
    on_stream_content: Callable[[str], None] | None = None
    on_stream_status: Callable[[str], None] | None = None
    on_stream_complete: Callable[[], None] | None = None
    on_message_complete: Callable[[str | None], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_artifact_created: Callable[[Artifact], None] | None = None
    on_billing_update: Callable[[BillingUpdate], None] | None = None
    on_task_progress: Callable[[TaskProgress], None] | None = None
    on_task_list_update: Callable[[list[TaskItem]], None] | None = None
    on_task_status_update: Callable[[str, str, Any], None] | None = None


@dataclass
class HILCallbacks:
    """Human-in-the-loop hooks of the raw router."""

    on_hil_interrupt_detected: Callable[[HILInterruptDetectedEvent], None] | None = None
    on_hil_checkpoint_created: Callable[[HILCheckpointCreatedEvent], None] | None = None
    on_hil_status_changed: Callable[[HILExecutionStatusData], None] | None = None
    on_hil_approval_required: Callable[[HILApprovalRequiredEvent], None] | None = None
    on_hil_review_required: Callable[[HILReviewRequiredEvent], None] | None = None
    on_hil_input_required: Callable[[HILInputRequiredEvent], None] | None = None


@dataclass
class AGUIEventCallbacks:
    """Standardized handlers, one per canonical event type (`on_<type>`)."""

    on_run_started: EventHandler | None = None
    on_run_finished: EventHandler | None = None
    on_run_error: EventHandler | None = None
    on_run_paused: EventHandler | None = None
    on_run_resumed: EventHandler | None = None
    on_run_cancelled: EventHandler | None = None
    on_text_message_start: EventHandler | None = None
    on_text_message_content: EventHandler | None = None
    on_text_message_end: EventHandler | None = None
    on_tool_call_start: EventHandler | None = None
    on_tool_call_args: EventHandler | None = None
    on_tool_call_result: EventHandler | None = None
    on_tool_call_end: EventHandler | None = None
    on_tool_call_error: EventHandler | None = None
    on_user_input_required: EventHandler | None = None
    on_hil_interrupt_detected: EventHandler | None = None
    on_hil_approval_required: EventHandler | None = None
    on_hil_review_required: EventHandler | None = None
    on_hil_input_required: EventHandler | None = None
    on_hil_checkpoint_created: EventHandler | None = None
    on_hil_execution_resumed: EventHandler | None = None

    def handler_for(self, event_type: str) -> EventHandler | None:
        return getattr(self, f"on_{event_type}", None)


@dataclass
class HILEventCallbacks:
    """Hooks driven by the execution-control poll loop."""

    on_interrupt_detected: Callable[[HILInterruptDetectedEvent], None] | None = None
    on_execution_resumed: Callable[[ResumeResult], None] | None = None
    on_checkpoint_created: Callable[[HILCheckpointCreatedEvent], None] | None = None
    on_status_changed: Callable[[HILExecutionStatusData], None] | None = None
    on_error: Callable[[Exception], None] | None = None


@dataclass
class ResumeStreamCallbacks:
    """Hooks for the four event types of the resume stream."""

    on_resume_start: Callable[[dict[str, Any]], None] | None = None
    on_graph_update: Callable[[dict[str, Any]], None] | None = None
    on_message_stream: Callable[[dict[str, Any]], None] | None = None
    on_resume_end: Callable[[dict[str, Any]], None] | None = None
    on_error: Callable[[Exception], None] | None = None
