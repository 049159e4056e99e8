"""Protocol layer: canonical AGUI event models all raw stream shapes normalize into."""

from __future__ import annotations

import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticUseDefault

AGUIEventType = Literal[
    "run_started",
    "run_finished",
    "run_error",
    "run_paused",
    "run_resumed",
    "run_cancelled",
    "text_message_start",
    "text_message_content",
    "text_message_end",
    "tool_call_start",
    "tool_call_args",
    "tool_call_result",
    "tool_call_end",
    "tool_call_error",
    "user_input_required",
    "hil_interrupt_detected",
    "hil_approval_required",
    "hil_review_required",
    "hil_input_required",
    "hil_checkpoint_created",
    "hil_execution_resumed",
]
MessageRole = Literal["assistant", "user", "system"]
Priority = Literal["low", "medium", "high", "critical"]
RiskLevel = Literal["low", "medium", "high"]

_PRIORITIES = frozenset({"low", "medium", "high", "critical"})
_RISK_LEVELS = frozenset({"low", "medium", "high"})


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    return int(time.time() * 1000)


def scalar_text(value: Any) -> Any:
    """Render numeric identifiers as text; anything else is left to validation."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _text_or_default(value: Any) -> Any:
    if value is None:
        raise PydanticUseDefault()
    return scalar_text(value)


class AGUIEvent(BaseModel):
    """Base shape shared by every canonical event; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    type: str
    timestamp: str = Field(default_factory=utc_now_iso)
    thread_id: str
    run_id: str | None = None
    message_id: str | None = None


class RunStartedEvent(AGUIEvent):
    type: Literal["run_started"] = "run_started"
    agent_info: dict[str, Any] | None = None
    session_info: dict[str, Any] | None = None


class RunFinishedEvent(AGUIEvent):
    type: Literal["run_finished"] = "run_finished"
    result: Any = None


class RunErrorInfo(BaseModel):
    code: str = "unknown_error"
    message: str = "An error occurred"
    details: Any = None
    recoverable: bool = False


class RunErrorEvent(AGUIEvent):
    type: Literal["run_error"] = "run_error"
    error: RunErrorInfo = Field(default_factory=RunErrorInfo)


class RunPausedEvent(AGUIEvent):
    type: Literal["run_paused"] = "run_paused"
    reason: str = "user_request"
    can_resume: bool = True


class RunResumedEvent(AGUIEvent):
    type: Literal["run_resumed"] = "run_resumed"
    resumed_from: str | None = None


class RunCancelledEvent(AGUIEvent):
    type: Literal["run_cancelled"] = "run_cancelled"
    reason: str = "user_request"


class TextMessageStartEvent(AGUIEvent):
    type: Literal["text_message_start"] = "text_message_start"
    message_id: str
    role: MessageRole = "assistant"
    estimated_length: int | None = None


class TextMessageContentEvent(AGUIEvent):
    type: Literal["text_message_content"] = "text_message_content"
    message_id: str
    delta: str
    position: int | None = None


class TextMessageEndEvent(AGUIEvent):
    type: Literal["text_message_end"] = "text_message_end"
    message_id: str
    final_content: str = ""
    metadata: dict[str, Any] | None = None


class ToolCallStartEvent(AGUIEvent):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool_call_id: str
    tool_name: str = "unknown_tool"
    parent_message_id: str | None = None
    description: str | None = None


class ToolCallArgsEvent(AGUIEvent):
    type: Literal["tool_call_args"] = "tool_call_args"
    tool_call_id: str
    args_delta: str | None = None
    final_args: dict[str, Any] | None = None


class ToolCallResultEvent(AGUIEvent):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool_call_id: str
    result: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: int | None = None


class ToolCallEndEvent(AGUIEvent):
    type: Literal["tool_call_end"] = "tool_call_end"
    tool_call_id: str
    final_status: Literal["completed", "failed", "cancelled"] = "completed"


class ToolCallErrorEvent(AGUIEvent):
    type: Literal["tool_call_error"] = "tool_call_error"
    tool_call_id: str
    error: dict[str, Any] = Field(default_factory=dict)


class UserInputRequiredEvent(AGUIEvent):
    type: Literal["user_input_required"] = "user_input_required"
    input_request: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int | None = None


class HILInterrupt(BaseModel):
    """Pause point requiring a human decision before execution continues.

    Servers send ids as numbers or omit optional fields as null; both fall back
    to text or defaults instead of dropping the interrupt.
    """

    id: str = Field(default_factory=lambda: f"interrupt_{now_ms()}")
    interrupt_type: str = "approval"
    title: str = "User Intervention Required"
    message: str = "Human intervention required"
    priority: Priority = "medium"
    data: Any = None
    timeout_ms: int | None = None

    @field_validator("id", "interrupt_type", "title", "message", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _text_or_default(value)

    @field_validator("priority", mode="before")
    @classmethod
    def _known_priority(cls, value: Any) -> Any:
        if not isinstance(value, str) or value not in _PRIORITIES:
            raise PydanticUseDefault()
        return value


class HILInterruptDetectedEvent(AGUIEvent):
    type: Literal["hil_interrupt_detected"] = "hil_interrupt_detected"
    interrupt: HILInterrupt = Field(default_factory=HILInterrupt)


class HILApprovalRequest(BaseModel):
    id: str = Field(default_factory=lambda: f"approval_{now_ms()}")
    title: str = "Approval Required"
    description: str = ""
    action_preview: str = ""
    risk_level: RiskLevel = "medium"
    auto_approve_after_ms: int | None = None

    @field_validator("id", "title", "description", "action_preview", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _text_or_default(value)

    @field_validator("risk_level", mode="before")
    @classmethod
    def _known_risk_level(cls, value: Any) -> Any:
        if not isinstance(value, str) or value not in _RISK_LEVELS:
            raise PydanticUseDefault()
        return value


class HILApprovalRequiredEvent(AGUIEvent):
    type: Literal["hil_approval_required"] = "hil_approval_required"
    approval_request: HILApprovalRequest = Field(default_factory=HILApprovalRequest)


class HILReviewRequest(BaseModel):
    id: str = Field(default_factory=lambda: f"review_{now_ms()}")
    content_type: Literal["text", "code", "data", "image", "document"] = "text"
    content: Any = None
    required_fields: list[str] = Field(default_factory=list)
    guidelines: str | None = None
    deadline_ms: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, value: Any) -> Any:
        return _text_or_default(value)


class HILReviewRequiredEvent(AGUIEvent):
    type: Literal["hil_review_required"] = "hil_review_required"
    review_request: HILReviewRequest = Field(default_factory=HILReviewRequest)


class HILInputRequest(BaseModel):
    id: str = Field(default_factory=lambda: f"input_{now_ms()}")
    question: str = "Input required"
    input_type: Literal["text", "number", "date", "choice", "file"] = "text"
    validation_rules: Any = None
    default_value: Any = None
    options: list[Any] | None = None

    @field_validator("id", "question", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _text_or_default(value)


class HILInputRequiredEvent(AGUIEvent):
    type: Literal["hil_input_required"] = "hil_input_required"
    input_request: HILInputRequest = Field(default_factory=HILInputRequest)


class HILCheckpoint(BaseModel):
    id: str
    node: str = ""
    state_summary: str = ""
    can_rollback: bool = True
    rollback_friendly_name: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, value: Any) -> Any:
        return scalar_text(value)

    @field_validator("node", "state_summary", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any) -> Any:
        return _text_or_default(value)


class HILCheckpointCreatedEvent(AGUIEvent):
    type: Literal["hil_checkpoint_created"] = "hil_checkpoint_created"
    checkpoint: HILCheckpoint


class HILResumeInfo(BaseModel):
    action_taken: Literal["continue", "skip", "modify", "rollback"] = "continue"
    human_input: Any = None
    modifications: Any = None
    rollback_checkpoint: str | None = None


class HILExecutionResumedEvent(AGUIEvent):
    type: Literal["hil_execution_resumed"] = "hil_execution_resumed"
    resume_info: HILResumeInfo = Field(default_factory=HILResumeInfo)


AGUI_EVENT_MODELS: dict[str, type[AGUIEvent]] = {
    "run_started": RunStartedEvent,
    "run_finished": RunFinishedEvent,
    "run_error": RunErrorEvent,
    "run_paused": RunPausedEvent,
    "run_resumed": RunResumedEvent,
    "run_cancelled": RunCancelledEvent,
    "text_message_start": TextMessageStartEvent,
    "text_message_content": TextMessageContentEvent,
    "text_message_end": TextMessageEndEvent,
    "tool_call_start": ToolCallStartEvent,
    "tool_call_args": ToolCallArgsEvent,
    "tool_call_result": ToolCallResultEvent,
    "tool_call_end": ToolCallEndEvent,
    "tool_call_error": ToolCallErrorEvent,
    "user_input_required": UserInputRequiredEvent,
    "hil_interrupt_detected": HILInterruptDetectedEvent,
    "hil_approval_required": HILApprovalRequiredEvent,
    "hil_review_required": HILReviewRequiredEvent,
    "hil_input_required": HILInputRequiredEvent,
    "hil_checkpoint_created": HILCheckpointCreatedEvent,
    "hil_execution_resumed": HILExecutionResumedEvent,
}


def parse_agui_event(payload: Mapping[str, Any]) -> AGUIEvent:
    """Validate a dict into its typed event model; unknown types keep the base model."""
    model = AGUI_EVENT_MODELS.get(str(payload.get("type") or ""), AGUIEvent)
    return model.model_validate(dict(payload))


class AGUIEventBuilder:
    """Build canonical events that share one thread/run identity."""

    def __init__(self, thread_id: str, run_id: str | None = None) -> None:
        self.thread_id = thread_id
        self.run_id = run_id

    def _base(self) -> dict[str, Any]:
        return {"thread_id": self.thread_id, "run_id": self.run_id, "timestamp": utc_now_iso()}

    def run_started(
        self,
        agent_info: dict[str, Any] | None = None,
        session_info: dict[str, Any] | None = None,
    ) -> RunStartedEvent:
        return RunStartedEvent(**self._base(), agent_info=agent_info, session_info=session_info)

    def run_finished(self, result: Any = None) -> RunFinishedEvent:
        return RunFinishedEvent(**self._base(), result=result)

    def run_error(self, message: str, *, code: str = "unknown_error", recoverable: bool = False) -> RunErrorEvent:
        return RunErrorEvent(
            **self._base(),
            error=RunErrorInfo(code=code, message=message, recoverable=recoverable),
        )

    def text_message_start(self, message_id: str, role: MessageRole = "assistant") -> TextMessageStartEvent:
        return TextMessageStartEvent(**self._base(), message_id=message_id, role=role)

    def text_message_content(self, message_id: str, delta: str) -> TextMessageContentEvent:
        return TextMessageContentEvent(**self._base(), message_id=message_id, delta=delta)

    def text_message_end(self, message_id: str, final_content: str = "") -> TextMessageEndEvent:
        return TextMessageEndEvent(**self._base(), message_id=message_id, final_content=final_content)

    def tool_call_start(self, tool_call_id: str, tool_name: str) -> ToolCallStartEvent:
        return ToolCallStartEvent(**self._base(), tool_call_id=tool_call_id, tool_name=tool_name)

    def tool_call_end(self, tool_call_id: str, final_status: str = "completed") -> ToolCallEndEvent:
        return ToolCallEndEvent(**self._base(), tool_call_id=tool_call_id, final_status=final_status)

    def hil_interrupt_detected(self, interrupt: HILInterrupt) -> HILInterruptDetectedEvent:
        return HILInterruptDetectedEvent(**self._base(), interrupt=interrupt)

    def hil_checkpoint_created(self, checkpoint: HILCheckpoint) -> HILCheckpointCreatedEvent:
        return HILCheckpointCreatedEvent(**self._base(), checkpoint=checkpoint)
