"""Protocol layer: DTOs for the HIL execution-control REST surface."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticUseDefault

from agentstream.protocol.agui import scalar_text

ExecutionStatusType = Literal["ready", "running", "interrupted", "completed", "error"]
ResumeAction = Literal["continue", "skip", "modify", "pause", "reject"]


class _OpenModel(BaseModel):
    model_config = ConfigDict(extra="allow")


def _text_or_empty(value: Any) -> Any:
    return "" if value is None else scalar_text(value)


class HealthFeatures(_OpenModel):
    human_in_loop: bool = False
    approval_workflow: bool = False
    tool_authorization: bool = False
    total_interrupts: int = 0


class GraphInfo(_OpenModel):
    nodes: int = 0
    durable: bool = False
    checkpoints: bool = False
    environment: str = ""


class ExecutionHealth(_OpenModel):
    status: str = "down"
    service: str = ""
    features: HealthFeatures = Field(default_factory=HealthFeatures)
    graph_info: GraphInfo = Field(default_factory=GraphInfo)


class InterruptInfo(_OpenModel):
    """Server-issued pause record; content is carried through untouched."""

    id: str
    type: str = "approval"
    timestamp: str = ""
    data: Any = None
    reason: str | None = None

    @field_validator("id", "timestamp", mode="before")
    @classmethod
    def _ids_as_text(cls, value: Any) -> Any:
        return _text_or_empty(value)

    @field_validator("type", mode="before")
    @classmethod
    def _null_type_is_approval(cls, value: Any) -> Any:
        if value is None:
            raise PydanticUseDefault()
        return value

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_as_text(cls, value: Any) -> Any:
        return scalar_text(value)


class ExecutionStatus(_OpenModel):
    thread_id: str
    # Kept as str so an unrecognized status reaches the idle branch instead of failing validation.
    status: str = "ready"
    current_node: str = ""
    interrupts: list[InterruptInfo] = Field(default_factory=list)
    checkpoints: int = 0
    durable: bool = True

    @field_validator("thread_id", "current_node", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _text_or_empty(value)

    @field_validator("status", "checkpoints", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any) -> Any:
        if value is None:
            raise PydanticUseDefault()
        return value

    @field_validator("durable", mode="before")
    @classmethod
    def _absent_means_durable(cls, value: Any) -> bool:
        return value is not False

    @field_validator("interrupts", mode="before")
    @classmethod
    def _none_means_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class ExecutionCheckpoint(_OpenModel):
    checkpoint: str
    node: str = ""
    timestamp: str = ""
    state_summary: str = ""

    @field_validator("checkpoint", "node", "timestamp", "state_summary", mode="before")
    @classmethod
    def _text_fields(cls, value: Any) -> Any:
        return _text_or_empty(value)


class ExecutionHistory(_OpenModel):
    thread_id: str
    history: list[ExecutionCheckpoint] = Field(default_factory=list)
    total: int = 0
    limit: int | None = None


class RestoredState(_OpenModel):
    node: str = ""
    timestamp: str = ""


class RollbackResult(_OpenModel):
    thread_id: str
    success: bool
    checkpoint_id: str
    message: str = ""
    restored_state: RestoredState | None = None


class ResumeData(_OpenModel):
    """Free-form resume payload; which keys matter depends on the interrupt type."""

    approved: bool | None = None
    user_input: str | None = None
    authorization_token: str | None = None
    human_decision: str | None = None
    modifications: Any = None
    edited_content: Any = None
    validation_passed: bool | None = None


class ResumeRequest(BaseModel):
    thread_id: str
    action: ResumeAction = "continue"
    resume_data: ResumeData | None = None


class ResumeResult(_OpenModel):
    success: bool
    thread_id: str
    message: str = ""
    next_step: str = ""


class HILInterruptData(BaseModel):
    """Business-layer view of one interrupt attached to a status snapshot."""

    id: str
    type: str
    timestamp: str
    thread_id: str
    title: str
    message: str
    data: Any = None
    reason: str | None = None


class HILExecutionStatusData(BaseModel):
    thread_id: str
    status: str
    current_node: str = ""
    interrupts: list[HILInterruptData] = Field(default_factory=list)
    checkpoints: int = 0
    durable: bool = True
    last_checkpoint: str | None = None


def interrupt_title(interrupt_type: str) -> str:
    return f"HIL {interrupt_type.replace('_', ' ')}"


def to_hil_status(status: ExecutionStatus) -> HILExecutionStatusData:
    """Map a REST status snapshot into the canonical HIL status record."""
    return HILExecutionStatusData(
        thread_id=status.thread_id,
        status=status.status,
        current_node=status.current_node,
        interrupts=[
            HILInterruptData(
                id=item.id,
                type=item.type,
                timestamp=item.timestamp,
                thread_id=status.thread_id,
                title=interrupt_title(item.type),
                message=item.reason or "Human intervention required",
                data=item.data,
                reason=item.reason,
            )
            for item in status.interrupts
        ],
        checkpoints=status.checkpoints,
        durable=status.durable,
    )
