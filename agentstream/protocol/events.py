"""Protocol layer: raw stream envelope and the records the router emits."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentstream.protocol.agui import scalar_text, utc_now_iso

TaskStatus = Literal["pending", "running", "completed", "failed"]
ProgressStatus = Literal["starting", "running", "completed", "failed"]


class RawEvent(BaseModel):
    """Parsed `data:` envelope; `type` is an open enum and extra keys are kept."""

    model_config = ConfigDict(extra="allow")

    type: str = "unknown"
    content: Any = None
    data: Any = None
    metadata: Any = None
    timestamp: str | None = None
    thread_id: str | None = None

    @field_validator("timestamp", "thread_id", mode="before")
    @classmethod
    def _envelope_text(cls, value: Any) -> Any:
        # Epoch numbers become text; nested values are not identifiers and are dropped.
        value = scalar_text(value)
        return value if value is None or isinstance(value, str) else None


class TaskProgress(BaseModel):
    tool_name: str
    description: str
    current_step: int | None = None
    total_steps: int | None = None
    status: ProgressStatus = "running"


class TaskItem(BaseModel):
    id: str
    title: str
    description: str | None = None
    status: TaskStatus = "pending"
    progress: int | None = None
    result: Any = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class Artifact(BaseModel):
    id: str | None = None
    type: str
    content: str


class BillingUpdate(BaseModel):
    credits_remaining: float
    total_credits: float
    model_calls: int = 0
    tool_calls: int = 0
