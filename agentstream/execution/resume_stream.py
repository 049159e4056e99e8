"""Frame loop for the resume stream; independent of the primary chat stream."""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, Callable
from typing import Any

from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.callbacks import ResumeStreamCallbacks, safe_invoke
from agentstream.stream.frame_reader import Frame, FrameReader

logger = get_logger(__name__)

RESUME_EVENT_TYPES = ("resume_start", "graph_update", "message_stream", "resume_end")


class ResumeStreamReader:
    """Dispatch the four resume event types; everything else is logged and skipped."""

    def __init__(self, callbacks: ResumeStreamCallbacks) -> None:
        self._callbacks = callbacks
        self._reader = FrameReader()
        self._handlers: dict[str, Callable[[dict[str, Any]], None] | None] = {
            event_type: getattr(callbacks, f"on_{event_type}") for event_type in RESUME_EVENT_TYPES
        }
        self.frames_seen = 0

    async def consume(self, chunks: AsyncIterable[bytes]) -> None:
        async for frame in self._reader.iter_frames(chunks):
            self.dispatch(frame)

    def dispatch(self, frame: Frame) -> None:
        self.frames_seen += 1
        if frame.is_done:
            logger.debug("resume_stream.done")
            return
        try:
            event = json.loads(frame.payload)
        except json.JSONDecodeError as exc:
            logger.warning("resume_stream.decode_failed error=%s payload=%s", exc, frame.payload[:200])
            return
        if not isinstance(event, dict):
            logger.warning("resume_stream.non_object_frame")
            return

        event_type = event.get("type")
        if event_type not in self._handlers:
            logger.debug("resume_stream.unknown_event type=%s", event_type)
            return
        safe_invoke(self._handlers[event_type], event, label=f"on_{event_type}")
