"""Primary chat stream: POST a message and route every frame of the reply."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel

from agentstream.agui.processor import AGUIEventProcessor
from agentstream.events.sse_parser import SSEParser
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.callbacks import HILCallbacks, SSEParserCallbacks, safe_invoke
from agentstream.stream.frame_reader import FrameReader

logger = get_logger(__name__)

StreamListener = Callable[[str], None]


class ChatStreamError(RuntimeError):
    """The chat endpoint refused the request or the connection failed."""


class ChatRequest(BaseModel):
    message: str
    session_id: str = "default"
    user_id: str = "test_user"
    use_streaming: bool = True
    template_parameters: dict[str, Any] | None = None


class ChatStreamClient:
    """Consume the primary stream for one thread at a time per call.

    ``on_open``/``on_close`` listeners learn when a thread's primary stream
    starts and stops being read.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        parser: SSEParser,
        *,
        stream_path: str = "/api/chat",
        processor: AGUIEventProcessor | None = None,
        on_open: StreamListener | None = None,
        on_close: StreamListener | None = None,
    ) -> None:
        self._client = client
        self._parser = parser
        self._stream_path = stream_path
        self._processor = processor
        self._on_open = on_open
        self._on_close = on_close

    async def send_message(
        self,
        request: ChatRequest,
        callbacks: SSEParserCallbacks,
        hil_callbacks: HILCallbacks | None = None,
    ) -> int:
        """Stream the reply to `request`; return the number of frames read.

        ``on_message_complete`` fires once when the stream ends, whether it
        ends with ``[DONE]`` or the server just closes the connection.
        """
        thread_id = request.session_id
        reader = FrameReader()
        frames = 0
        safe_invoke(self._on_open, thread_id, label="on_open")
        try:
            async with self._client.stream(
                "POST",
                self._stream_path,
                json=request.model_dump(exclude_none=True),
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ChatStreamError(f"HTTP {response.status_code}: {response.reason_phrase}")
                async for frame in reader.iter_frames(response.aiter_bytes()):
                    frames += 1
                    if frame.is_done:
                        break
                    self._parser.parse(frame.payload, callbacks, hil_callbacks, thread_id=thread_id)
                    if self._processor is not None:
                        self._processor.process_legacy_event(frame.payload, thread_id)
        except httpx.HTTPError as exc:
            logger.error("chat_stream.failed thread_id=%s error=%s", thread_id, exc)
            safe_invoke(callbacks.on_error, ChatStreamError(f"ChatService: {exc}"), label="on_error")
            return frames
        except ChatStreamError as exc:
            logger.error("chat_stream.rejected thread_id=%s error=%s", thread_id, exc)
            safe_invoke(callbacks.on_error, exc, label="on_error")
            return frames
        finally:
            safe_invoke(self._on_close, thread_id, label="on_close")

        logger.info("chat_stream.closed thread_id=%s frames=%s", thread_id, frames)
        safe_invoke(callbacks.on_message_complete, None, label="on_message_complete")
        return frames
