"""Stream layer: split an SSE byte stream into `data:` frame payloads."""

from __future__ import annotations

import codecs
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"
_DATA_PREFIX = "data:"


@dataclass(frozen=True)
class Frame:
    """One `data:` payload taken from the transport stream."""

    payload: str
    is_done: bool = False


class FrameReader:
    """Incremental line splitter for one open stream.

    Chunks may cut a line (or a multibyte character) anywhere; only complete
    lines produce frames. Undecodable bytes are replaced rather than dropped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[Frame]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *lines, self._buffer = self._buffer.split("\n")
        return [frame for frame in (self._to_frame(line) for line in lines) if frame is not None]

    def flush(self) -> list[Frame]:
        """Emit the trailing line when the stream closes without a newline."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        frame = self._to_frame(tail)
        return [frame] if frame is not None else []

    async def iter_frames(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[Frame]:
        async for chunk in chunks:
            for frame in self.feed(chunk):
                yield frame
        for frame in self.flush():
            yield frame

    @staticmethod
    def _to_frame(line: str) -> Frame | None:
        line = line.rstrip("\r")
        if not line.startswith(_DATA_PREFIX):
            return None
        payload = line[len(_DATA_PREFIX):].strip()
        if not payload:
            return None
        return Frame(payload=payload, is_done=payload == DONE_SENTINEL)


def split_frames(data: bytes) -> list[Frame]:
    """Decode a complete byte payload in one call."""
    reader = FrameReader()
    return reader.feed(data) + reader.flush()
