"""Unit tests for incremental `data:` frame splitting."""

from __future__ import annotations

import pytest

from agentstream.stream.frame_reader import DONE_SENTINEL, Frame, FrameReader, split_frames

STREAM = (
    'data: {"type":"start"}\n'
    "\n"
    ": keep-alive\n"
    'data: {"type":"content","content":"héllo wörld ✓"}\r\n'
    'data:    {"type":"end"}   \n'
    "data: [DONE]\n"
).encode("utf-8")


def _payloads(frames: list[Frame]) -> list[str]:
    return [frame.payload for frame in frames]


def _feed_in_chunks(data: bytes, cuts: list[int]) -> list[Frame]:
    reader = FrameReader()
    frames: list[Frame] = []
    start = 0
    for cut in [*cuts, len(data)]:
        frames.extend(reader.feed(data[start:cut]))
        start = cut
    frames.extend(reader.flush())
    return frames


def test_split_frames_keeps_only_data_lines() -> None:
    frames = split_frames(STREAM)

    assert _payloads(frames) == [
        '{"type":"start"}',
        '{"type":"content","content":"héllo wörld ✓"}',
        '{"type":"end"}',
        DONE_SENTINEL,
    ]
    assert [frame.is_done for frame in frames] == [False, False, False, True]


def test_every_single_cut_yields_identical_frames() -> None:
    expected = split_frames(STREAM)

    for cut in range(1, len(STREAM)):
        assert _feed_in_chunks(STREAM, [cut]) == expected


def test_byte_by_byte_feed_matches_one_shot_split() -> None:
    assert _feed_in_chunks(STREAM, list(range(1, len(STREAM)))) == split_frames(STREAM)


def test_partial_line_is_held_until_newline() -> None:
    reader = FrameReader()

    assert reader.feed(b'data: {"type":') == []
    assert _payloads(reader.feed(b'"end"}\n')) == ['{"type":"end"}']


def test_flush_emits_trailing_line_without_newline() -> None:
    reader = FrameReader()

    assert reader.feed(b'data: {"type":"end"}') == []
    assert _payloads(reader.flush()) == ['{"type":"end"}']
    assert reader.flush() == []


def test_invalid_utf8_is_replaced_not_dropped() -> None:
    frames = split_frames(b"data: caf\xff\n")

    assert _payloads(frames) == ["caf\ufffd"]


@pytest.mark.asyncio
async def test_iter_frames_reads_async_chunks() -> None:
    async def chunks():
        yield b'data: {"type":"st'
        yield b'art"}\ndata: [DO'
        yield b"NE]\n"

    frames = [frame async for frame in FrameReader().iter_frames(chunks())]

    assert _payloads(frames) == ['{"type":"start"}', DONE_SENTINEL]
    assert frames[-1].is_done is True
