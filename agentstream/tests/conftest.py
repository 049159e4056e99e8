"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

import asyncio
from dataclasses import fields
from typing import Any, TypeVar

import pytest

from agentstream.events.sse_parser import SSEParser
from agentstream.events.status_labels import StatusLabelCatalog

_CallbackSet = TypeVar("_CallbackSet")


class CallbackRecorder:
    """Record every callback invocation as `(name, args)` in arrival order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def hook(self, name: str):
        def _record(*args: Any) -> None:
            self.calls.append((name, args))

        return _record

    def build(self, callback_cls: type[_CallbackSet]) -> _CallbackSet:
        return callback_cls(**{item.name: self.hook(item.name) for item in fields(callback_cls)})

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def args_of(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call_name, args in self.calls if call_name == name]

    def first(self, name: str) -> Any:
        return self.args_of(name)[0][0]


class FakeClock:
    """Monotonic clock whose `sleep` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def labels() -> StatusLabelCatalog:
    return StatusLabelCatalog.from_file()


@pytest.fixture
def parser(labels: StatusLabelCatalog) -> SSEParser:
    return SSEParser(labels=labels)
