"""Unit tests for the execution status cache."""

from __future__ import annotations

import asyncio

import pytest

from agentstream.execution.status_cache import StatusCache
from agentstream.protocol.execution import ExecutionStatus
from agentstream.tests.conftest import FakeClock


def _status(value: str) -> ExecutionStatus:
    return ExecutionStatus(thread_id="t-1", status=value)


@pytest.mark.asyncio
async def test_fresh_entry_is_reused_until_window_expires(fake_clock: FakeClock) -> None:
    cache = StatusCache(ttl_seconds=2.0, clock=fake_clock)
    fetches: list[str] = []

    async def fetch() -> ExecutionStatus:
        fetches.append("t-1")
        return _status("running")

    await cache.get_or_fetch("t-1", fetch)
    fake_clock.advance(1.9)
    await cache.get_or_fetch("t-1", fetch)
    fake_clock.advance(0.1)
    await cache.get_or_fetch("t-1", fetch)

    assert len(fetches) == 2


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_fetch(fake_clock: FakeClock) -> None:
    cache = StatusCache(ttl_seconds=2.0, clock=fake_clock)
    release = asyncio.Event()
    fetches = 0

    async def fetch() -> ExecutionStatus:
        nonlocal fetches
        fetches += 1
        await release.wait()
        return _status("ready")

    waiters = [asyncio.ensure_future(cache.get_or_fetch("t-1", fetch)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert fetches == 1
    assert {result.status for result in results} == {"ready"}
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_failed_fetch_propagates_and_is_not_cached(fake_clock: FakeClock) -> None:
    cache = StatusCache(clock=fake_clock)

    async def fetch() -> ExecutionStatus:
        raise RuntimeError("network down")

    with pytest.raises(RuntimeError, match="network down"):
        await cache.get_or_fetch("t-1", fetch)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_fetch_in_flight_during_invalidate_is_not_cached_or_joined(fake_clock: FakeClock) -> None:
    cache = StatusCache(ttl_seconds=2.0, clock=fake_clock)
    release = asyncio.Event()
    answers = iter(["running", "interrupted"])
    fetches = 0

    async def fetch() -> ExecutionStatus:
        nonlocal fetches
        fetches += 1
        value = next(answers)
        await release.wait()
        return _status(value)

    before = asyncio.ensure_future(cache.get_or_fetch("t-1", fetch))
    await asyncio.sleep(0)
    cache.invalidate("t-1")
    after = asyncio.ensure_future(cache.get_or_fetch("t-1", fetch))
    await asyncio.sleep(0)
    release.set()

    assert (await before).status == "running"
    assert (await after).status == "interrupted"
    assert fetches == 2
    fresh = cache.fresh("t-1")
    assert fresh is not None
    assert fresh.status == "interrupted"


@pytest.mark.asyncio
async def test_invalidated_fetch_leaves_cache_empty(fake_clock: FakeClock) -> None:
    cache = StatusCache(ttl_seconds=2.0, clock=fake_clock)
    release = asyncio.Event()

    async def fetch() -> ExecutionStatus:
        await release.wait()
        return _status("running")

    pending = asyncio.ensure_future(cache.get_or_fetch("t-1", fetch))
    await asyncio.sleep(0)
    cache.invalidate("t-1")
    release.set()

    assert (await pending).status == "running"
    assert len(cache) == 0


def test_stale_write_never_replaces_fresher_entry() -> None:
    cache = StatusCache()

    assert cache.store("t-1", _status("running"), fetched_at=10.0) is True
    assert cache.store("t-1", _status("ready"), fetched_at=9.0) is False
    assert cache.store("t-1", _status("completed"), fetched_at=11.0) is True


def test_sweep_evicts_entries_older_than_five_windows(fake_clock: FakeClock) -> None:
    cache = StatusCache(ttl_seconds=2.0, clock=fake_clock)
    cache.store("old", _status("ready"), fetched_at=fake_clock.now - 10.5)
    cache.store("recent", _status("ready"), fetched_at=fake_clock.now - 9.0)

    assert cache.sweep() == 1
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0
