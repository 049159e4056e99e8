"""Short-lived execution status cache with per-thread request coalescing."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.execution import ExecutionStatus

logger = get_logger(__name__)

SWEEP_TTL_MULTIPLIER = 5


@dataclass(frozen=True)
class CachedStatus:
    status: ExecutionStatus
    fetched_at: float


class StatusCache:
    """Per-thread status snapshots kept for `ttl_seconds`.

    Concurrent misses for one thread share a single fetch. A write never
    replaces an entry fetched later than itself, and a fetch started before
    `invalidate` never writes at all.
    """

    def __init__(self, *, ttl_seconds: float = 2.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedStatus] = {}
        self._inflight: dict[str, asyncio.Task[ExecutionStatus]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def fresh(self, thread_id: str) -> ExecutionStatus | None:
        entry = self._entries.get(thread_id)
        if entry is None:
            return None
        age = self._clock() - entry.fetched_at
        if age >= self.ttl_seconds:
            return None
        logger.debug("status_cache.hit thread_id=%s age=%.3f", thread_id, age)
        return entry.status

    def store(self, thread_id: str, status: ExecutionStatus, *, fetched_at: float) -> bool:
        current = self._entries.get(thread_id)
        if current is not None and current.fetched_at > fetched_at:
            logger.debug("status_cache.stale_write_skipped thread_id=%s", thread_id)
            return False
        self._entries[thread_id] = CachedStatus(status=status, fetched_at=fetched_at)
        return True

    async def get_or_fetch(
        self,
        thread_id: str,
        fetch: Callable[[], Awaitable[ExecutionStatus]],
    ) -> ExecutionStatus:
        cached = self.fresh(thread_id)
        if cached is not None:
            return cached
        task = self._inflight.get(thread_id)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(thread_id, fetch))
            self._inflight[thread_id] = task
        else:
            logger.debug("status_cache.coalesced thread_id=%s", thread_id)
        return await asyncio.shield(task)

    async def _fetch_and_store(
        self,
        thread_id: str,
        fetch: Callable[[], Awaitable[ExecutionStatus]],
    ) -> ExecutionStatus:
        try:
            status = await fetch()
            # A fetch detached by invalidate() still answers its callers but never lands in the cache.
            if self._inflight.get(thread_id) is asyncio.current_task():
                self.store(thread_id, status, fetched_at=self._clock())
            else:
                logger.debug("status_cache.detached_fetch_skipped thread_id=%s", thread_id)
            return status
        finally:
            if self._inflight.get(thread_id) is asyncio.current_task():
                self._inflight.pop(thread_id, None)

    def invalidate(self, thread_id: str) -> None:
        """Drop the snapshot and detach any fetch already in flight."""
        self._entries.pop(thread_id, None)
        self._inflight.pop(thread_id, None)

    def sweep(self) -> int:
        """Evict entries older than five cache windows."""
        threshold = self.ttl_seconds * SWEEP_TTL_MULTIPLIER
        now = self._clock()
        stale = [
            thread_id
            for thread_id, entry in self._entries.items()
            if now - entry.fetched_at > threshold
        ]
        for thread_id in stale:
            del self._entries[thread_id]
        if stale:
            logger.debug("status_cache.swept count=%s", len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()
