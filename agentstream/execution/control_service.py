"""HIL execution control: REST calls, resume stream and status monitoring."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from agentstream.core.config import Settings
from agentstream.execution.resume_stream import ResumeStreamReader
from agentstream.execution.status_cache import StatusCache
from agentstream.infra.observability.logger import get_logger
from agentstream.protocol.agui import (
    HILCheckpoint,
    HILCheckpointCreatedEvent,
    HILInterrupt,
    HILInterruptDetectedEvent,
)
from agentstream.protocol.callbacks import HILEventCallbacks, ResumeStreamCallbacks, safe_invoke
from agentstream.protocol.execution import (
    ExecutionCheckpoint,
    ExecutionHealth,
    ExecutionHistory,
    ExecutionStatus,
    InterruptInfo,
    ResumeRequest,
    ResumeResult,
    RollbackResult,
    interrupt_title,
    to_hil_status,
)

logger = get_logger(__name__)

_Model = TypeVar("_Model", bound=BaseModel)
Sleep = Callable[[float], Awaitable[None]]

ROLLBACK_HANDLED_STATUSES = frozenset({404, 409, 422})
_STOP_STATUSES = frozenset({"completed", "error"})


class ExecutionControlError(RuntimeError):
    """Transport or protocol failure talking to the control plane."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamConflictError(ExecutionControlError):
    """A resume stream was requested while the thread's primary stream is open."""


@dataclass
class _MonitorState:
    idle_polls: int = 0
    checkpoints: int | None = None


class ExecutionControlService:
    """Client for the execution-control plane.

    Monitors run as one asyncio task per thread. ``clock`` and ``sleep`` are
    injectable so the poll schedule can be driven deterministically.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settings = settings or Settings()
        self._sleep = sleep
        self._cache = StatusCache(ttl_seconds=self._settings.status_cache_seconds, clock=clock)
        self._monitors: dict[str, asyncio.Task[None]] = {}
        self._monitor_tokens: dict[str, object] = {}
        self._primary_streams: dict[str, int] = {}
        self._sweeper: asyncio.Task[None] | None = None

    # Primary stream bookkeeping

    def primary_stream_opened(self, thread_id: str) -> None:
        self._primary_streams[thread_id] = self._primary_streams.get(thread_id, 0) + 1

    def primary_stream_closed(self, thread_id: str) -> None:
        """Release one open stream; the thread stays blocked while another is still read."""
        remaining = self._primary_streams.get(thread_id, 0) - 1
        if remaining > 0:
            self._primary_streams[thread_id] = remaining
        else:
            self._primary_streams.pop(thread_id, None)

    def is_primary_stream_open(self, thread_id: str) -> bool:
        return thread_id in self._primary_streams

    # REST surface

    async def get_health(self) -> ExecutionHealth:
        response = await self._request("GET", "/api/execution/health", action="Health check")
        health = _decode(response, ExecutionHealth, action="Health check")
        logger.info("execution.health status=%s service=%s", health.status, health.service)
        return health

    async def is_service_available(self) -> bool:
        try:
            await self.get_health()
        except ExecutionControlError:
            return False
        return True

    async def get_execution_status(self, thread_id: str) -> ExecutionStatus:
        """Return the thread's status, reusing a snapshot younger than the cache window."""
        return await self._cache.get_or_fetch(thread_id, lambda: self._fetch_status(thread_id))

    async def _fetch_status(self, thread_id: str) -> ExecutionStatus:
        response = await self._request("GET", f"/api/execution/status/{thread_id}", action="Status check")
        status = _decode(response, ExecutionStatus, action="Status check", defaults={"thread_id": thread_id})
        logger.debug("execution.status thread_id=%s status=%s", thread_id, status.status)
        return status

    async def get_execution_history(self, thread_id: str, limit: int = 50) -> ExecutionHistory:
        response = await self._request(
            "GET",
            f"/api/execution/history/{thread_id}",
            action="History retrieval",
            params={"limit": limit},
        )
        history = _decode(response, ExecutionHistory, action="History retrieval", defaults={"thread_id": thread_id})
        logger.debug("execution.history thread_id=%s total=%s", thread_id, history.total)
        return history

    async def get_latest_checkpoint(self, thread_id: str) -> ExecutionCheckpoint | None:
        try:
            history = await self.get_execution_history(thread_id, limit=1)
        except ExecutionControlError as exc:
            logger.warning("execution.latest_checkpoint_unavailable thread_id=%s error=%s", thread_id, exc)
            return None
        return history.history[0] if history.history else None

    async def rollback_to_checkpoint(self, thread_id: str, checkpoint_id: str) -> RollbackResult:
        response = await self._request(
            "POST",
            f"/api/execution/rollback/{thread_id}",
            action="Rollback",
            params={"checkpoint_id": checkpoint_id},
            handled_statuses=ROLLBACK_HANDLED_STATUSES,
        )
        if response.status_code in ROLLBACK_HANDLED_STATUSES:
            message = _error_detail(response)
            logger.warning(
                "execution.rollback_rejected thread_id=%s checkpoint_id=%s status=%s",
                thread_id,
                checkpoint_id,
                response.status_code,
            )
            return RollbackResult(thread_id=thread_id, success=False, checkpoint_id=checkpoint_id, message=message)

        result = _decode(
            response,
            RollbackResult,
            action="Rollback",
            defaults={"thread_id": thread_id, "checkpoint_id": checkpoint_id},
        )
        self._cache.invalidate(thread_id)
        logger.info(
            "execution.rollback thread_id=%s checkpoint_id=%s success=%s",
            thread_id,
            checkpoint_id,
            result.success,
        )
        return result

    async def resume_execution(
        self,
        request: ResumeRequest,
        callbacks: HILEventCallbacks | None = None,
    ) -> ResumeResult:
        logger.info("execution.resume thread_id=%s action=%s", request.thread_id, request.action)
        response = await self._request(
            "POST",
            "/api/execution/resume",
            action="Resume execution",
            json_body=request.model_dump(exclude_none=True),
        )
        result = _decode(response, ResumeResult, action="Resume execution", defaults={"thread_id": request.thread_id})
        self._cache.invalidate(request.thread_id)
        logger.info("execution.resumed thread_id=%s success=%s", request.thread_id, result.success)
        if callbacks is not None:
            safe_invoke(callbacks.on_execution_resumed, result, label="on_execution_resumed")
        return result

    async def resume_execution_stream(self, request: ResumeRequest, callbacks: ResumeStreamCallbacks) -> None:
        """Resume over a dedicated stream; failures are delivered to ``on_error``."""
        thread_id = request.thread_id
        if thread_id in self._primary_streams:
            conflict = StreamConflictError(f"Primary stream for thread {thread_id} is still open")
            logger.warning("execution.resume_stream_conflict thread_id=%s", thread_id)
            safe_invoke(callbacks.on_error, conflict, label="on_error")
            return

        logger.info("execution.resume_stream thread_id=%s action=%s", thread_id, request.action)
        reader = ResumeStreamReader(callbacks)
        try:
            async with self._client.stream(
                "POST",
                "/api/execution/resume-stream",
                json=request.model_dump(exclude_none=True),
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ExecutionControlError(
                        f"Resume stream failed: {response.status_code} {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                await reader.consume(response.aiter_bytes())
        except httpx.HTTPError as exc:
            logger.error("execution.resume_stream_failed thread_id=%s error=%s", thread_id, exc)
            safe_invoke(callbacks.on_error, ExecutionControlError(f"Resume stream failed: {exc}"), label="on_error")
        except ExecutionControlError as exc:
            logger.error("execution.resume_stream_failed thread_id=%s error=%s", thread_id, exc)
            safe_invoke(callbacks.on_error, exc, label="on_error")
        else:
            logger.info("execution.resume_stream_closed thread_id=%s frames=%s", thread_id, reader.frames_seen)
        finally:
            self._cache.invalidate(thread_id)

    # Monitoring

    async def monitor_execution(
        self,
        thread_id: str,
        callbacks: HILEventCallbacks,
        poll_interval: float | None = None,
    ) -> None:
        """Poll the thread's status until it is interrupted, finished or fails.

        The first poll runs before this returns; later polls run on a
        background task that replaces any monitor already running for the
        thread.
        """
        self.stop_monitoring(thread_id)
        token = object()
        self._monitor_tokens[thread_id] = token
        interval = poll_interval or self._settings.poll_interval_seconds
        logger.debug("execution.monitor_start thread_id=%s interval=%s", thread_id, interval)

        state = _MonitorState()
        if not await self._poll_once(thread_id, callbacks, state):
            self._release_token(thread_id, token)
            return
        if self._monitor_tokens.get(thread_id) is not token:
            # Another monitor for this thread started while the first poll was in flight.
            return
        self._monitors[thread_id] = asyncio.create_task(
            self._poll_loop(thread_id, callbacks, interval, state, token),
            name=f"hil-monitor-{thread_id}",
        )

    async def _poll_loop(
        self,
        thread_id: str,
        callbacks: HILEventCallbacks,
        interval: float,
        state: _MonitorState,
        token: object,
    ) -> None:
        try:
            while True:
                if state.idle_polls >= self._settings.max_idle_polls:
                    delay = self._settings.idle_poll_interval_seconds
                else:
                    delay = interval
                await self._sleep(delay)
                if not await self._poll_once(thread_id, callbacks, state):
                    break
        finally:
            if self._monitor_tokens.get(thread_id) is token:
                self._monitors.pop(thread_id, None)
                self._monitor_tokens.pop(thread_id, None)

    async def _poll_once(self, thread_id: str, callbacks: HILEventCallbacks, state: _MonitorState) -> bool:
        """Run one tick; return whether polling should continue."""
        try:
            status = await self.get_execution_status(thread_id)
        except ExecutionControlError as exc:
            logger.error("execution.monitor_failed thread_id=%s error=%s", thread_id, exc)
            safe_invoke(callbacks.on_error, exc, label="on_error")
            return False

        safe_invoke(callbacks.on_status_changed, to_hil_status(status), label="on_status_changed")
        await self._report_new_checkpoint(thread_id, status, callbacks, state)

        if status.status == "interrupted":
            state.idle_polls = 0
            for item in status.interrupts:
                safe_invoke(
                    callbacks.on_interrupt_detected,
                    self._interrupt_event(thread_id, item),
                    label="on_interrupt_detected",
                )
            logger.info(
                "execution.monitor_interrupted thread_id=%s interrupts=%s",
                thread_id,
                len(status.interrupts),
            )
            return False
        if status.status in _STOP_STATUSES:
            logger.info("execution.monitor_end thread_id=%s status=%s", thread_id, status.status)
            return False
        if status.status == "running":
            state.idle_polls = 0
            return True
        if status.status != "ready":
            logger.warning("execution.unknown_status thread_id=%s status=%s", thread_id, status.status)
        state.idle_polls += 1
        return True

    async def _report_new_checkpoint(
        self,
        thread_id: str,
        status: ExecutionStatus,
        callbacks: HILEventCallbacks,
        state: _MonitorState,
    ) -> None:
        previous, state.checkpoints = state.checkpoints, status.checkpoints
        if callbacks.on_checkpoint_created is None or previous is None or status.checkpoints <= previous:
            return
        latest = await self.get_latest_checkpoint(thread_id)
        if latest is None:
            return
        event = HILCheckpointCreatedEvent(
            thread_id=thread_id,
            checkpoint=HILCheckpoint(id=latest.checkpoint, node=latest.node, state_summary=latest.state_summary),
        )
        safe_invoke(callbacks.on_checkpoint_created, event, label="on_checkpoint_created")

    def _interrupt_event(self, thread_id: str, item: InterruptInfo) -> HILInterruptDetectedEvent:
        return HILInterruptDetectedEvent(
            thread_id=thread_id,
            interrupt=HILInterrupt(
                id=item.id,
                interrupt_type=item.type,
                title=interrupt_title(item.type),
                message=item.reason or "Human intervention required",
                priority="medium",
                data=item.data,
                timeout_ms=self._settings.interrupt_timeout_ms,
            ),
        )

    def _release_token(self, thread_id: str, token: object) -> None:
        if self._monitor_tokens.get(thread_id) is token:
            self._monitor_tokens.pop(thread_id, None)

    def stop_monitoring(self, thread_id: str) -> None:
        self._monitor_tokens.pop(thread_id, None)
        task = self._monitors.pop(thread_id, None)
        if task is None:
            return
        if not task.done():
            task.cancel()
        logger.debug("execution.monitor_stopped thread_id=%s remaining=%s", thread_id, len(self._monitors))

    def stop_all_monitoring(self) -> None:
        stopped = len(self._monitors)
        for task in self._monitors.values():
            if not task.done():
                task.cancel()
        self._monitors.clear()
        self._monitor_tokens.clear()
        self._cache.clear()
        logger.info("execution.monitor_stopped_all stopped=%s", stopped)

    def get_active_monitoring_stats(self) -> dict[str, int]:
        return {"active_pollers": len(self._monitors), "cached_statuses": len(self._cache)}

    # Cache housekeeping

    def cleanup_cache(self) -> int:
        return self._cache.sweep()

    def start_cache_sweeper(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="hil-status-cache-sweeper")

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self._settings.cache_sweep_interval_seconds)
            self.cleanup_cache()

    async def aclose(self) -> None:
        """Stop every background task owned by the service."""
        pending = [task for task in self._monitors.values() if not task.done()]
        self.stop_all_monitoring()
        if self._sweeper is not None:
            self._sweeper.cancel()
            pending.append(self._sweeper)
            self._sweeper = None
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        handled_statuses: frozenset[int] = frozenset(),
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as exc:
            logger.error("execution.request_failed action=%s path=%s error=%s", action, path, exc)
            raise ExecutionControlError(f"{action} failed: {exc}") from exc
        if response.status_code >= 400 and response.status_code not in handled_statuses:
            logger.error(
                "execution.request_rejected action=%s path=%s status=%s",
                action,
                path,
                response.status_code,
            )
            raise ExecutionControlError(
                f"{action} failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response


def _decode(
    response: httpx.Response,
    model: type[_Model],
    *,
    action: str,
    defaults: dict[str, Any] | None = None,
) -> _Model:
    try:
        payload = response.json()
    except json.JSONDecodeError as exc:
        raise ExecutionControlError(f"{action} failed: invalid JSON body", status_code=response.status_code) from exc
    if isinstance(payload, dict) and defaults:
        payload = {**payload, **{key: value for key, value in defaults.items() if payload.get(key) is None}}
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ExecutionControlError(
            f"{action} failed: unexpected response shape ({exc.error_count()} errors)",
            status_code=response.status_code,
        ) from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except json.JSONDecodeError:
        return response.text or response.reason_phrase
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("message")
        if detail:
            return str(detail)
    return response.reason_phrase
