"""Integration tests for HIL execution control against an in-process control plane."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest

from agentstream.core.config import Settings
from agentstream.execution.control_service import ExecutionControlError, ExecutionControlService, StreamConflictError
from agentstream.infra.http.client import HttpClientConfig, build_async_client
from agentstream.protocol.callbacks import HILEventCallbacks, ResumeStreamCallbacks
from agentstream.protocol.execution import ResumeData, ResumeRequest
from agentstream.tests.conftest import CallbackRecorder, FakeClock
from agentstream.tests.integration.fake_control_plane import API_KEY, ControlPlaneState, control_plane_transport


@asynccontextmanager
async def _service(
    state: ControlPlaneState,
    clock: FakeClock,
    *,
    api_key: str = API_KEY,
) -> AsyncIterator[ExecutionControlService]:
    config = HttpClientConfig(base_url="http://hil.test", api_key=api_key)
    async with build_async_client(config, transport=control_plane_transport(state)) as client:
        service = ExecutionControlService(client, Settings(), clock=clock, sleep=clock.sleep)
        try:
            yield service
        finally:
            await service.aclose()


async def _wait_for_monitors(service: ExecutionControlService, timeout: float = 5.0) -> None:
    async def _idle() -> None:
        while service.get_active_monitoring_stats()["active_pollers"]:
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_idle(), timeout)


@pytest.mark.asyncio
async def test_health_and_service_availability(fake_clock: FakeClock) -> None:
    state = ControlPlaneState()
    async with _service(state, fake_clock) as service:
        health = await service.get_health()
        assert health.status == "healthy"
        assert health.features.human_in_loop is True
        assert health.graph_info.nodes == 5
        assert await service.is_service_available() is True

        state.healthy = False
        assert await service.is_service_available() is False


@pytest.mark.asyncio
async def test_status_requests_are_cached_for_two_seconds(fake_clock: FakeClock) -> None:
    state = ControlPlaneState(statuses={"t-1": [{"status": "running", "current_node": "reason_model"}]})
    async with _service(state, fake_clock) as service:
        first = await service.get_execution_status("t-1")
        fake_clock.advance(1.5)
        await service.get_execution_status("t-1")
        assert state.status_requests["t-1"] == 1

        fake_clock.advance(0.5)
        await service.get_execution_status("t-1")
        assert state.status_requests["t-1"] == 2

    assert first.durable is True
    assert first.interrupts == []


@pytest.mark.asyncio
async def test_concurrent_status_calls_issue_one_request(fake_clock: FakeClock) -> None:
    state = ControlPlaneState(statuses={"t-1": [{"status": "ready"}]})
    async with _service(state, fake_clock) as service:
        results = await asyncio.gather(*(service.get_execution_status("t-1") for _ in range(4)))

    assert state.status_requests["t-1"] == 1
    assert {result.status for result in results} == {"ready"}


@pytest.mark.asyncio
async def test_idle_polls_back_off_and_activity_resets_interval(fake_clock: FakeClock, recorder: CallbackRecorder) -> None:
    script = [{"status": "ready"}] * 4 + [{"status": "running"}, {"status": "ready"}, {"status": "completed"}]
    state = ControlPlaneState(statuses={"t-1": list(script)})
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("t-1", recorder.build(HILEventCallbacks))
        await _wait_for_monitors(service)

    assert fake_clock.sleeps == [3.0, 3.0, 10.0, 10.0, 3.0, 3.0]
    assert state.status_requests["t-1"] == 7
    assert [args[0].status for args in recorder.args_of("on_status_changed")] == [
        "ready",
        "ready",
        "ready",
        "ready",
        "running",
        "ready",
        "completed",
    ]


@pytest.mark.asyncio
async def test_interrupted_status_reports_each_interrupt_and_stops(
    fake_clock: FakeClock,
    recorder: CallbackRecorder,
) -> None:
    interrupted = {
        "status": "interrupted",
        "current_node": "call_tool",
        "interrupts": [
            {"id": "int-1", "type": "tool_authorization", "timestamp": "t", "data": {"tool": "deploy"}, "reason": "Deploy?"},
            {"id": "int-2", "type": "approval", "timestamp": "t", "data": None},
        ],
        "checkpoints": 3,
    }
    state = ControlPlaneState(statuses={"t-1": [{"status": "running"}, interrupted]})
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("t-1", recorder.build(HILEventCallbacks), poll_interval=3.0)
        await _wait_for_monitors(service)

    assert fake_clock.sleeps == [3.0]
    assert state.status_requests["t-1"] == 2
    events = [args[0] for args in recorder.args_of("on_interrupt_detected")]
    assert [event.interrupt.id for event in events] == ["int-1", "int-2"]
    first = events[0].interrupt
    assert first.title == "HIL tool authorization"
    assert first.message == "Deploy?"
    assert first.priority == "medium"
    assert first.timeout_ms == 300000
    assert events[1].interrupt.message == "Human intervention required"


@pytest.mark.asyncio
async def test_null_and_numeric_status_fields_keep_monitor_running(
    fake_clock: FakeClock,
    recorder: CallbackRecorder,
) -> None:
    script = [
        {"status": "ready", "current_node": None, "checkpoints": None},
        {
            "status": "interrupted",
            "current_node": None,
            "interrupts": [{"id": 7, "type": None, "timestamp": 1700000000, "reason": None}],
        },
    ]
    state = ControlPlaneState(statuses={"t-1": script})
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("t-1", recorder.build(HILEventCallbacks))
        await _wait_for_monitors(service)

    assert "on_error" not in recorder.names()
    assert fake_clock.sleeps == [3.0]
    statuses = [args[0] for args in recorder.args_of("on_status_changed")]
    assert [(item.status, item.current_node) for item in statuses] == [("ready", ""), ("interrupted", "")]
    assert statuses[1].interrupts[0].timestamp == "1700000000"
    interrupt = recorder.first("on_interrupt_detected").interrupt
    assert (interrupt.id, interrupt.interrupt_type) == ("7", "approval")


@pytest.mark.asyncio
async def test_fetch_error_reports_and_stops_without_scheduling(fake_clock: FakeClock, recorder: CallbackRecorder) -> None:
    state = ControlPlaneState()
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("missing", recorder.build(HILEventCallbacks))

        assert service.get_active_monitoring_stats()["active_pollers"] == 0

    assert recorder.names() == ["on_error"]
    error = recorder.first("on_error")
    assert isinstance(error, ExecutionControlError)
    assert error.status_code == 500
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_restarting_monitor_replaces_previous_one(fake_clock: FakeClock) -> None:
    state = ControlPlaneState(statuses={"t-1": [{"status": "running"}]})
    first = CallbackRecorder()
    second = CallbackRecorder()
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("t-1", first.build(HILEventCallbacks))
        await asyncio.sleep(0.02)
        await service.monitor_execution("t-1", second.build(HILEventCallbacks))
        ticks_before = len(first.calls)
        await asyncio.sleep(0.02)

        assert service.get_active_monitoring_stats()["active_pollers"] == 1
        assert len(first.calls) == ticks_before
        assert len(second.calls) > 1

        service.stop_all_monitoring()
        assert service.get_active_monitoring_stats() == {"active_pollers": 0, "cached_statuses": 0}


@pytest.mark.asyncio
async def test_new_checkpoint_is_reported_while_monitoring(fake_clock: FakeClock, recorder: CallbackRecorder) -> None:
    state = ControlPlaneState(
        statuses={
            "t-1": [
                {"status": "running", "checkpoints": 1},
                {"status": "running", "checkpoints": 2},
                {"status": "completed", "checkpoints": 2},
            ]
        },
        history={"t-1": [{"checkpoint": "cp-2", "node": "call_tool", "timestamp": "t", "state_summary": "after tool"}]},
    )
    async with _service(state, fake_clock) as service:
        await service.monitor_execution("t-1", recorder.build(HILEventCallbacks))
        await _wait_for_monitors(service)

    events = [args[0] for args in recorder.args_of("on_checkpoint_created")]
    assert [(event.checkpoint.id, event.checkpoint.node) for event in events] == [("cp-2", "call_tool")]


@pytest.mark.asyncio
async def test_history_and_latest_checkpoint(fake_clock: FakeClock) -> None:
    checkpoints = [
        {"checkpoint": f"cp-{index}", "node": "n", "timestamp": "t", "state_summary": "s"} for index in range(3)
    ]
    state = ControlPlaneState(history={"t-1": checkpoints})
    async with _service(state, fake_clock) as service:
        history = await service.get_execution_history("t-1", limit=2)
        latest = await service.get_latest_checkpoint("t-1")
        empty = await service.get_latest_checkpoint("t-2")

    assert [item.checkpoint for item in history.history] == ["cp-0", "cp-1"]
    assert (history.total, history.limit) == (3, 2)
    assert latest is not None and latest.checkpoint == "cp-0"
    assert empty is None


@pytest.mark.asyncio
async def test_rollback_handled_and_unhandled_failures(fake_clock: FakeClock) -> None:
    state = ControlPlaneState(checkpoints={"cp-1"})
    async with _service(state, fake_clock) as service:
        ok = await service.rollback_to_checkpoint("t-1", "cp-1")
        missing = await service.rollback_to_checkpoint("t-1", "cp-404")
        with pytest.raises(ExecutionControlError) as excinfo:
            await service.rollback_to_checkpoint("t-1", "explode")

    assert ok.success is True
    assert ok.restored_state is not None and ok.restored_state.node == "call_tool"
    assert missing.success is False
    assert missing.checkpoint_id == "cp-404"
    assert missing.message == "Checkpoint cp-404 not found"
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_resume_execution_posts_request_and_invalidates_status(
    fake_clock: FakeClock,
    recorder: CallbackRecorder,
) -> None:
    state = ControlPlaneState(statuses={"t-1": [{"status": "interrupted"}, {"status": "running"}]})
    request = ResumeRequest(thread_id="t-1", action="continue", resume_data=ResumeData(approved=True, reviewer="ops"))
    async with _service(state, fake_clock) as service:
        await service.get_execution_status("t-1")
        result = await service.resume_execution(request, recorder.build(HILEventCallbacks))
        after = await service.get_execution_status("t-1")

    assert state.resume_requests == [
        {"thread_id": "t-1", "action": "continue", "resume_data": {"approved": True, "reviewer": "ops"}}
    ]
    assert result.success is True
    assert result.next_step == "format_response"
    assert recorder.first("on_execution_resumed") == result
    assert after.status == "running"
    assert state.status_requests["t-1"] == 2


@pytest.mark.asyncio
async def test_resume_stream_dispatches_four_event_types(fake_clock: FakeClock, recorder: CallbackRecorder) -> None:
    state = ControlPlaneState(
        resume_frames=[
            {"type": "resume_start", "content": "Resuming", "timestamp": "t0"},
            {"type": "graph_update", "content": "tool ran", "node": "call_tool"},
            {"type": "custom_event", "metadata": {}},
            {"type": "message_stream", "content": {"raw_message": "content='ok'"}},
            {"type": "resume_end", "content": "Done", "timestamp": "t1"},
            "[DONE]",
        ]
    )
    async with _service(state, fake_clock) as service:
        await service.resume_execution_stream(
            ResumeRequest(thread_id="t-1", action="skip"),
            recorder.build(ResumeStreamCallbacks),
        )

    assert recorder.names() == ["on_resume_start", "on_graph_update", "on_message_stream", "on_resume_end"]
    assert state.stream_requests == [{"thread_id": "t-1", "action": "skip"}]


@pytest.mark.asyncio
async def test_resume_stream_rejected_while_primary_stream_open(
    fake_clock: FakeClock,
    recorder: CallbackRecorder,
) -> None:
    state = ControlPlaneState(resume_frames=[{"type": "resume_end", "content": "Done"}])
    request = ResumeRequest(thread_id="t-1")
    async with _service(state, fake_clock) as service:
        service.primary_stream_opened("t-1")
        await service.resume_execution_stream(request, recorder.build(ResumeStreamCallbacks))
        assert state.stream_requests == []

        service.primary_stream_closed("t-1")
        await service.resume_execution_stream(request, recorder.build(ResumeStreamCallbacks))

    assert recorder.names() == ["on_error", "on_resume_end"]
    assert isinstance(recorder.first("on_error"), StreamConflictError)
    assert len(state.stream_requests) == 1


@pytest.mark.asyncio
async def test_overlapping_primary_streams_block_resume_until_last_closes(
    fake_clock: FakeClock,
    recorder: CallbackRecorder,
) -> None:
    state = ControlPlaneState(resume_frames=[{"type": "resume_end", "content": "Done"}])
    request = ResumeRequest(thread_id="t-1")
    async with _service(state, fake_clock) as service:
        service.primary_stream_opened("t-1")
        service.primary_stream_opened("t-1")
        service.primary_stream_closed("t-1")

        assert service.is_primary_stream_open("t-1") is True
        await service.resume_execution_stream(request, recorder.build(ResumeStreamCallbacks))
        assert state.stream_requests == []

        service.primary_stream_closed("t-1")
        service.primary_stream_closed("t-1")
        assert service.is_primary_stream_open("t-1") is False
        await service.resume_execution_stream(request, recorder.build(ResumeStreamCallbacks))

    assert recorder.names() == ["on_error", "on_resume_end"]
    assert isinstance(recorder.first("on_error"), StreamConflictError)
    assert len(state.stream_requests) == 1


@pytest.mark.asyncio
async def test_resume_stream_http_failure_goes_to_on_error(fake_clock: FakeClock, recorder: CallbackRecorder) -> None:
    async with _service(ControlPlaneState(), fake_clock, api_key="wrong") as service:
        await service.resume_execution_stream(ResumeRequest(thread_id="t-1"), recorder.build(ResumeStreamCallbacks))

    assert recorder.names() == ["on_error"]
    error = recorder.first("on_error")
    assert isinstance(error, ExecutionControlError)
    assert error.status_code == 401


@pytest.mark.asyncio
async def test_cache_cleanup_and_background_sweeper(fake_clock: FakeClock) -> None:
    state = ControlPlaneState(statuses={"t-1": [{"status": "ready"}], "t-2": [{"status": "ready"}]})
    async with _service(state, fake_clock) as service:
        await service.get_execution_status("t-1")
        fake_clock.advance(11)
        await service.get_execution_status("t-2")

        assert service.cleanup_cache() == 1
        assert service.get_active_monitoring_stats()["cached_statuses"] == 1

        service.start_cache_sweeper()
        for _ in range(3):
            await asyncio.sleep(0)

        assert 60.0 in fake_clock.sleeps
        assert service.get_active_monitoring_stats()["cached_statuses"] == 0
