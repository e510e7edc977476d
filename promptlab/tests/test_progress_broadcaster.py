"""Tests for ProgressBroadcaster."""

import asyncio

import pytest

from promptlab.progress import ProgressBroadcaster, ProgressEvent, ProgressEventType


@pytest.fixture
def broadcaster():
    return ProgressBroadcaster()


class TestProgressEvent:
    def test_to_dict_camel_case_without_unset_fields(self):
        event = ProgressEvent(
            type=ProgressEventType.TASK_STATUS,
            job_id="job-1",
            workflow_id="wf",
            task_id="t1",
            task_name="Task",
            status="completed",
            result={"text": "hi"},
        )

        data = event.to_dict()

        assert data["type"] == "task_status"
        assert data["jobId"] == "job-1"
        assert data["workflowId"] == "wf"
        assert data["taskId"] == "t1"
        assert data["taskName"] == "Task"
        assert data["result"] == {"text": "hi"}
        assert isinstance(data["timestamp"], int)
        assert "error" not in data

    def test_terminal(self):
        assert ProgressEvent(type="workflow_failed", job_id="j", status="failed").is_terminal
        assert not ProgressEvent(type="task_status", job_id="j", status="active").is_terminal


class TestProgressBroadcaster:
    """Tests for subscription and delivery."""

    @pytest.mark.asyncio
    async def test_job_subscribers_only_get_their_job(self, broadcaster):
        first, second, everything = [], [], []
        broadcaster.subscribe("job-1", first.append)
        broadcaster.subscribe("job-2", second.append)
        broadcaster.subscribe_all(everything.append)

        await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_PROGRESS, "started")
        await broadcaster.broadcast("job-2", ProgressEventType.WORKFLOW_PROGRESS, "started")

        assert [event.job_id for event in first] == ["job-1"]
        assert [event.job_id for event in second] == ["job-2"]
        assert [event.job_id for event in everything] == ["job-1", "job-2"]

    @pytest.mark.asyncio
    async def test_async_callbacks(self, broadcaster):
        received = []

        async def callback(event):
            await asyncio.sleep(0)
            received.append(event.status)

        broadcaster.subscribe("job-1", callback)
        await broadcaster.broadcast("job-1", ProgressEventType.TASK_STATUS, "active", task_id="t1")

        assert received == ["active"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_delivery(self, broadcaster):
        received = []

        def broken(event):
            raise RuntimeError("socket closed")

        broadcaster.subscribe("job-1", broken)
        broadcaster.subscribe("job-1", received.append)

        event = await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_COMPLETE, "completed")

        assert received == [event]
        metrics = broadcaster.get_metrics()
        assert metrics["delivery_errors"] == 1
        assert metrics["last_error"] == "socket closed"
        assert metrics["events_sent"] == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, broadcaster):
        received = []
        token = broadcaster.subscribe("job-1", received.append)

        assert broadcaster.subscriber_count("job-1") == 1
        assert broadcaster.unsubscribe(token) is True
        assert broadcaster.unsubscribe(token) is False

        await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_PROGRESS, "started")
        assert received == []
        assert broadcaster.subscriber_count() == 0

    def test_subscriber_count(self, broadcaster):
        broadcaster.subscribe("job-1", print)
        broadcaster.subscribe("job-2", print)
        broadcaster.subscribe_all(print)

        assert broadcaster.subscriber_count() == 3
        assert broadcaster.subscriber_count("job-1") == 2
        assert broadcaster.get_metrics()["active_subscribers"] == 3

        broadcaster.clear_all()
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_ends_after_terminal_event(self, broadcaster):
        async def produce():
            await asyncio.sleep(0)
            await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_PROGRESS, "started")
            await broadcaster.broadcast("job-2", ProgressEventType.WORKFLOW_PROGRESS, "started")
            await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_FAILED, "failed", error="boom")
            await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_PROGRESS, "late")

        async def consume():
            return [event async for event in broadcaster.stream("job-1")]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await produce()
        events = await asyncio.wait_for(consumer, timeout=1)

        assert [event.status for event in events] == ["started", "failed"]
        assert events[-1].error == "boom"
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_keeps_events_sent_before_iteration(self, broadcaster):
        stream = broadcaster.stream("job-1")
        assert broadcaster.subscriber_count("job-1") == 1

        await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_PROGRESS, "started")
        await broadcaster.broadcast("job-1", ProgressEventType.WORKFLOW_COMPLETE, "completed")

        events = await asyncio.wait_for(_collect(stream), timeout=1)

        assert [event.status for event in events] == ["started", "completed"]
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_of_finished_job_yields_snapshot(self, broadcaster):
        finished = ProgressEvent(type=ProgressEventType.WORKFLOW_FAILED, job_id="job-1", status="failed", error="boom")

        async def snapshot():
            return finished

        events = await asyncio.wait_for(_collect(broadcaster.stream("job-1", snapshot)), timeout=1)

        assert events == [finished]
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_snapshot_error_unsubscribes(self, broadcaster):
        async def snapshot():
            raise KeyError("Unknown job job-1")

        stream = broadcaster.stream("job-1", snapshot)

        with pytest.raises(KeyError):
            await stream.__anext__()
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stream_context_manager_closes(self, broadcaster):
        async with broadcaster.stream("job-1"):
            assert broadcaster.subscriber_count("job-1") == 1

        assert broadcaster.subscriber_count() == 0


async def _collect(stream):
    return [event async for event in stream]
