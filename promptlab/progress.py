"""Progress broadcaster for workflow job events.

This module provides the ProgressBroadcaster class, which fans job progress
events out to subscribers registered for one job or for all jobs. A failing
subscriber is logged and counted; delivery to the others continues.
"""

import asyncio
import inspect
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Subscriber callback, plain function or coroutine function taking a ProgressEvent
ProgressCallback = Callable[["ProgressEvent"], Any]

# Returns the terminal event of an already finished job, or None
SnapshotCallback = Callable[[], Awaitable[Optional["ProgressEvent"]]]


class ProgressEventType(str, Enum):
    """Kinds of job progress events."""

    WORKFLOW_PROGRESS = "workflow_progress"
    TASK_STATUS = "task_status"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_FAILED = "workflow_failed"


TERMINAL_EVENT_TYPES = (ProgressEventType.WORKFLOW_COMPLETE, ProgressEventType.WORKFLOW_FAILED)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProgressEvent(BaseModel):
    """A single progress notification for a job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: ProgressEventType
    job_id: str
    status: str
    workflow_id: Optional[str] = None
    task_id: Optional[str] = None
    task_name: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=_now_ms)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire shape, leaving out unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass
class ProgressMetrics:
    """Metrics for progress event delivery."""
    events_sent: int = 0
    delivery_errors: int = 0
    active_subscribers: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def to_dict(self) -> Dict:
        """Convert metrics to dictionary."""
        return {
            "events_sent": self.events_sent,
            "delivery_errors": self.delivery_errors,
            "active_subscribers": self.active_subscribers,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
        }


class ProgressBroadcaster:
    """Fans out job progress events to subscribers.

    Example:
        broadcaster = ProgressBroadcaster()

        token = broadcaster.subscribe("workflow-wf1-1700000000000", print)
        await broadcaster.broadcast("workflow-wf1-1700000000000",
                                    ProgressEventType.WORKFLOW_PROGRESS, "started")
        broadcaster.unsubscribe(token)
    """

    def __init__(self):
        # token -> (job_id or None for all jobs, callback)
        self._subscribers: Dict[str, Tuple[Optional[str], ProgressCallback]] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger(__name__)
        self.metrics = ProgressMetrics()

    def subscribe(self, job_id: str, callback: ProgressCallback) -> str:
        """Register a callback for one job's events.

        Args:
            job_id: Job to follow
            callback: Called with each ProgressEvent

        Returns:
            str: Token to pass to unsubscribe
        """
        return self._register(job_id, callback)

    def subscribe_all(self, callback: ProgressCallback) -> str:
        """Register a callback that receives events for every job."""
        return self._register(None, callback)

    def _register(self, job_id: Optional[str], callback: ProgressCallback) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._subscribers[token] = (job_id, callback)
            self.metrics.active_subscribers = len(self._subscribers)
        self.logger.debug(f"Registered subscriber {token} for {job_id or 'all jobs'}")
        return token

    def unsubscribe(self, token: str) -> bool:
        """Remove a subscriber.

        Returns:
            bool: True if the token was registered
        """
        with self._lock:
            removed = self._subscribers.pop(token, None) is not None
            self.metrics.active_subscribers = len(self._subscribers)
        if removed:
            self.logger.debug(f"Unregistered subscriber {token}")
        return removed

    def subscriber_count(self, job_id: Optional[str] = None) -> int:
        """Number of subscribers that would receive events for job_id (all subscribers if None)."""
        with self._lock:
            if job_id is None:
                return len(self._subscribers)
            return sum(1 for target, _ in self._subscribers.values() if target in (None, job_id))

    async def broadcast(
        self,
        job_id: str,
        event_type: ProgressEventType,
        status: str,
        **fields: Any,
    ) -> ProgressEvent:
        """Build an event for a job and deliver it to its subscribers.

        Args:
            job_id: Job the event belongs to
            event_type: Kind of event
            status: Job or task status carried by the event
            **fields: workflow_id, task_id, task_name, result, error

        Returns:
            ProgressEvent: The event that was delivered
        """
        event = ProgressEvent(type=event_type, job_id=job_id, status=status, **fields)
        await self.publish(event)
        return event

    async def publish(self, event: ProgressEvent) -> int:
        """Deliver an already built event.

        Returns:
            int: Number of subscribers that received it without error
        """
        with self._lock:
            targets = [
                (token, callback)
                for token, (target, callback) in self._subscribers.items()
                if target is None or target == event.job_id
            ]

        delivered = 0
        for token, callback in targets:
            try:
                outcome = callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
                delivered += 1
            except Exception as e:
                with self._lock:
                    self.metrics.delivery_errors += 1
                    self.metrics.last_error = str(e)
                    self.metrics.last_error_time = datetime.now()
                self.logger.error(
                    f"Subscriber {token} failed to handle {event.type.value} for job {event.job_id}: {e}",
                    exc_info=True
                )

        with self._lock:
            self.metrics.events_sent += 1
        self.logger.debug(
            f"Broadcast {event.type.value} ({event.status}) for job {event.job_id} "
            f"to {delivered}/{len(targets)} subscribers"
        )
        return delivered

    def stream(self, job_id: str, snapshot: Optional[SnapshotCallback] = None) -> "ProgressStream":
        """Iterate over a job's events until a terminal event arrives.

        The subscription is registered immediately, so events broadcast
        between this call and the first iteration are kept.

        Args:
            job_id: Job to follow
            snapshot: Coroutine function returning the job's terminal event if it
                has already finished, else None; awaited on the first iteration

        Example:
            async with broadcaster.stream(job_id) as events:
                async for event in events:
                    print(event.to_dict())
        """
        return ProgressStream(self, job_id, snapshot)

    def get_metrics(self) -> Dict:
        """Get delivery metrics."""
        with self._lock:
            return self.metrics.to_dict()

    def clear_all(self) -> None:
        """Remove all subscribers."""
        with self._lock:
            self._subscribers.clear()
            self.metrics.active_subscribers = 0
        self.logger.debug("Cleared all subscribers")


class ProgressStream:
    """Async iterator over one job's events, subscribed from construction.

    Iteration stops after a terminal event. If the snapshot shows the job
    already finished and nothing is queued, that terminal event is yielded
    on its own.
    """

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        job_id: str,
        snapshot: Optional[SnapshotCallback] = None,
    ):
        self.job_id = job_id
        self._broadcaster = broadcaster
        self._snapshot = snapshot
        self._queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()
        self._closed = False
        self._token = broadcaster.subscribe(job_id, self._queue.put_nowait)

    def __aiter__(self) -> "ProgressStream":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._closed:
            raise StopAsyncIteration

        if self._snapshot is not None:
            snapshot, self._snapshot = self._snapshot, None
            try:
                finished = await snapshot()
            except Exception:
                self.close()
                raise
            if finished is not None and self._queue.empty():
                self.close()
                return finished

        event = await self._queue.get()
        if event.is_terminal:
            self.close()
        return event

    def close(self) -> None:
        """Stop receiving events."""
        if not self._closed:
            self._closed = True
            self._broadcaster.unsubscribe(self._token)

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> "ProgressStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
