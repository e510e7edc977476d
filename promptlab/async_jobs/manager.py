"""
Job manager for queued workflow execution.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import TypeAdapter

from ..progress import ProgressBroadcaster, ProgressEvent, ProgressEventType, ProgressStream
from ..workflows.definition import Workflow
from ..workflows.errors import WorkflowStoppedError, WorkflowValidationError
from ..workflows.runner import WorkflowRunner, WorkflowRunResult
from .job import WorkflowJob
from .models import JobProgress, JobRecord, JobStatus, now_ms
from .store import InMemoryJobStore, JobStore

logger = logging.getLogger(__name__)

_JSON_VALUE = TypeAdapter(Any)


class WorkflowJobManager:
    """
    Central coordinator for workflow jobs.

    Submitted jobs go onto an asyncio queue drained by a fixed pool of
    worker tasks. Failed runs are retried with exponential backoff; every
    state change is written to the job store and broadcast as a progress
    event.
    """

    def __init__(
        self,
        runner: WorkflowRunner,
        broadcaster: Optional[ProgressBroadcaster] = None,
        job_store: Optional[JobStore] = None,
        max_workers: int = 5,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        history_completed: int = 10,
        history_failed: int = 50,
    ):
        """
        Initialize the job manager.

        Args:
            runner: Runner used to execute workflows
            broadcaster: Receives progress events (optional)
            job_store: Storage backend for job records
            max_workers: Number of jobs processed concurrently
            max_attempts: Total attempts per job, including the first
            backoff_seconds: Delay before the first retry; doubles per retry
            history_completed: Completed jobs kept in the store
            history_failed: Failed jobs kept in the store
        """
        self.runner = runner
        self.broadcaster = broadcaster
        self._job_store = job_store or InMemoryJobStore()
        self.max_workers = max_workers
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.history_completed = history_completed
        self.history_failed = history_failed

        self._jobs: Dict[str, WorkflowJob] = {}
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._retry_tasks: Dict[str, asyncio.Task] = {}
        self._logger = logger.getChild("manager")

    @property
    def job_store(self) -> JobStore:
        return self._job_store

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Recover unfinished jobs from the store and start the workers."""
        if self._workers:
            return
        recovered = await self._recover_orphans()
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"workflow-worker-{index}")
            for index in range(self.max_workers)
        ]
        self._logger.info(
            f"Job manager started with {self.max_workers} workers ({recovered} jobs recovered)"
        )

    async def shutdown(self) -> None:
        """Stop the workers and pending retries."""
        self._logger.info("Shutting down job manager...")
        tasks = list(self._workers) + list(self._retry_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retry_tasks.clear()
        await self._job_store.close()
        self._logger.info("Job manager shutdown complete")

    async def _recover_orphans(self) -> int:
        """Re-enqueue jobs a previous process left pending or active."""
        recovered = 0
        for record in await self._job_store.list():
            if record.status.is_terminal or record.id in self._jobs:
                continue
            if record.status == JobStatus.ACTIVE:
                self._logger.warning(f"Job {record.id} was interrupted while active, re-queuing")
                record.status = JobStatus.PENDING
                await self._job_store.save(record)
            try:
                job = WorkflowJob(record)
            except WorkflowValidationError as e:
                await self._fail(record, str(e))
                continue
            self._jobs[record.id] = job
            self._queue.put_nowait(record.id)
            recovered += 1
        return recovered

    async def submit(
        self,
        workflow_id: str,
        workflow: Union[Workflow, Dict[str, Any]],
        user_input: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Submit a workflow for execution.

        Args:
            workflow_id: Identifier of the workflow definition
            workflow: Workflow (or its dictionary form)
            user_input: Seed value for the data store's ``userInput``

        Returns:
            Job id that can be used to track the job

        Raises:
            WorkflowValidationError: If the workflow dictionary cannot be parsed
        """
        if not isinstance(workflow, Workflow):
            workflow = Workflow.from_dict(workflow)

        job_id = f"workflow-{workflow_id}-{now_ms()}-{uuid.uuid4().hex[:6]}"
        record = JobRecord(
            id=job_id,
            workflow_id=str(workflow_id),
            workflow=workflow.to_dict(),
            user_input=dict(user_input or {}),
        )
        await self._job_store.save(record)
        self._jobs[job_id] = WorkflowJob(record, workflow)
        self._queue.put_nowait(job_id)

        self._logger.info(f"Submitted job {job_id} for workflow '{workflow.name}'")
        return job_id

    async def status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the status of a job.

        Returns:
            Status dictionary, or None if the job is unknown (or evicted)
        """
        job = self._jobs.get(job_id)
        if job is not None:
            return job.record.to_status_dict()
        record = await self._job_store.get(job_id)
        return record.to_status_dict() if record else None

    async def list_jobs(self, status: Optional[JobStatus] = None) -> List[Dict[str, Any]]:
        """List stored jobs, oldest first."""
        return [record.to_status_dict() for record in await self._job_store.list(status)]

    async def stop(self, job_id: str) -> bool:
        """
        Stop a job.

        A pending job fails immediately. An active job is flagged and fails
        at its next task boundary.

        Returns:
            True if the job was pending or active
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False

        await job.cancel()
        if job.record.status == JobStatus.PENDING:
            retry = self._retry_tasks.pop(job_id, None)
            if retry is not None:
                retry.cancel()
            await self._fail(job.record, f"Job {job_id} was stopped")
        return True

    async def wait_for(
        self, job_id: str, timeout: Optional[float] = None, poll_interval: float = 0.02
    ) -> Optional[Dict[str, Any]]:
        """
        Wait until a job completes or fails.

        Returns:
            Final status dictionary, or None if the job is unknown

        Raises:
            asyncio.TimeoutError: If timeout is exceeded
        """
        async def poll():
            while True:
                status = await self.status(job_id)
                if status is None or JobStatus(status["status"]).is_terminal:
                    return status
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(poll(), timeout)

    async def terminal_event(self, job_id: str) -> Optional[ProgressEvent]:
        """
        Rebuild the terminal event of a finished job.

        Returns:
            The completed/failed event, or None while the job is pending or active

        Raises:
            KeyError: If the job is unknown
        """
        status = await self.status(job_id)
        if status is None:
            raise KeyError(f"Unknown job {job_id}")
        job_status = JobStatus(status["status"])
        if not job_status.is_terminal:
            return None

        completed = job_status == JobStatus.COMPLETED
        return ProgressEvent(
            type=ProgressEventType.WORKFLOW_COMPLETE if completed else ProgressEventType.WORKFLOW_FAILED,
            job_id=job_id,
            status=job_status.value,
            workflow_id=status["workflowId"],
            result=status["result"] if completed else None,
            error=status["error"],
            timestamp=status["finishedOn"] or now_ms(),
        )

    def stream(self, job_id: str) -> ProgressStream:
        """
        Follow a job's progress events until it completes or fails.

        A job that has already finished yields its terminal event and stops;
        an unknown job raises KeyError on the first iteration.
        """
        if self.broadcaster is None:
            raise RuntimeError("Job manager has no progress broadcaster")
        return self.broadcaster.stream(job_id, snapshot=lambda: self.terminal_event(job_id))

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the job manager.

        Returns:
            Dictionary containing job counts per status and queue information
        """
        records = await self._job_store.list()
        stats = {f"{status.value}_jobs": 0 for status in JobStatus}
        for record in records:
            stats[f"{record.status.value}_jobs"] += 1
        stats.update({
            "total_jobs": len(records),
            "queued": self._queue.qsize(),
            "workers": len(self._workers),
            "scheduled_retries": len(self._retry_tasks),
        })
        return stats

    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._process(job_id)
            except Exception as e:
                self._logger.error(f"Worker {index} failed processing job {job_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def _broadcast(self, record: JobRecord, event_type: ProgressEventType, status: str, **fields) -> None:
        if self.broadcaster is None:
            return
        await self.broadcaster.broadcast(
            record.id, event_type, status, workflow_id=record.workflow_id, **fields
        )

    async def _process(self, job_id: str) -> None:
        """
        Run one attempt of a job.

        Args:
            job_id: Job to run
        """
        job = self._jobs.get(job_id)
        if job is None or job.record.status != JobStatus.PENDING:
            # stopped or finished while it sat in the queue
            return

        record = job.record
        total = job.total_tasks
        record.status = JobStatus.ACTIVE
        record.attempts_made += 1
        record.processed_on = now_ms()
        record.progress = JobProgress(current=0, total=total, message="started")
        await self._job_store.save(record)
        self._logger.info(f"Starting job {job_id} (attempt {record.attempts_made}/{self.max_attempts})")
        await self._broadcast(record, ProgressEventType.WORKFLOW_PROGRESS, "started")

        async def on_task_start(task):
            done = record.progress.current if record.progress else 0
            record.progress = JobProgress(done, total, f"Running {task.name}", task.id)
            await self._job_store.save(record)
            await self._broadcast(
                record, ProgressEventType.TASK_STATUS, "active", task_id=task.id, task_name=task.name
            )

        async def on_task_complete(task, result):
            done = (record.progress.current if record.progress else 0) + 1
            record.progress = JobProgress(done, total, f"Completed {task.name}", task.id)
            await self._job_store.save(record)
            await self._broadcast(
                record,
                ProgressEventType.TASK_STATUS,
                "completed",
                task_id=task.id,
                task_name=task.name,
                result=result,
            )

        async def on_task_error(task, error):
            await self._broadcast(
                record,
                ProgressEventType.TASK_STATUS,
                "failed",
                task_id=task.id,
                task_name=task.name,
                error=str(error),
            )

        try:
            run = await job.execute(
                self.runner,
                on_task_start=on_task_start,
                on_task_complete=on_task_complete,
                on_task_error=on_task_error,
            )
        except WorkflowStoppedError:
            await self._fail(record, f"Job {job_id} was stopped")
        except WorkflowValidationError as e:
            await self._fail(record, str(e))
        except Exception as e:
            if job.is_cancelled:
                await self._fail(record, f"Job {job_id} was stopped")
            elif record.attempts_made < self.max_attempts:
                await self._schedule_retry(job, e)
            else:
                self._logger.error(
                    f"Job {job_id} failed after {record.attempts_made} attempts: {e}", exc_info=True
                )
                await self._fail(record, str(e))
        else:
            await self._complete(record, run)

    async def _schedule_retry(self, job: WorkflowJob, error: Exception) -> None:
        record = job.record
        delay = self.backoff_seconds * (2 ** (record.attempts_made - 1))
        record.status = JobStatus.PENDING
        record.error = str(error)
        await self._job_store.save(record)
        self._logger.warning(
            f"Job {record.id} attempt {record.attempts_made}/{self.max_attempts} failed: {error}; "
            f"retrying in {delay:.2f}s"
        )
        await self._broadcast(record, ProgressEventType.WORKFLOW_PROGRESS, "retrying", error=str(error))
        self._retry_tasks[record.id] = asyncio.create_task(self._requeue_after(record.id, delay))

    async def _requeue_after(self, job_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            self._retry_tasks.pop(job_id, None)
        job = self._jobs.get(job_id)
        if job is not None and job.record.status == JobStatus.PENDING:
            self._queue.put_nowait(job_id)

    async def _complete(self, record: JobRecord, run: WorkflowRunResult) -> None:
        try:
            # every store reads back the same JSON shape (sets become lists)
            result = _JSON_VALUE.dump_python(
                {
                    "workflowId": record.workflow_id,
                    "status": JobStatus.COMPLETED.value,
                    "results": run.results,
                    "dataStore": run.data_store,
                    "feedback": list(run.feedback),
                },
                mode="json",
            )
        except ValueError as e:
            await self._fail(record, f"Workflow result is not JSON serializable: {e}")
            return

        record.status = JobStatus.COMPLETED
        record.result = result
        record.error = None
        record.finished_on = now_ms()
        if record.progress:
            record.progress = JobProgress(record.progress.total, record.progress.total, "completed")
        await self._job_store.save(record)
        self._jobs.pop(record.id, None)
        self._logger.info(f"Job {record.id} completed successfully")
        await self._broadcast(record, ProgressEventType.WORKFLOW_COMPLETE, "completed", result=record.result)
        await self._evict_history(JobStatus.COMPLETED, self.history_completed)

    async def _fail(self, record: JobRecord, message: str) -> None:
        record.status = JobStatus.FAILED
        record.error = message
        record.result = None
        record.finished_on = now_ms()
        await self._job_store.save(record)
        self._jobs.pop(record.id, None)
        self._logger.error(f"Job {record.id} failed: {message}")
        await self._broadcast(record, ProgressEventType.WORKFLOW_FAILED, "failed", error=message)
        await self._evict_history(JobStatus.FAILED, self.history_failed)

    async def _evict_history(self, status: JobStatus, keep: int) -> None:
        """Delete the oldest terminal records beyond the history limit."""
        records = await self._job_store.list(status)
        excess = len(records) - keep
        if excess <= 0:
            return
        records.sort(key=lambda record: (record.finished_on or record.created_at, record.created_at))
        for record in records[:excess]:
            await self._job_store.delete(record.id)
        self._logger.debug(f"Evicted {excess} {status.value} jobs from history")
