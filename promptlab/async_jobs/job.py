"""
Workflow job: one queued run of a workflow with stop support.
"""

import asyncio
import logging
from typing import Optional

from ..workflows.definition import Workflow
from ..workflows.runner import TaskCallback, WorkflowRunner, WorkflowRunResult
from .models import JobRecord

logger = logging.getLogger(__name__)


class WorkflowJob:
    """
    A workflow run tracked by the job manager.

    Stopping only sets a flag; the runner checks it between tasks, so the
    task in flight always finishes first.
    """

    def __init__(self, record: JobRecord, workflow: Optional[Workflow] = None):
        """
        Initialize the job.

        Args:
            record: Stored job record
            workflow: Parsed workflow (parsed from the record if omitted)

        Raises:
            WorkflowValidationError: If the stored definition cannot be parsed
        """
        self.id = record.id
        self.record = record
        self.workflow = workflow or Workflow.from_dict(record.workflow)
        self._cancel_event = asyncio.Event()
        self._logger = logger.getChild(f"job.{record.id}")

    @property
    def total_tasks(self) -> int:
        return len(self.workflow.tasks)

    async def cancel(self) -> None:
        """Request the job to stop at the next task boundary."""
        self._logger.info(f"Stopping job {self.id}")
        self._cancel_event.set()

    @property
    def is_cancelled(self) -> bool:
        """Check if the job has been asked to stop."""
        return self._cancel_event.is_set()

    async def execute(
        self,
        runner: WorkflowRunner,
        on_task_start: Optional[TaskCallback] = None,
        on_task_complete: Optional[TaskCallback] = None,
        on_task_error: Optional[TaskCallback] = None,
    ) -> WorkflowRunResult:
        """
        Run the workflow once.

        Raises:
            WorkflowStoppedError: If cancel() was called before a task boundary
            WorkflowValidationError: If the workflow is structurally invalid
            WorkflowExecutionError: If a task failed
        """
        return await runner.run(
            self.workflow,
            self.record.user_input,
            on_task_start=on_task_start,
            on_task_complete=on_task_complete,
            on_task_error=on_task_error,
            should_stop=lambda: self.is_cancelled,
        )
