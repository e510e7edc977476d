"""
PromptLab service.

Composition root that wires the model provider, executor, runner, progress
broadcaster and job manager together and exposes the operations callers use:
submit a workflow, follow or stop its job, and run workflows or single tasks
directly.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .async_jobs import JobStatus, WorkflowJobManager, create_job_store
from .config import SettingsManager
from .llm_clients import ModelProvider, create_provider
from .progress import ProgressBroadcaster, ProgressCallback, ProgressStream
from .pyeval import RestrictedPythonEvaluator
from .workflows import (
    BaseTask,
    LinkedPrompt,
    PromptResolver,
    TaskExecutor,
    Workflow,
    WorkflowOrchestrator,
    WorkflowRunner,
    WorkflowRunResult,
)

logger = logging.getLogger(__name__)


class PromptLabService:
    """Entry point for running workflows, directly or as queued jobs."""

    def __init__(
        self,
        provider: ModelProvider,
        prompt_resolver: Optional[PromptResolver] = None,
        job_store=None,
        broadcaster: Optional[ProgressBroadcaster] = None,
        max_workers: int = 5,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        history_completed: int = 10,
        history_failed: int = 50,
    ):
        self.provider = provider
        self.executor = TaskExecutor(provider, RestrictedPythonEvaluator())
        self.runner = WorkflowRunner(self.executor, prompt_resolver)
        self.orchestrator = WorkflowOrchestrator(provider)
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.jobs = WorkflowJobManager(
            self.runner,
            broadcaster=self.broadcaster,
            job_store=job_store,
            max_workers=max_workers,
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            history_completed=history_completed,
            history_failed=history_failed,
        )

    @classmethod
    def from_settings(
        cls,
        settings: SettingsManager,
        prompt_resolver: Optional[PromptResolver] = None,
        provider: Optional[ModelProvider] = None,
    ) -> "PromptLabService":
        """
        Build a service from loaded settings.

        Args:
            settings: Loaded SettingsManager
            prompt_resolver: Source of linked prompts (optional)
            provider: Use this provider instead of the configured one

        Raises:
            ValueError: If the provider or job store setting is invalid
        """
        return cls(
            provider=provider or create_provider(settings),
            prompt_resolver=prompt_resolver,
            job_store=create_job_store(settings),
            max_workers=settings.get_setting("worker_concurrency", 5),
            max_attempts=settings.get_setting("job_attempts", 3),
            backoff_seconds=settings.get_setting("job_backoff_seconds", 2.0),
            history_completed=settings.get_setting("job_history_completed", 10),
            history_failed=settings.get_setting("job_history_failed", 50),
        )

    async def start(self) -> None:
        await self.jobs.start()

    async def shutdown(self) -> None:
        await self.jobs.shutdown()
        self.broadcaster.clear_all()
        await self.provider.close()

    async def __aenter__(self) -> "PromptLabService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def submit_workflow(
        self,
        workflow_id: str,
        workflow: Union[Workflow, Dict[str, Any]],
        user_input: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Queue a workflow run and return its job id."""
        return await self.jobs.submit(workflow_id, workflow, user_input)

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Status snapshot of a job, or None if the job is unknown."""
        return await self.jobs.status(job_id)

    async def list_jobs(self, status: Optional[JobStatus] = None) -> List[Dict[str, Any]]:
        return await self.jobs.list_jobs(status)

    async def stop_job(self, job_id: str) -> bool:
        """Request a job to stop; False if it is unknown or already finished."""
        return await self.jobs.stop(job_id)

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        return await self.jobs.wait_for(job_id, timeout=timeout)

    async def run_workflow(
        self,
        workflow: Union[Workflow, Dict[str, Any]],
        user_input: Optional[Dict[str, Any]] = None,
    ) -> WorkflowRunResult:
        """
        Run a workflow in the caller's task, bypassing the job queue.

        Raises:
            WorkflowValidationError: If the workflow is invalid
            WorkflowExecutionError: If a task fails
        """
        if not isinstance(workflow, Workflow):
            workflow = Workflow.from_dict(workflow)
        return await self.runner.run(workflow, user_input)

    async def run_single_task(
        self,
        task: Union[BaseTask, Dict[str, Any]],
        data_store: Optional[Dict[str, Any]] = None,
        linked_prompt: Optional[LinkedPrompt] = None,
    ) -> Any:
        """Execute one task against the given data store and return its output."""
        return await self.runner.run_task(task, data_store, linked_prompt)

    async def generate_workflow(self, user_request: str) -> Workflow:
        """
        Generate a validated workflow from a natural-language request.

        Raises:
            WorkflowGenerationError: If generation, parsing or validation fails
        """
        return await self.orchestrator.generate_workflow(user_request)

    def subscribe(self, job_id: Optional[str], callback: ProgressCallback) -> str:
        """Follow one job's progress events, or every job's when job_id is None."""
        if job_id is None:
            return self.broadcaster.subscribe_all(callback)
        return self.broadcaster.subscribe(job_id, callback)

    def unsubscribe(self, token: str) -> bool:
        return self.broadcaster.unsubscribe(token)

    def stream(self, job_id: str) -> ProgressStream:
        """Follow a job's events; a job that already finished yields its terminal event."""
        return self.jobs.stream(job_id)

    async def get_stats(self) -> Dict[str, Any]:
        stats = await self.jobs.get_stats()
        stats["progress"] = self.broadcaster.get_metrics()
        return stats
