"""
Workflow Runner

Run a whole workflow in dependency order, threading each task's output
through the data store.
"""

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .definition import BaseTask, Workflow, parse_task
from .dependency import sort_tasks
from .errors import (
    WorkflowExecutionError,
    WorkflowStoppedError,
    WorkflowValidationError,
)
from .executor import TaskExecutor
from .prompts import LinkedPrompt, PromptResolver

logger = logging.getLogger(__name__)

USER_INPUT_KEY = "userInput"

TaskCallback = Callable[..., Any]


@dataclass
class WorkflowRunResult:
    """Outcome of a successful run."""

    data_store: Dict[str, Any] = field(default_factory=dict)
    results: Dict[str, Any] = field(default_factory=dict)
    feedback: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataStore": self.data_store,
            "results": self.results,
            "feedback": list(self.feedback),
        }


async def _notify(callback: Optional[TaskCallback], *args) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class WorkflowRunner:
    """
    Sequential workflow runner.

    Tasks run one at a time in topological order. The first failure stops
    the run; results already written to the data store are kept.
    """

    def __init__(
        self,
        executor: TaskExecutor,
        prompt_resolver: Optional[PromptResolver] = None,
    ):
        self.executor = executor
        self.prompt_resolver = prompt_resolver
        self.logger = logging.getLogger(__name__)

    async def _resolve_prompt(self, task: BaseTask) -> Optional[LinkedPrompt]:
        prompt_id = getattr(task, "prompt_id", None)
        if not prompt_id or self.prompt_resolver is None:
            return None
        prompt = await self.prompt_resolver.get_prompt(prompt_id)
        if prompt is None:
            self.logger.warning(f"Linked prompt '{prompt_id}' not found for task '{task.name}'")
        return prompt

    async def run(
        self,
        workflow: Workflow,
        user_input: Optional[Dict[str, Any]] = None,
        on_task_start: Optional[TaskCallback] = None,
        on_task_complete: Optional[TaskCallback] = None,
        on_task_error: Optional[TaskCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> WorkflowRunResult:
        """
        Execute a workflow.

        Args:
            workflow: Workflow definition
            user_input: Seed value stored under ``userInput``
            on_task_start: Called with (task) before a task runs
            on_task_complete: Called with (task, result) after its output is stored
            on_task_error: Called with (task, error) when a task fails
            should_stop: Polled before each task; returning True stops the run

        Callbacks may be plain functions or coroutines.

        Returns:
            WorkflowRunResult with the final data store, per-task results and feedback

        Raises:
            WorkflowValidationError: If the workflow is structurally invalid (nothing runs)
            WorkflowStoppedError: If should_stop returned True
            WorkflowExecutionError: If a task failed
        """
        errors = workflow.validate_structure()
        if errors:
            raise WorkflowValidationError(errors)
        order = sort_tasks(workflow.tasks).order

        run = WorkflowRunResult(data_store={USER_INPUT_KEY: user_input or {}})
        self.logger.info(f"Running workflow '{workflow.name}' with {len(order)} tasks")

        for task in order:
            if should_stop is not None and should_stop():
                self.logger.info(f"Workflow '{workflow.name}' stopped before task '{task.name}'")
                raise WorkflowStoppedError(
                    f"Workflow '{workflow.name}' was stopped before task '{task.name}'"
                )

            try:
                linked_prompt = await self._resolve_prompt(task)
                await _notify(on_task_start, task)
                result = await self.executor.execute(
                    task, run.data_store, linked_prompt=linked_prompt, warnings=run.feedback
                )
            except Exception as e:
                self.logger.error(f"Task '{task.name}' ({task.id}) failed: {e}")
                await _notify(on_task_error, task, e)
                raise WorkflowExecutionError(task.id, task.name, e, run.data_store) from e

            run.data_store[task.output_key] = result
            run.results[task.id] = result
            await _notify(on_task_complete, task, result)

        self.logger.info(f"Workflow '{workflow.name}' completed")
        return run

    async def run_task(
        self,
        task: Union[BaseTask, Dict[str, Any]],
        data_store: Optional[Dict[str, Any]] = None,
        linked_prompt: Optional[LinkedPrompt] = None,
    ) -> Any:
        """
        Execute a single task outside of a workflow.

        Args:
            task: Task (or task dictionary in wire shape)
            data_store: Store to read inputs from (defaults to an empty ``userInput``)
            linked_prompt: Prompt for promptId tasks; looked up via the resolver if omitted

        Returns:
            The task's output

        Raises:
            WorkflowValidationError: If the task dictionary is invalid
            TaskExecutionError: If the task fails
        """
        task = parse_task(task)
        store = data_store if data_store is not None else {USER_INPUT_KEY: {}}
        if linked_prompt is None:
            linked_prompt = await self._resolve_prompt(task)
        return await self.executor.execute(task, store, linked_prompt=linked_prompt)
