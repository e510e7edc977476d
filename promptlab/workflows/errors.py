"""
Workflow Errors

Exception hierarchy for structural, execution and stop failures.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


class WorkflowValidationError(WorkflowError):
    """
    Structural problem detected before any task runs.

    Carries the full list of problems (cycles, dangling dependencies,
    missing task fields) rather than only the first one.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid workflow: {'; '.join(self.errors)}")


class TaskExecutionError(WorkflowError):
    """A single task failed to execute."""

    def __init__(
        self,
        message: str,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.task_id = task_id
        self.task_name = task_name


class InputResolutionError(TaskExecutionError):
    """A task input is missing from the data store or malformed."""


class WorkflowExecutionError(WorkflowError):
    """
    Workflow run aborted at a task.

    The partial data store is attached so callers can inspect what was
    written before the failure. Nothing is rolled back.
    """

    def __init__(
        self,
        task_id: str,
        task_name: str,
        cause: BaseException,
        data_store: Optional[Dict[str, Any]] = None,
    ):
        if isinstance(cause, TaskExecutionError):
            message = str(cause)
        else:
            message = f'Task "{task_name}" failed: {cause}'
        super().__init__(message)
        self.task_id = task_id
        self.task_name = task_name
        self.cause = cause
        self.data_store = data_store if data_store is not None else {}


class WorkflowStoppedError(WorkflowError):
    """A stop was requested while the workflow was running."""


class WorkflowGenerationError(WorkflowError):
    """
    A workflow could not be generated from a natural-language request.

    ``error_type`` says which stage failed (see ``GenerationErrorType``);
    ``validation_errors`` lists schema or structural problems when there are any.
    """

    def __init__(
        self,
        message: str,
        error_type: str,
        validation_errors: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.validation_errors = list(validation_errors or [])
        self.details = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": str(self), "errorType": self.error_type}
        if self.validation_errors:
            data["validationErrors"] = list(self.validation_errors)
        if self.details:
            data["details"] = dict(self.details)
        return data
