"""
Workflow engine: definitions, dependency ordering, templating and execution.
"""

from .definition import (
    AgentConfig,
    BaseTask,
    DataInputTask,
    DisplayChartTask,
    GeminiGroundedTask,
    GeminiPromptTask,
    ImageAnalysisTask,
    Task,
    TaskType,
    TextManipulationTask,
    Workflow,
    parse_task,
)
from .dependency import SortResult, sort_tasks
from .errors import (
    InputResolutionError,
    TaskExecutionError,
    WorkflowError,
    WorkflowExecutionError,
    WorkflowGenerationError,
    WorkflowStoppedError,
    WorkflowValidationError,
)
from .executor import TaskExecutor
from .orchestrator import GenerationErrorType, WorkflowOrchestrator, build_orchestrator_prompt
from .prompts import (
    InMemoryPromptStore,
    LinkedPrompt,
    PromptResolver,
    SFLMode,
    SFLTenor,
    build_system_instruction,
)
from .runner import WorkflowRunner, WorkflowRunResult
from .templating import MISSING, get_nested, resolve_template

__all__ = [
    "AgentConfig",
    "BaseTask",
    "DataInputTask",
    "DisplayChartTask",
    "GeminiGroundedTask",
    "GeminiPromptTask",
    "ImageAnalysisTask",
    "Task",
    "TaskType",
    "TextManipulationTask",
    "Workflow",
    "parse_task",
    "SortResult",
    "sort_tasks",
    "WorkflowError",
    "WorkflowValidationError",
    "TaskExecutionError",
    "InputResolutionError",
    "WorkflowExecutionError",
    "WorkflowStoppedError",
    "WorkflowGenerationError",
    "TaskExecutor",
    "GenerationErrorType",
    "WorkflowOrchestrator",
    "build_orchestrator_prompt",
    "LinkedPrompt",
    "SFLTenor",
    "SFLMode",
    "PromptResolver",
    "InMemoryPromptStore",
    "build_system_instruction",
    "WorkflowRunner",
    "WorkflowRunResult",
    "MISSING",
    "get_nested",
    "resolve_template",
]
