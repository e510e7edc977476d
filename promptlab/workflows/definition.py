"""
Workflow Definition

Parse, validate, and represent workflow definitions.

Tasks are a tagged union on ``type``: each variant carries exactly the
fields its execution needs and is validated when it is constructed.
Field names are camelCase on the wire (``inputKeys``, ``outputKey`` ...)
and snake_case in Python.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import WorkflowValidationError

MAX_TASKS = 50

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class TaskType(str, Enum):
    """Supported task types."""

    DATA_INPUT = "DATA_INPUT"
    GEMINI_PROMPT = "GEMINI_PROMPT"
    IMAGE_ANALYSIS = "IMAGE_ANALYSIS"
    TEXT_MANIPULATION = "TEXT_MANIPULATION"
    DISPLAY_CHART = "DISPLAY_CHART"
    GEMINI_GROUNDED = "GEMINI_GROUNDED"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class AgentConfig(_WireModel):
    """Model overrides for prompt-bearing tasks."""

    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0, le=2)
    top_k: Optional[int] = Field(None, ge=1, le=40)
    top_p: Optional[float] = Field(None, ge=0, le=1)
    system_instruction: Optional[str] = None
    # "json" asks the provider for a single JSON object
    response_format: Optional[Literal["text", "json"]] = None

    def with_system_instruction(self, system_instruction: Optional[str]) -> "AgentConfig":
        """Return a copy with the system instruction replaced."""
        return self.model_copy(update={"system_instruction": system_instruction})


class BaseTask(_WireModel):
    """Fields shared by every task type."""

    id: str = Field(min_length=1, pattern=r"^[a-zA-Z0-9_-]+$")
    name: str = Field(min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    dependencies: Tuple[NonEmptyStr, ...] = ()
    input_keys: Tuple[NonEmptyStr, ...] = ()
    output_key: str = Field(min_length=1, max_length=50)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DataInputTask(BaseTask):
    """Static value, optionally templated against the data store."""

    type: Literal["DATA_INPUT"] = "DATA_INPUT"
    static_value: Any


class GeminiPromptTask(BaseTask):
    """Text generation from an inline template or a linked prompt."""

    type: Literal["GEMINI_PROMPT"] = "GEMINI_PROMPT"
    prompt_template: Optional[str] = None
    prompt_id: Optional[str] = None
    agent_config: Optional[AgentConfig] = None

    @model_validator(mode="after")
    def _require_prompt_source(self) -> "GeminiPromptTask":
        if not self.prompt_template and not self.prompt_id:
            raise ValueError(
                "Task type 'GEMINI_PROMPT' requires a 'promptTemplate' field or a 'promptId'"
            )
        return self


class GeminiGroundedTask(BaseTask):
    """Search-grounded text generation returning text plus sources."""

    type: Literal["GEMINI_GROUNDED"] = "GEMINI_GROUNDED"
    prompt_template: NonEmptyStr
    agent_config: Optional[AgentConfig] = None


class ImageAnalysisTask(BaseTask):
    """Prompt plus an inline image taken from the first input key."""

    type: Literal["IMAGE_ANALYSIS"] = "IMAGE_ANALYSIS"
    prompt_template: NonEmptyStr
    agent_config: Optional[AgentConfig] = None

    @model_validator(mode="after")
    def _require_image_input(self) -> "ImageAnalysisTask":
        if not self.input_keys:
            raise ValueError(
                "Task type 'IMAGE_ANALYSIS' requires at least one input key pointing to the image data"
            )
        return self


class TextManipulationTask(BaseTask):
    """Sandboxed Python function body over the task's inputs."""

    type: Literal["TEXT_MANIPULATION"] = "TEXT_MANIPULATION"
    function_body: NonEmptyStr


class DisplayChartTask(BaseTask):
    """Marks a data store key as chart-ready."""

    type: Literal["DISPLAY_CHART"] = "DISPLAY_CHART"
    data_key: NonEmptyStr


Task = Annotated[
    Union[
        DataInputTask,
        GeminiPromptTask,
        GeminiGroundedTask,
        ImageAnalysisTask,
        TextManipulationTask,
        DisplayChartTask,
    ],
    Field(discriminator="type"),
]

TASK_CLASSES: Dict[str, Type[BaseTask]] = {
    TaskType.DATA_INPUT.value: DataInputTask,
    TaskType.GEMINI_PROMPT.value: GeminiPromptTask,
    TaskType.GEMINI_GROUNDED.value: GeminiGroundedTask,
    TaskType.IMAGE_ANALYSIS.value: ImageAnalysisTask,
    TaskType.TEXT_MANIPULATION.value: TextManipulationTask,
    TaskType.DISPLAY_CHART.value: DisplayChartTask,
}


def _format_validation_error(label: str, error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        prefix = f"{label} {location}" if location else label
        messages.append(f"{prefix}: {item['msg']}")
    return messages


def parse_task(data: Union[Dict[str, Any], BaseTask]) -> BaseTask:
    """
    Build the task variant matching ``data["type"]``.

    Args:
        data: Task dictionary in wire shape (or an already built task)

    Returns:
        Task variant instance

    Raises:
        WorkflowValidationError: If the type is unknown or fields are invalid
    """
    if isinstance(data, BaseTask):
        return data
    if not isinstance(data, dict):
        raise WorkflowValidationError([f"Task definition must be an object, got {type(data).__name__}"])

    label = f'Task "{data.get("name") or data.get("id") or "?"}"'
    task_type = data.get("type")
    task_class = TASK_CLASSES.get(task_type)
    if task_class is None:
        raise WorkflowValidationError([f'{label} has unsupported task type "{task_type}"'])

    try:
        return task_class.model_validate(data)
    except ValidationError as e:
        raise WorkflowValidationError(_format_validation_error(label, e)) from e


class Workflow(_WireModel):
    """
    Workflow definition.

    Immutable during execution: runs mutate only their own data store.
    """

    id: str = ""
    name: str = "unnamed"
    description: str = ""
    tasks: Tuple[Task, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """
        Create from dictionary.

        Every task is parsed before failing so the error lists all bad tasks.

        Raises:
            WorkflowValidationError: If any task definition is invalid
        """
        if not isinstance(data, dict):
            raise WorkflowValidationError(["Workflow definition must be an object"])

        tasks = []
        errors = []
        for raw_task in data.get("tasks") or []:
            try:
                tasks.append(parse_task(raw_task))
            except WorkflowValidationError as e:
                errors.extend(e.errors)
        if errors:
            raise WorkflowValidationError(errors)

        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "unnamed",
            description=data.get("description") or "",
            tasks=tuple(tasks),
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "Workflow":
        """
        Parse workflow from a YAML (or JSON) string.

        The definition may sit under a top-level ``workflow`` key.

        Raises:
            ValueError: If the text is not valid YAML
        """
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}")

        if isinstance(data, dict) and isinstance(data.get("workflow"), dict):
            data = data["workflow"]
        if not isinstance(data, dict):
            raise ValueError("Workflow document must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, file_path: str) -> "Workflow":
        """
        Load workflow from a YAML or JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {file_path}")

        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            return cls.from_dict(json.loads(text))
        return cls.from_yaml(text)

    def validate_structure(self) -> List[str]:
        """
        Validate the task graph.

        Returns:
            List of structural errors (empty if valid)
        """
        from .dependency import sort_tasks

        errors = []

        if not self.tasks:
            errors.append("Workflow must contain at least one task")
        if len(self.tasks) > MAX_TASKS:
            errors.append(f"Workflow cannot exceed {MAX_TASKS} tasks")

        seen = set()
        duplicates = []
        for task in self.tasks:
            if task.id in seen and task.id not in duplicates:
                duplicates.append(task.id)
            seen.add(task.id)
        if duplicates:
            errors.append(f"Duplicate task IDs found: {', '.join(duplicates)}")

        errors.extend(sort_tasks(self.tasks).errors)
        return errors

    def get_task(self, task_id: str) -> Optional[BaseTask]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase wire shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def __repr__(self) -> str:
        return f"Workflow(id='{self.id}', name='{self.name}', tasks={len(self.tasks)})"
