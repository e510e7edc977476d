"""
Workflow Orchestrator

Generate a workflow from a natural-language request: the model is asked
for a single JSON workflow, which is then parsed, schema-validated and
checked for dependency problems before it is handed back.
"""

import json
import logging
import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from ..llm_clients.base import ModelProvider
from .definition import AgentConfig, Workflow
from .dependency import sort_tasks
from .errors import WorkflowGenerationError, WorkflowValidationError

logger = logging.getLogger(__name__)


class GenerationErrorType(str, Enum):
    """Stage at which workflow generation failed."""

    EMPTY_REQUEST = "EMPTY_REQUEST"
    API_ERROR = "API_ERROR"
    JSON_PARSE_ERROR = "JSON_PARSE_ERROR"
    SCHEMA_VALIDATION_ERROR = "SCHEMA_VALIDATION_ERROR"
    CIRCULAR_DEPENDENCY_ERROR = "CIRCULAR_DEPENDENCY_ERROR"


ORCHESTRATOR_SYSTEM_PROMPT = """You are an expert workflow orchestrator. Break the user's request into a \
small graph of dependent tasks that together accomplish it.

Respond with a single JSON object and nothing else:
{
  "name": "Short descriptive workflow name",
  "description": "One sentence on what the workflow does",
  "tasks": [
    {
      "id": "task-1",
      "name": "Short task name",
      "description": "One sentence on the task's purpose",
      "type": "One of the task types below",
      "dependencies": ["ids of tasks that must run first"],
      "inputKeys": ["data store keys this task reads, dot notation allowed"],
      "outputKey": "data store key this task writes"
    }
  ]
}

Task types and their extra fields:
- DATA_INPUT: "staticValue", usually "{{userInput.text}}" or a literal value
- GEMINI_PROMPT: "promptTemplate" with {{placeholder}} references to input keys
- GEMINI_GROUNDED: "promptTemplate"; the answer is grounded in web search results
- IMAGE_ANALYSIS: "promptTemplate"; the first input key must hold an image
- TEXT_MANIPULATION: "functionBody", the body of a Python function taking `inputs`, \
e.g. "return inputs.summary.upper()"
- DISPLAY_CHART: "dataKey", the data store key holding a list of {"name", "value"} points

Rules:
- The user's input is available as userInput.text (and userInput.image for images).
- Every key in inputKeys must be userInput.* or the outputKey of a task listed in dependencies.
- Task ids are unique and use only letters, digits, "-" and "_".
- Dependencies must not form a cycle.
- Use 3 to 8 tasks for typical requests."""

ORCHESTRATOR_EXAMPLE = {
    "request": "Analyze customer feedback for sentiment and key themes, then write a summary report",
    "workflow": {
        "name": "Customer Feedback Analysis",
        "description": "Finds the sentiment and themes of feedback and combines them into a report",
        "tasks": [
            {"id": "task-1", "name": "Capture Feedback", "type": "DATA_INPUT",
             "dependencies": [], "inputKeys": [], "outputKey": "feedbackText",
             "staticValue": "{{userInput.text}}"},
            {"id": "task-2", "name": "Analyze Sentiment", "type": "GEMINI_PROMPT",
             "dependencies": ["task-1"], "inputKeys": ["feedbackText"], "outputKey": "sentiment",
             "promptTemplate": "Classify the sentiment of this feedback and explain briefly:\n\n{{feedbackText}}"},
            {"id": "task-3", "name": "Extract Themes", "type": "GEMINI_PROMPT",
             "dependencies": ["task-1"], "inputKeys": ["feedbackText"], "outputKey": "themes",
             "promptTemplate": "List the key themes in this feedback:\n\n{{feedbackText}}"},
            {"id": "task-4", "name": "Write Report", "type": "TEXT_MANIPULATION",
             "dependencies": ["task-2", "task-3"], "inputKeys": ["sentiment", "themes"],
             "outputKey": "report",
             "functionBody": "return '# Feedback Report\\n\\n## Sentiment\\n' + inputs.sentiment + "
                             "'\\n\\n## Themes\\n' + inputs.themes"},
        ],
    },
}


def build_orchestrator_prompt(user_request: str) -> str:
    """Build the generation prompt for a request, with one worked example."""
    example = json.dumps(ORCHESTRATOR_EXAMPLE["workflow"], indent=2)
    return (
        f"Example request: {ORCHESTRATOR_EXAMPLE['request']}\n"
        f"Example workflow:\n{example}\n\n"
        f"Request: {user_request.strip()}\n"
        "Workflow:"
    )


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        text = text[3:-3]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


class WorkflowOrchestrator:
    """
    Turns a natural-language request into a validated Workflow.

    Example:
        orchestrator = WorkflowOrchestrator(provider)
        workflow = await orchestrator.generate_workflow("Summarize and translate a text")
    """

    def __init__(
        self,
        provider: ModelProvider,
        model: Optional[str] = None,
        temperature: float = 0.3,
        top_p: float = 0.8,
    ):
        self.provider = provider
        self.config = AgentConfig(
            model=model,
            temperature=temperature,
            top_p=top_p,
            system_instruction=ORCHESTRATOR_SYSTEM_PROMPT,
            response_format="json",
        )
        self.logger = logging.getLogger(__name__)

    async def generate_workflow(self, user_request: str) -> Workflow:
        """
        Generate a workflow for a request.

        Args:
            user_request: What the workflow should accomplish

        Returns:
            Workflow with a generated ``orchestrated-...`` id

        Raises:
            WorkflowGenerationError: If the request is empty, the model call fails,
                or the response is not valid JSON, fails schema validation, or
                contains a dependency cycle
        """
        if not user_request or not user_request.strip():
            raise WorkflowGenerationError(
                "User request cannot be empty.", GenerationErrorType.EMPTY_REQUEST.value
            )

        self.logger.info(f"Generating workflow for request ({len(user_request)} chars)")
        try:
            text = await self.provider.generate_text(
                build_orchestrator_prompt(user_request),
                system_instruction=ORCHESTRATOR_SYSTEM_PROMPT,
                config=self.config,
            )
        except Exception as e:
            self.logger.error(f"Workflow generation request failed: {e}")
            raise WorkflowGenerationError(
                f"Workflow generation failed: {e}",
                GenerationErrorType.API_ERROR.value,
                details={"originalError": str(e)},
            ) from e

        data = self._parse(text or "")
        workflow = self._validate(data)
        self.logger.info(f"Generated workflow '{workflow.name}' with {len(workflow.tasks)} tasks")
        return workflow

    def _parse(self, text: str) -> Dict[str, Any]:
        body = _strip_code_fence(text)
        try:
            if not body:
                raise ValueError("Response is empty")
            data = json.loads(body)
        except ValueError as e:
            self.logger.error(f"Model response was not valid JSON: {e}")
            raise WorkflowGenerationError(
                f"AI response was not valid JSON: {e}",
                GenerationErrorType.JSON_PARSE_ERROR.value,
                details={"responseLength": len(text), "responsePreview": text[:100]},
            ) from e

        if isinstance(data, dict) and isinstance(data.get("workflow"), dict):
            data = data["workflow"]
        if not isinstance(data, dict):
            raise WorkflowGenerationError(
                "AI response was not valid JSON: expected an object",
                GenerationErrorType.JSON_PARSE_ERROR.value,
                details={"responseLength": len(text), "responsePreview": text[:100]},
            )
        return data

    def _validate(self, data: Dict[str, Any]) -> Workflow:
        data = dict(data)
        data["id"] = f"orchestrated-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        try:
            workflow = Workflow.from_dict(data)
        except WorkflowValidationError as e:
            raise WorkflowGenerationError(
                "Generated workflow failed schema validation.",
                GenerationErrorType.SCHEMA_VALIDATION_ERROR.value,
                validation_errors=e.errors,
            ) from e

        ordering = sort_tasks(workflow.tasks)
        if ordering.has_cycle:
            raise WorkflowGenerationError(
                "Generated workflow contains circular dependencies.",
                GenerationErrorType.CIRCULAR_DEPENDENCY_ERROR.value,
                validation_errors=ordering.errors,
            )

        errors = workflow.validate_structure()
        if errors:
            raise WorkflowGenerationError(
                "Generated workflow failed schema validation.",
                GenerationErrorType.SCHEMA_VALIDATION_ERROR.value,
                validation_errors=errors,
            )
        return workflow
