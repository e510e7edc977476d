"""
Task Executor

Execute one task against a read-only view of the data store.
"""

import asyncio
import base64
import binascii
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional

from ..llm_clients.base import ModelProvider
from ..pyeval import EvaluationError, RestrictedPythonEvaluator
from .definition import (
    AgentConfig,
    BaseTask,
    DataInputTask,
    DisplayChartTask,
    GeminiGroundedTask,
    GeminiPromptTask,
    ImageAnalysisTask,
    TaskType,
    TextManipulationTask,
)
from .errors import InputResolutionError, TaskExecutionError
from .prompts import LinkedPrompt, build_system_instruction
from .templating import MISSING, get_nested, resolve_template

logger = logging.getLogger(__name__)


class TaskExecutor:
    """
    Executes single tasks by type.

    The executor only reads the store; the runner writes results back.
    """

    def __init__(
        self,
        provider: ModelProvider,
        evaluator: Optional[RestrictedPythonEvaluator] = None,
    ):
        """
        Initialize the executor.

        Args:
            provider: Model provider used by prompt, grounded and image tasks
            evaluator: Sandbox for TEXT_MANIPULATION bodies (created if not given)
        """
        self.provider = provider
        self.evaluator = evaluator or RestrictedPythonEvaluator()
        self._handlers: Dict[str, Callable] = {
            TaskType.DATA_INPUT.value: self._execute_data_input,
            TaskType.GEMINI_PROMPT.value: self._execute_prompt,
            TaskType.GEMINI_GROUNDED.value: self._execute_grounded,
            TaskType.IMAGE_ANALYSIS.value: self._execute_image_analysis,
            TaskType.TEXT_MANIPULATION.value: self._execute_text_manipulation,
            TaskType.DISPLAY_CHART.value: self._execute_display_chart,
        }

    @staticmethod
    def resolve_inputs(task: BaseTask, store: Mapping) -> Dict[str, Any]:
        """
        Look up every input key of a task.

        Values are exposed under the last segment of their key, so
        ``userInput.text`` becomes ``text``.

        Raises:
            InputResolutionError: If a key is not present in the store
        """
        inputs = {}
        for key in task.input_keys:
            value = get_nested(store, key)
            if value is MISSING:
                raise InputResolutionError(
                    f'Missing required input key "{key}" in data store for task "{task.name}".',
                    task_id=task.id,
                    task_name=task.name,
                )
            inputs[key.split(".")[-1]] = value
        return inputs

    async def execute(
        self,
        task: BaseTask,
        store: Mapping,
        linked_prompt: Optional[LinkedPrompt] = None,
        warnings: Optional[List[str]] = None,
    ) -> Any:
        """
        Execute a task and return its output.

        Args:
            task: Task to execute
            store: Current data store (not modified)
            linked_prompt: Prompt record for GEMINI_PROMPT tasks with a promptId
            warnings: Optional list collecting non-fatal template warnings

        Returns:
            Task output to be stored under the task's outputKey

        Raises:
            TaskExecutionError: If the task fails for any reason
        """
        task_type = getattr(task, "type", None)
        handler = self._handlers.get(task_type)
        if handler is None:
            raise TaskExecutionError(
                f"Unsupported task type: {task_type}", task_id=task.id, task_name=task.name
            )

        inputs = self.resolve_inputs(task, store)
        context = {**store, **inputs}
        logger.debug(f"Executing task '{task.name}' ({task_type}) with inputs {list(inputs)}")

        try:
            return await handler(
                task,
                store=store,
                inputs=inputs,
                context=context,
                linked_prompt=linked_prompt,
                warnings=warnings,
            )
        except TaskExecutionError:
            raise
        except Exception as e:
            logger.error(f"Task '{task.name}' ({task.id}) failed: {e}")
            raise TaskExecutionError(str(e), task_id=task.id, task_name=task.name) from e

    async def _execute_data_input(self, task: DataInputTask, store, warnings, **_) -> Any:
        if isinstance(task.static_value, str):
            return resolve_template(task.static_value, store, warnings)
        return task.static_value

    async def _execute_prompt(
        self, task: GeminiPromptTask, context, linked_prompt, warnings, **_
    ) -> str:
        if task.prompt_id:
            if linked_prompt is None:
                raise TaskExecutionError(
                    f'Task "{task.name}" requires prompt ID "{task.prompt_id}" but no prompt was provided.',
                    task_id=task.id,
                    task_name=task.name,
                )
            system_instruction = build_system_instruction(linked_prompt) or None
            config = (task.agent_config or AgentConfig()).with_system_instruction(
                system_instruction
            )
            prompt = resolve_template(linked_prompt.prompt_text, context, warnings)
            return await self.provider.generate_text(
                str(prompt), system_instruction=system_instruction, config=config
            )

        prompt = resolve_template(task.prompt_template, context, warnings)
        return await self.provider.generate_text(str(prompt), config=task.agent_config)

    async def _execute_grounded(
        self, task: GeminiGroundedTask, context, warnings, **_
    ) -> Dict[str, Any]:
        prompt = resolve_template(task.prompt_template, context, warnings)
        grounded = await self.provider.generate_grounded_text(
            str(prompt), config=task.agent_config
        )
        return {
            "text": grounded.text,
            "sources": [
                {"uri": source["uri"], "title": source.get("title") or source["uri"]}
                for source in grounded.sources
                if source.get("uri")
            ],
        }

    async def _execute_image_analysis(
        self, task: ImageAnalysisTask, store, context, warnings, **_
    ) -> str:
        image_key = task.input_keys[0]
        image_bytes, mime_type = self._decode_image(task, get_nested(store, image_key))
        prompt = resolve_template(task.prompt_template, context, warnings)
        return await self.provider.analyze_image(
            str(prompt), image_bytes, mime_type, config=task.agent_config
        )

    @staticmethod
    def _decode_image(task: ImageAnalysisTask, image: Any):
        image_key = task.input_keys[0]
        error = InputResolutionError(
            f'Image data from key "{image_key}" is missing, malformed, or not found in inputs.',
            task_id=task.id,
            task_name=task.name,
        )
        if not isinstance(image, Mapping):
            raise error
        data, mime_type = image.get("base64"), image.get("type")
        if not isinstance(data, str) or not isinstance(mime_type, str) or not data:
            raise error

        # data URLs are accepted as well as bare base64
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        try:
            return base64.b64decode(data, validate=True), mime_type
        except (binascii.Error, ValueError) as e:
            raise error from e

    async def _execute_text_manipulation(
        self, task: TextManipulationTask, inputs, **_
    ) -> Any:
        # CPU-bound, runs off the event loop
        evaluation = await asyncio.to_thread(
            self.evaluator.evaluate_function_body, task.function_body, inputs
        )
        try:
            evaluation.raise_for_error()
        except EvaluationError as e:
            raise TaskExecutionError(
                f"Error in custom function: {e}", task_id=task.id, task_name=task.name
            ) from e
        return evaluation.result

    async def _execute_display_chart(self, task: DisplayChartTask, store, **_) -> Any:
        data = get_nested(store, task.data_key)
        if data is MISSING:
            raise InputResolutionError(
                f'Chart data key "{task.data_key}" not found in data store for task "{task.name}".',
                task_id=task.id,
                task_name=task.name,
            )
        if not _is_chart_series(data):
            logger.debug(
                f"Chart data for task '{task.name}' is not a list of name/value points, passing through"
            )
        return data


def _is_chart_series(data: Any) -> bool:
    return isinstance(data, list) and all(
        isinstance(point, Mapping) and "name" in point and "value" in point
        for point in data
    )
