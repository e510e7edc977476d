"""
Tests for TaskExecutor
"""

import asyncio
import base64
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from promptlab.llm_clients import EchoProvider, GroundedText, ProviderError
from promptlab.pyeval import RestrictedPythonEvaluator
from promptlab.workflows.definition import AgentConfig, parse_task
from promptlab.workflows.errors import InputResolutionError, TaskExecutionError
from promptlab.workflows.executor import TaskExecutor
from promptlab.workflows.prompts import LinkedPrompt


def make_task(task_type, **fields):
    data = {"id": "t1", "name": "Task One", "type": task_type, "outputKey": "out"}
    data.update(fields)
    return parse_task(data)


@pytest.fixture
def provider():
    return EchoProvider()


@pytest.fixture
def executor(provider):
    return TaskExecutor(provider)


class TestResolveInputs:
    def test_simplified_names(self):
        task = make_task("DATA_INPUT", staticValue=1, inputKeys=["userInput.text", "summary"])
        store = {"userInput": {"text": "hi"}, "summary": "short"}

        assert TaskExecutor.resolve_inputs(task, store) == {"text": "hi", "summary": "short"}

    def test_missing_key(self):
        task = make_task("DATA_INPUT", staticValue=1, inputKeys=["userInput.nothing"])

        with pytest.raises(InputResolutionError) as exc_info:
            TaskExecutor.resolve_inputs(task, {"userInput": {}})

        assert str(exc_info.value) == (
            'Missing required input key "userInput.nothing" in data store for task "Task One".'
        )
        assert exc_info.value.task_id == "t1"

    def test_stored_none_resolves(self):
        task = make_task("DATA_INPUT", staticValue=1, inputKeys=["maybe"])

        assert TaskExecutor.resolve_inputs(task, {"maybe": None}) == {"maybe": None}


class TestDataInput:
    @pytest.mark.asyncio
    async def test_template_against_store(self, executor):
        task = make_task("DATA_INPUT", staticValue="{{userInput.text}}")

        assert await executor.execute(task, {"userInput": {"text": "hi"}}) == "hi"

    @pytest.mark.asyncio
    async def test_non_string_returned_as_is(self, executor):
        task = make_task("DATA_INPUT", staticValue={"a": [1, 2]})

        assert await executor.execute(task, {}) == {"a": [1, 2]}

    @pytest.mark.asyncio
    async def test_missing_placeholder_warns(self, executor):
        warnings = []
        task = make_task("DATA_INPUT", staticValue="Hello {{name}}!")

        result = await executor.execute(task, {}, warnings=warnings)

        assert result == "Hello {{name}}!"
        assert warnings == ['Template key "name" not found in data store.']


class TestPrompt:
    @pytest.mark.asyncio
    async def test_inline_template_uses_inputs(self, executor, provider):
        config = AgentConfig(temperature=0.1)
        task = make_task(
            "GEMINI_PROMPT",
            promptTemplate="Summarize {{text}} for {{userInput.audience}}",
            inputKeys=["userInput.text"],
            agentConfig=config.model_dump(by_alias=True),
        )
        store = {"userInput": {"text": "the article", "audience": "kids"}}

        result = await executor.execute(task, store)

        assert result == "Summarize the article for kids"
        assert provider.calls[0]["config"] == config

    @pytest.mark.asyncio
    async def test_inputs_take_precedence_over_store(self, executor):
        task = make_task("GEMINI_PROMPT", promptTemplate="{{text}}!", inputKeys=["userInput.text"])

        result = await executor.execute(task, {"text": "store", "userInput": {"text": "input"}})

        assert result == "input!"

    @pytest.mark.asyncio
    async def test_linked_prompt_system_instruction(self, executor, provider):
        prompt = LinkedPrompt.model_validate(
            {
                "id": "p1",
                "promptText": "Write about {{topic}}",
                "sflTenor": {"aiPersona": "historian", "desiredTone": "formal", "targetAudience": ["students", "parents"]},
                "sflMode": {"textualDirectives": "use short paragraphs"},
            }
        )
        task = make_task(
            "GEMINI_PROMPT",
            promptId="p1",
            promptTemplate="ignored",
            inputKeys=["userInput.topic"],
            agentConfig={"systemInstruction": "overridden", "temperature": 0.3},
        )

        result = await executor.execute(task, {"userInput": {"topic": "Rome"}}, linked_prompt=prompt)

        assert result == "Write about Rome"
        call = provider.calls[0]
        assert call["system_instruction"] == (
            "You will act as a historian. Your tone should be formal. "
            "You are writing for students, parents. Follow these directives: use short paragraphs."
        )
        assert call["config"].system_instruction == call["system_instruction"]
        assert call["config"].temperature == 0.3

    @pytest.mark.asyncio
    async def test_linked_prompt_without_metadata_has_no_instruction(self, executor, provider):
        prompt = LinkedPrompt(id="p1", prompt_text="Plain")
        task = make_task("GEMINI_PROMPT", promptId="p1", agentConfig={"systemInstruction": "old"})

        await executor.execute(task, {}, linked_prompt=prompt)

        assert provider.calls[0]["system_instruction"] is None
        assert provider.calls[0]["config"].system_instruction is None

    @pytest.mark.asyncio
    async def test_linked_prompt_missing(self, executor):
        task = make_task("GEMINI_PROMPT", promptId="p9")

        with pytest.raises(TaskExecutionError) as exc_info:
            await executor.execute(task, {})

        assert str(exc_info.value) == 'Task "Task One" requires prompt ID "p9" but no prompt was provided.'

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self):
        provider = MagicMock()
        provider.generate_text = AsyncMock(side_effect=ProviderError("quota exceeded"))
        task = make_task("GEMINI_PROMPT", promptTemplate="hi")

        with pytest.raises(TaskExecutionError) as exc_info:
            await TaskExecutor(provider).execute(task, {})

        assert str(exc_info.value) == "quota exceeded"
        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert exc_info.value.task_name == "Task One"


class TestGrounded:
    @pytest.mark.asyncio
    async def test_sources_filtered(self):
        provider = MagicMock()
        provider.generate_grounded_text = AsyncMock(
            return_value=GroundedText(
                text="answer",
                sources=[{"uri": "https://a.example", "title": "A"}, {"uri": "", "title": "none"}, {"uri": "https://b.example"}],
            )
        )
        task = make_task("GEMINI_GROUNDED", promptTemplate="Latest on {{topic}}", inputKeys=["topic"])

        result = await TaskExecutor(provider).execute(task, {"topic": "rust"})

        assert result == {
            "text": "answer",
            "sources": [
                {"uri": "https://a.example", "title": "A"},
                {"uri": "https://b.example", "title": "https://b.example"},
            ],
        }
        assert provider.generate_grounded_text.call_args.args[0] == "Latest on rust"


class TestImageAnalysis:
    @pytest.mark.asyncio
    async def test_image_sent_as_bytes(self, executor, provider):
        encoded = base64.b64encode(b"imagebytes").decode("ascii")
        task = make_task("IMAGE_ANALYSIS", promptTemplate="Describe this", inputKeys=["userInput.photo"])

        result = await executor.execute(task, {"userInput": {"photo": {"base64": encoded, "type": "image/png"}}})

        assert result == "Describe this [image/png, 10 bytes]"
        assert provider.calls[0]["size"] == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "image",
        [
            "just a string",
            {"base64": "AAAA"},
            {"base64": 123, "type": "image/png"},
            {"base64": "not base64!!", "type": "image/png"},
        ],
    )
    async def test_malformed_image(self, executor, image):
        task = make_task("IMAGE_ANALYSIS", promptTemplate="Describe", inputKeys=["img"])

        with pytest.raises(InputResolutionError) as exc_info:
            await executor.execute(task, {"img": image})

        assert str(exc_info.value) == 'Image data from key "img" is missing, malformed, or not found in inputs.'


class TestTextManipulation:
    @pytest.mark.asyncio
    async def test_function_body(self, executor):
        task = make_task("TEXT_MANIPULATION", functionBody="return inputs.echoed.upper()", inputKeys=["echoed"])

        assert await executor.execute(task, {"echoed": "Echo: hi"}) == "ECHO: HI"

    @pytest.mark.asyncio
    async def test_runtime_error_wrapped(self, executor):
        task = make_task("TEXT_MANIPULATION", functionBody="return inputs.text + 1", inputKeys=["text"])

        with pytest.raises(TaskExecutionError) as exc_info:
            await executor.execute(task, {"text": "a"})

        message = str(exc_info.value)
        assert message.startswith("Error in custom function: ")
        assert "can only concatenate str" in message

    @pytest.mark.asyncio
    async def test_syntax_error_wrapped(self, executor):
        task = make_task("TEXT_MANIPULATION", functionBody="return (")

        with pytest.raises(TaskExecutionError, match="^Error in custom function: "):
            await executor.execute(task, {})

    @pytest.mark.asyncio
    async def test_missing_input_attribute_fails(self, executor):
        task = make_task("TEXT_MANIPULATION", functionBody="return inputs.typo", inputKeys=["text"])

        with pytest.raises(TaskExecutionError) as exc_info:
            await executor.execute(task, {"text": "a"})

        assert str(exc_info.value) == "Error in custom function: inputs has no key 'typo'"

    @pytest.mark.asyncio
    async def test_slow_body_does_not_block_event_loop(self, provider):
        class SlowEvaluator(RestrictedPythonEvaluator):
            def evaluate_function_body(self, body, inputs=None):
                time.sleep(0.3)
                return super().evaluate_function_body(body, inputs)

        executor = TaskExecutor(provider, SlowEvaluator())
        task = make_task("TEXT_MANIPULATION", functionBody="return 42")
        gaps = []

        async def heartbeat():
            last = time.perf_counter()
            while True:
                await asyncio.sleep(0.01)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        ticker = asyncio.create_task(heartbeat())
        try:
            assert await executor.execute(task, {}) == 42
        finally:
            ticker.cancel()

        assert len(gaps) >= 10
        assert max(gaps) < 0.15


class TestDisplayChart:
    @pytest.mark.asyncio
    async def test_returns_data(self, executor):
        data = [{"name": "a", "value": 1}, {"name": "b", "value": 2}]
        task = make_task("DISPLAY_CHART", dataKey="stats.series")

        assert await executor.execute(task, {"stats": {"series": data}}) == data

    @pytest.mark.asyncio
    async def test_non_conforming_data_passes_through(self, executor):
        task = make_task("DISPLAY_CHART", dataKey="raw")

        assert await executor.execute(task, {"raw": "not a series"}) == "not a series"

    @pytest.mark.asyncio
    async def test_stored_none_passes_through(self, executor):
        task = make_task("DISPLAY_CHART", dataKey="series")

        assert await executor.execute(task, {"series": None}) is None

    @pytest.mark.asyncio
    async def test_missing_data(self, executor):
        task = make_task("DISPLAY_CHART", dataKey="nothing")

        with pytest.raises(InputResolutionError):
            await executor.execute(task, {})


class TestUnsupportedType:
    @pytest.mark.asyncio
    async def test_unknown_task_object(self, executor):
        task = MagicMock()
        task.type = "VIDEO"
        task.id = "v"
        task.name = "Video"

        with pytest.raises(TaskExecutionError, match="Unsupported task type: VIDEO"):
            await executor.execute(task, {})
