"""Tests for the model providers."""

import base64
from unittest.mock import AsyncMock, MagicMock

import openai
import pytest

from promptlab.llm_clients.base import GroundedText, ProviderError
from promptlab.llm_clients.echo_client import EchoProvider
from promptlab.llm_clients.factory import create_provider
from promptlab.llm_clients.openai_client import LLMCompletionClient, OpenAICompatibleProvider
from promptlab.workflows.definition import AgentConfig


def make_response(content="ok", annotations=None):
    response = MagicMock()
    response.model_dump.return_value = {
        "choices": [
            {"message": {"role": "assistant", "content": content, "annotations": annotations}}
        ]
    }
    return response


@pytest.fixture
def completion_callable():
    return AsyncMock(return_value=make_response())


@pytest.fixture
def provider(completion_callable):
    client = LLMCompletionClient(completion_callable, openai.OpenAIError, default_model="gemini-2.5-flash")
    return OpenAICompatibleProvider(api_key="test", client=client)


class TestLLMCompletionClient:
    @pytest.mark.asyncio
    async def test_uses_default_model(self, completion_callable):
        client = LLMCompletionClient(completion_callable, openai.OpenAIError, default_model="m1")
        await client.completion([{"role": "user", "content": "hi"}])

        assert completion_callable.call_args.kwargs["model"] == "m1"

    @pytest.mark.asyncio
    async def test_no_model_raises(self, completion_callable):
        client = LLMCompletionClient(completion_callable, openai.OpenAIError)
        with pytest.raises(ValueError):
            await client.completion([])

    @pytest.mark.asyncio
    async def test_api_error_becomes_provider_error(self):
        failing = AsyncMock(side_effect=openai.OpenAIError("quota exceeded"))
        client = LLMCompletionClient(failing, openai.OpenAIError, default_model="m1")

        with pytest.raises(ProviderError, match="quota exceeded"):
            await client.completion([])


class TestOpenAICompatibleProvider:
    @pytest.mark.asyncio
    async def test_generate_text_messages(self, provider, completion_callable):
        completion_callable.return_value = make_response("generated")

        text = await provider.generate_text("Hello", system_instruction="Be brief.")

        assert text == "generated"
        messages = completion_callable.call_args.kwargs["messages"]
        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
        ]

    @pytest.mark.asyncio
    async def test_agent_config_options(self, provider, completion_callable):
        config = AgentConfig(model="other-model", temperature=0.2, top_p=0.9, top_k=10, system_instruction="sys")

        await provider.generate_text("Hello", config=config)

        kwargs = completion_callable.call_args.kwargs
        assert kwargs["model"] == "other-model"
        assert kwargs["temperature"] == 0.2
        assert kwargs["top_p"] == 0.9
        assert "top_k" not in kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_json_response_format(self, provider, completion_callable):
        await provider.generate_text("Plan", config=AgentConfig(response_format="json"))

        assert completion_callable.call_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_explicit_system_instruction_wins(self, provider, completion_callable):
        config = AgentConfig(system_instruction="from config")

        await provider.generate_text("Hello", system_instruction="explicit", config=config)

        assert completion_callable.call_args.kwargs["messages"][0]["content"] == "explicit"

    @pytest.mark.asyncio
    async def test_grounded_text_reads_citations(self, provider, completion_callable):
        completion_callable.return_value = make_response(
            "answer",
            annotations=[
                {"type": "url_citation", "url_citation": {"url": "https://a.example", "title": "A"}},
                {"type": "url_citation", "url_citation": {"url": "", "title": "no uri"}},
                {"type": "other"},
                {"type": "url_citation", "url_citation": {"url": "https://b.example"}},
            ],
        )

        result = await provider.generate_grounded_text("Question?")

        assert isinstance(result, GroundedText)
        assert result.text == "answer"
        assert result.sources == [
            {"uri": "https://a.example", "title": "A"},
            {"uri": "https://b.example", "title": "https://b.example"},
        ]
        assert completion_callable.call_args.kwargs["web_search_options"] == {}

    @pytest.mark.asyncio
    async def test_analyze_image_sends_data_url(self, provider, completion_callable):
        await provider.analyze_image("Describe", b"\x89PNG", "image/png")

        content = completion_callable.call_args.kwargs["messages"][-1]["content"]
        expected = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode("utf-8")
        assert content[0] == {"type": "text", "text": "Describe"}
        assert content[1]["image_url"]["url"] == expected

    @pytest.mark.asyncio
    async def test_empty_choices(self, provider, completion_callable):
        response = MagicMock()
        response.model_dump.return_value = {"choices": []}
        completion_callable.return_value = response

        with pytest.raises(ProviderError):
            await provider.generate_text("Hello")


class TestEchoProvider:
    @pytest.mark.asyncio
    async def test_echo(self):
        provider = EchoProvider(prefix="> ")

        assert await provider.generate_text("hi") == "> hi"
        grounded = await provider.generate_grounded_text("q")
        assert grounded.to_dict() == {"text": "> q", "sources": []}
        assert await provider.analyze_image("look", b"abc", "image/jpeg") == "> look [image/jpeg, 3 bytes]"
        assert [call["method"] for call in provider.calls] == [
            "generate_text",
            "generate_grounded_text",
            "analyze_image",
        ]


class TestCreateProvider:
    def _settings(self, **values):
        settings = MagicMock()
        settings.get_setting.side_effect = lambda name, default=None: values.get(name, default)
        return settings

    def test_echo(self):
        assert isinstance(create_provider(self._settings(model_provider="echo")), EchoProvider)

    def test_openai(self):
        provider = create_provider(
            self._settings(
                model_provider="openai",
                provider_api_key="key",
                provider_base_url="https://api.openai.com/v1",
                default_model="gpt-4o-mini",
            )
        )

        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.client.default_model == "gpt-4o-mini"

    def test_openai_requires_key(self):
        with pytest.raises(ValueError, match="API key"):
            create_provider(self._settings(model_provider="openai"))

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            create_provider(self._settings(model_provider="nope"))
