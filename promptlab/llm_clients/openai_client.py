"""
Async LLM client for OpenAI-compatible chat, vision and web-search completions.

The default endpoint is Gemini's OpenAI-compatible API; any other
OpenAI-compatible server (OpenAI, Azure OpenAI, local gateways) works by
changing ``base_url``.
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import openai

from .base import GroundedText, ModelProvider, ProviderError

logger = logging.getLogger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.5-flash"


class LLMCompletionClient:
    """
    Async generic wrapper for LLM chat/vision completion endpoints.
    Accepts an async callable (OpenAI-compatible completion endpoint), error type, and an optional default_model.
    If model is not specified in completion, self.default_model is used.
    """

    def __init__(self, completion_callable, error_type, default_model: str = None):
        self.completion_callable = completion_callable
        self.error_type = error_type
        self.default_model = default_model

    async def completion(
        self, messages: List[Dict[str, Any]], model: str = None, **kwargs
    ) -> Dict[str, Any]:
        """
        Run a chat/vision completion. If model is not provided, uses self.default_model.
        """
        model_to_use = model or self.default_model
        if not model_to_use:
            raise ValueError("No model specified and no default_model set.")
        try:
            response = await self.completion_callable(
                model=model_to_use, messages=messages, **kwargs
            )
        except self.error_type as e:
            raise ProviderError(f"LLM API error: {e}") from e
        return response.model_dump()


def _image_data_url(image_bytes: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _message(response: Dict[str, Any]) -> Dict[str, Any]:
    choices = response.get("choices") or []
    if not choices:
        raise ProviderError("LLM API returned no choices")
    return choices[0].get("message") or {}


def _sources(message: Dict[str, Any]) -> List[Dict[str, str]]:
    """Read url_citation annotations, keeping only those with a usable uri."""
    sources = []
    for annotation in message.get("annotations") or []:
        if annotation.get("type") != "url_citation":
            continue
        citation = annotation.get("url_citation") or {}
        uri = citation.get("url")
        if not uri:
            continue
        sources.append({"uri": uri, "title": citation.get("title") or uri})
    return sources


class OpenAICompatibleProvider(ModelProvider):
    """
    Model provider backed by an OpenAI-compatible chat completions API.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = GEMINI_OPENAI_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        client: Optional[LLMCompletionClient] = None,
    ):
        if client is None:
            self.async_client = openai.AsyncClient(api_key=api_key, base_url=base_url)
            client = LLMCompletionClient(
                self.async_client.chat.completions.create,
                openai.OpenAIError,
                default_model=default_model,
            )
        else:
            self.async_client = None
        self.client = client
        self.base_url = base_url

    def _request_options(self, config) -> Dict[str, Any]:
        options: Dict[str, Any] = {}
        if config is None:
            return options
        if config.model:
            options["model"] = config.model
        if config.temperature is not None:
            options["temperature"] = config.temperature
        if config.top_p is not None:
            options["top_p"] = config.top_p
        if config.response_format == "json":
            options["response_format"] = {"type": "json_object"}
        if config.top_k is not None:
            logger.debug(f"top_k={config.top_k} is not supported by the chat completions API, ignoring")
        return options

    @staticmethod
    def _messages(
        content: Any, system_instruction: Optional[str], config
    ) -> List[Dict[str, Any]]:
        instruction = system_instruction
        if instruction is None and config is not None:
            instruction = config.system_instruction
        messages = []
        if instruction:
            messages.append({"role": "system", "content": instruction})
        messages.append({"role": "user", "content": content})
        return messages

    async def generate_text(self, prompt, system_instruction=None, config=None) -> str:
        response = await self.client.completion(
            self._messages(prompt, system_instruction, config),
            **self._request_options(config),
        )
        return _message(response).get("content") or ""

    async def generate_grounded_text(
        self, prompt, system_instruction=None, config=None
    ) -> GroundedText:
        response = await self.client.completion(
            self._messages(prompt, system_instruction, config),
            web_search_options={},
            **self._request_options(config),
        )
        message = _message(response)
        sources = _sources(message)
        logger.debug(f"Grounded completion returned {len(sources)} sources")
        return GroundedText(text=message.get("content") or "", sources=sources)

    async def analyze_image(
        self, prompt, image_bytes, mime_type, config=None, system_instruction=None
    ) -> str:
        content = [
            {"type": "text", "text": prompt},
            {
                "type": "image_url",
                "image_url": {"url": _image_data_url(image_bytes, mime_type)},
            },
        ]
        response = await self.client.completion(
            self._messages(content, system_instruction, config),
            **self._request_options(config),
        )
        return _message(response).get("content") or ""

    async def close(self) -> None:
        if self.async_client is not None:
            await self.async_client.close()
