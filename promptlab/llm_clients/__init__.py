"""Async model provider clients."""

from .base import GroundedText, ModelProvider, ProviderError
from .echo_client import EchoProvider
from .factory import create_provider
from .openai_client import LLMCompletionClient, OpenAICompatibleProvider

__all__ = [
    "ModelProvider",
    "GroundedText",
    "ProviderError",
    "LLMCompletionClient",
    "OpenAICompatibleProvider",
    "EchoProvider",
    "create_provider",
]
