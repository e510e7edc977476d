"""Build the configured model provider."""

import logging

from .base import ModelProvider
from .echo_client import EchoProvider
from .openai_client import OpenAICompatibleProvider

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "echo")


def create_provider(settings) -> ModelProvider:
    """
    Create the provider named by the ``model_provider`` setting.

    Args:
        settings: SettingsManager (anything with ``get_setting``)

    Raises:
        ValueError: If the provider is unknown or the API key is missing
    """
    name = (settings.get_setting("model_provider") or "openai").lower()

    if name == "echo":
        logger.info("Using echo model provider")
        return EchoProvider()

    if name == "openai":
        api_key = settings.get_setting("provider_api_key")
        if not api_key:
            raise ValueError(
                "No API key configured: set PROMPTLAB_PROVIDER_API_KEY, GEMINI_API_KEY or OPENAI_API_KEY"
            )
        base_url = settings.get_setting("provider_base_url")
        logger.info(f"Using OpenAI-compatible model provider at {base_url}")
        return OpenAICompatibleProvider(
            api_key=api_key,
            base_url=base_url,
            default_model=settings.get_setting("default_model"),
        )

    raise ValueError(f"Unknown model provider '{name}', expected one of {', '.join(PROVIDERS)}")
