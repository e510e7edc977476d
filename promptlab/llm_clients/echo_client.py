"""
In-process provider that echoes prompts back.

Used for local dry runs of workflows and in tests; no network access.
"""

from typing import Any, Dict, List

from .base import GroundedText, ModelProvider


class EchoProvider(ModelProvider):
    """Returns ``prefix + prompt`` for every call and records the calls made."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.calls: List[Dict[str, Any]] = []

    def _record(self, method: str, prompt: str, system_instruction, config, **extra) -> None:
        self.calls.append(
            {
                "method": method,
                "prompt": prompt,
                "system_instruction": system_instruction,
                "config": config,
                **extra,
            }
        )

    async def generate_text(self, prompt, system_instruction=None, config=None) -> str:
        self._record("generate_text", prompt, system_instruction, config)
        return f"{self.prefix}{prompt}"

    async def generate_grounded_text(
        self, prompt, system_instruction=None, config=None
    ) -> GroundedText:
        self._record("generate_grounded_text", prompt, system_instruction, config)
        return GroundedText(text=f"{self.prefix}{prompt}", sources=[])

    async def analyze_image(
        self, prompt, image_bytes, mime_type, config=None, system_instruction=None
    ) -> str:
        self._record(
            "analyze_image",
            prompt,
            system_instruction,
            config,
            mime_type=mime_type,
            size=len(image_bytes),
        )
        return f"{self.prefix}{prompt} [{mime_type}, {len(image_bytes)} bytes]"
