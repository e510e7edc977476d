"""
Linked Prompts

Externally authored prompt records referenced from GEMINI_PROMPT tasks by
``promptId``. Their tenor/mode metadata is turned into a system instruction.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class _PromptModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class SFLTenor(_PromptModel):
    """Who is speaking to whom, and how."""

    ai_persona: str = ""
    target_audience: List[str] = Field(default_factory=list)
    desired_tone: str = ""
    interpersonal_stance: str = ""


class SFLMode(_PromptModel):
    """Shape of the expected output."""

    output_format: str = ""
    rhetorical_structure: str = ""
    length_constraint: str = ""
    textual_directives: str = ""


class LinkedPrompt(_PromptModel):
    """Prompt record consumed (not owned) by the engine."""

    id: str
    title: str = ""
    prompt_text: str
    sfl_tenor: SFLTenor = Field(default_factory=SFLTenor)
    sfl_mode: SFLMode = Field(default_factory=SFLMode)


def build_system_instruction(prompt: LinkedPrompt) -> str:
    """
    Synthesize a system instruction from a linked prompt's metadata.

    Clauses are added in a fixed order (persona, tone, audience,
    directives), each only when its source field is non-empty.
    """
    tenor = prompt.sfl_tenor
    parts = []
    if tenor.ai_persona:
        parts.append(f"You will act as a {tenor.ai_persona}.")
    if tenor.desired_tone:
        parts.append(f"Your tone should be {tenor.desired_tone}.")
    if tenor.target_audience:
        parts.append(f"You are writing for {', '.join(tenor.target_audience)}.")
    if prompt.sfl_mode.textual_directives:
        parts.append(f"Follow these directives: {prompt.sfl_mode.textual_directives}.")
    return " ".join(parts)


class PromptResolver(ABC):
    """Lookup of linked prompts by id."""

    @abstractmethod
    async def get_prompt(self, prompt_id: str) -> Optional[LinkedPrompt]:
        """Return the prompt, or None if no prompt has this id."""
        pass


class InMemoryPromptStore(PromptResolver):
    """Prompt lookup backed by a dictionary."""

    def __init__(self, prompts: Optional[Iterable[LinkedPrompt]] = None):
        self._prompts: Dict[str, LinkedPrompt] = {}
        for prompt in prompts or []:
            self.add(prompt)

    def add(self, prompt: LinkedPrompt) -> None:
        self._prompts[prompt.id] = prompt

    async def get_prompt(self, prompt_id: str) -> Optional[LinkedPrompt]:
        return self._prompts.get(prompt_id)

    def __len__(self) -> int:
        return len(self._prompts)

    @classmethod
    def from_file(cls, file_path: str) -> "InMemoryPromptStore":
        """
        Load prompts from a JSON or YAML file holding a list of prompt records.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the document is not a list
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Prompt file not found: {file_path}")

        text = path.read_text(encoding="utf-8")
        data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
        if isinstance(data, dict) and "prompts" in data:
            data = data["prompts"]
        if not isinstance(data, list):
            raise ValueError("Prompt file must contain a list of prompts")

        store = cls(LinkedPrompt.model_validate(item) for item in data)
        logger.info(f"Loaded {len(store)} prompts from {path}")
        return store
