"""
Model provider capability contract.

The workflow engine only talks to models through this interface; vendor
adapters live next to it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..workflows.definition import AgentConfig


class ProviderError(RuntimeError):
    """A model call failed (transport, auth, quota, malformed response)."""


@dataclass
class GroundedText:
    """Generated text plus the web sources it was grounded on."""

    text: str
    sources: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "sources": [dict(source) for source in self.sources]}


class ModelProvider(ABC):
    """Async text, grounded-text and image analysis capability."""

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        config: Optional["AgentConfig"] = None,
    ) -> str:
        pass

    @abstractmethod
    async def generate_grounded_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        config: Optional["AgentConfig"] = None,
    ) -> GroundedText:
        pass

    @abstractmethod
    async def analyze_image(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        config: Optional["AgentConfig"] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        pass

    async def close(self) -> None:
        """Release network resources held by the provider."""
        return None
