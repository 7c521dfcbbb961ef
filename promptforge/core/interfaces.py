"""
Abstract interfaces for PromptForge components.

The chain executor, prompt tester and refiner depend only on these contracts,
so the generation backend can be swapped or mocked in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

ChunkCallback = Callable[[str], None]


class GenerationClient(ABC):
    """Interface to a text-generation service."""

    @abstractmethod
    async def stream(
        self,
        prompt_text: str,
        on_chunk: ChunkCallback,
        *,
        model: Optional[str] = None,
    ) -> None:
        """
        Stream one generation call.

        ``on_chunk`` is invoked with incremental text in the order the service
        produced it. Returns only after the stream is exhausted. Raises
        GenerationError if the call cannot be completed; no chunks are
        delivered after the failure.
        """
        pass

    @abstractmethod
    async def generate_structured(
        self,
        prompt_text: str,
        schema: Dict[str, Any],
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate a JSON object matching ``schema``."""
        pass
