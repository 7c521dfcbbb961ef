"""
Single-prompt testing and side-by-side model comparison.

Unlike a chain, the two calls of a comparison do not depend on each other,
so they are streamed concurrently.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

import structlog

from .errors import GenerationError
from .interfaces import ChunkCallback, GenerationClient
from .models import PromptHistoryItem, PromptSpec
from .prompt_assembly import build_system_instruction

logger = structlog.get_logger(__name__)

_PUNCTUATION = re.compile(r"[.,!?;:]")


@dataclass
class GenerationOutput:
    """Output of one streamed test call."""
    model: Optional[str]
    prompt_text: str
    output: str
    duration_ms: float


@dataclass
class ComparisonResult:
    """Outputs of the same prompt run against two models."""
    prompt_text: str
    a: GenerationOutput
    b: GenerationOutput


class PromptTester:
    """Runs a RICCE prompt once, or against two models side by side."""

    def __init__(self, client: GenerationClient):
        self.client = client

    async def run_test(
        self,
        prompt: PromptSpec,
        variables: Optional[Mapping[str, str]] = None,
        model: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> GenerationOutput:
        prompt_text = build_system_instruction(prompt, dict(variables or {}))
        return await self._stream(prompt_text, model, on_chunk)

    async def compare(
        self,
        prompt: PromptSpec,
        variables: Optional[Mapping[str, str]],
        model_a: str,
        model_b: str,
        on_chunk_a: Optional[ChunkCallback] = None,
        on_chunk_b: Optional[ChunkCallback] = None,
    ) -> ComparisonResult:
        """
        Stream the prompt to two models concurrently.

        Both calls are allowed to settle; if either failed, GenerationError is
        raised afterwards.
        """
        prompt_text = build_system_instruction(prompt, dict(variables or {}))
        logger.info("Starting model comparison", model_a=model_a, model_b=model_b)

        results = await asyncio.gather(
            self._stream(prompt_text, model_a, on_chunk_a),
            self._stream(prompt_text, model_b, on_chunk_b),
            return_exceptions=True,
        )

        errors = [
            (model, result)
            for model, result in zip((model_a, model_b), results)
            if isinstance(result, BaseException)
        ]
        if errors:
            for model, error in errors:
                logger.error("Comparison call failed", model=model, error=str(error))
            model, error = errors[0]
            if not isinstance(error, Exception):
                raise error
            raise GenerationError(f"Comparison failed for model {model}: {error}") from error

        return ComparisonResult(prompt_text=prompt_text, a=results[0], b=results[1])

    async def _stream(
        self, prompt_text: str, model: Optional[str], on_chunk: Optional[ChunkCallback]
    ) -> GenerationOutput:
        parts: List[str] = []

        def collect(chunk: str) -> None:
            parts.append(chunk)
            if on_chunk:
                on_chunk(chunk)

        start = time.monotonic()
        await self.client.stream(prompt_text, collect, model=model)
        return GenerationOutput(
            model=model,
            prompt_text=prompt_text,
            output="".join(parts),
            duration_ms=(time.monotonic() - start) * 1000,
        )


def history_item_for(
    prompt: PromptSpec,
    variables: Optional[Mapping[str, str]],
    a: GenerationOutput,
    b: Optional[GenerationOutput] = None,
) -> PromptHistoryItem:
    """Build a history record for a test or comparison."""
    return PromptHistoryItem(
        prompt_data=prompt.to_dict(),
        variables=dict(variables or {}),
        output_a=a.output,
        output_b=b.output if b else None,
        model_a=a.model,
        model_b=b.model if b else None,
        is_comparison=b is not None,
    )


def _normalize_word(word: str) -> str:
    return _PUNCTUATION.sub("", word.lower()).strip()


def word_diff(baseline: str, challenger: str) -> List[Tuple[str, bool]]:
    """
    Split ``challenger`` into tokens and flag words missing from ``baseline``.

    Whitespace runs are kept as their own tokens so joining the token texts
    reproduces ``challenger`` exactly. Words shorter than two characters
    (after lowercasing and stripping ``.,!?;:``) are never flagged.
    """
    baseline_words = {
        w for w in (_normalize_word(part) for part in baseline.split()) if len(w) > 1
    }
    tokens = [token for token in re.split(r"(\s+)", challenger) if token]

    diff = []
    for token in tokens:
        clean = _normalize_word(token)
        is_new = len(clean) > 1 and clean not in baseline_words
        diff.append((token, is_new))
    return diff
