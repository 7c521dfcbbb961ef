"""
Prompt refinement, critique and output evaluation.

Each operation is a single structured-generation call: the request is rendered
from a Jinja2 template, the model answers with JSON matching a schema from
``schemas``, and the JSON is validated into a PromptForge model.
"""

import json
from typing import Any, Callable, Dict, Optional

import structlog
from jinja2 import Template
from pydantic import ValidationError

from ..core.errors import GenerationError
from ..core.interfaces import GenerationClient
from ..core.models import PROMPT_FIELDS, AnalysisResult, EvaluationResult, PromptSpec
from ..prompts.system_prompts import (
    ANALYZE_REQUEST_TEMPLATE,
    ANALYZE_SYSTEM_PROMPT,
    EVALUATE_REQUEST_TEMPLATE,
    EVALUATE_SYSTEM_PROMPT,
    REFINE_REQUEST_TEMPLATE,
    REFINE_SYSTEM_PROMPT,
)
from .schemas import OUTPUT_EVALUATION_SCHEMA, PROMPT_ANALYSIS_SCHEMA, RICCE_PROMPT_SCHEMA

logger = structlog.get_logger(__name__)


class PromptRefiner:
    """Refines, critiques and evaluates RICCE prompts with a language model."""

    def __init__(
        self,
        client: GenerationClient,
        model: Optional[str] = None,
        progress_callback: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    ):
        self.client = client
        self.model = model
        self._progress_callback = progress_callback

    async def refine_prompt(self, user_input: str) -> PromptSpec:
        """Turn a vague request into a complete RICCE prompt."""
        if not user_input or not user_input.strip():
            raise ValueError("A request to refine is required")

        request = Template(REFINE_REQUEST_TEMPLATE).render(user_input=user_input.strip())
        data = await self._generate("refine", request, RICCE_PROMPT_SCHEMA, REFINE_SYSTEM_PROMPT)

        missing = [name for name in PROMPT_FIELDS if not isinstance(data.get(name), str)]
        if missing:
            raise GenerationError(
                f"Invalid AI response format: missing fields {', '.join(missing)}"
            )
        return PromptSpec.from_dict(data)

    async def analyze_prompt(self, prompt: PromptSpec) -> AnalysisResult:
        """Critique a prompt and suggest rewrites for weak fields."""
        request = Template(ANALYZE_REQUEST_TEMPLATE).render(
            prompt_json=json.dumps(prompt.to_dict(), ensure_ascii=False)
        )
        data = await self._generate("analyze", request, PROMPT_ANALYSIS_SCHEMA, ANALYZE_SYSTEM_PROMPT)
        return self._validate("analyze", AnalysisResult, data)

    async def evaluate_output(self, prompt: PromptSpec, output: str) -> EvaluationResult:
        """Grade ``output`` against the prompt's evaluation criteria."""
        request = Template(EVALUATE_REQUEST_TEMPLATE).render(
            criteria=prompt.evaluation, output=output
        )
        data = await self._generate(
            "evaluate", request, OUTPUT_EVALUATION_SCHEMA, EVALUATE_SYSTEM_PROMPT
        )
        return self._validate("evaluate", EvaluationResult, data)

    async def _generate(
        self, operation: str, request: str, schema: Dict[str, Any], system_prompt: str
    ) -> Dict[str, Any]:
        logger.info("Structured request started", operation=operation, model=self.model)
        if self._progress_callback:
            self._progress_callback(f"{operation}_started", {"model": self.model})

        data = await self.client.generate_structured(
            request, schema, system_prompt=system_prompt, model=self.model
        )

        if self._progress_callback:
            self._progress_callback(f"{operation}_complete", {"keys": sorted(data)})
        return data

    @staticmethod
    def _validate(operation: str, model_cls, data: Dict[str, Any]):
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            logger.error("Structured response failed validation", operation=operation, error=str(e))
            raise GenerationError(f"Invalid AI response format for {operation}: {e}") from e
