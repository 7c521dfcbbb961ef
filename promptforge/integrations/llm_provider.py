"""
Configurable generation client for PromptForge.

Supports OpenAI, Anthropic, and Azure OpenAI behind the GenerationClient
interface: streaming text generation for tests and chain stages, and JSON
generation for refinement, critique and evaluation.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import structlog
from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI

from ..core.errors import GenerationError, PromptForgeError
from ..core.interfaces import ChunkCallback, GenerationClient
from ..utils.config import PromptForgeConfig

logger = structlog.get_logger(__name__)

ANTHROPIC_DEFAULT_MAX_TOKENS = 4096  # Anthropic requires max_tokens

STRUCTURED_OUTPUT_INSTRUCTIONS = """Respond ONLY with a single valid JSON object matching this JSON schema:
{schema}
Do not wrap the JSON in markdown fences or add any commentary."""


class ConfigurableGenerationClient(GenerationClient):
    """Generation client that supports multiple backends based on configuration."""

    def __init__(self, config: PromptForgeConfig):
        self.config = config
        self.provider = config.llm_provider
        self._client = None
        self._model: Optional[str] = None
        self._setup_client()
        logger.info("Initialized generation client", provider=self.provider, model=self._model)

    def _setup_client(self) -> None:
        """Setup the appropriate client based on configuration."""
        if self.provider == "openai":
            self.config.validate_openai()
            self._client = AsyncOpenAI(api_key=self.config.openai_api_key)
            self._model = self.config.openai_model
        elif self.provider == "anthropic":
            self.config.validate_anthropic()
            self._client = AsyncAnthropic(api_key=self.config.anthropic_api_key)
            self._model = self.config.anthropic_model
        elif self.provider == "azure_openai":
            self.config.validate_azure_openai()
            self._client = AsyncAzureOpenAI(
                api_key=self.config.azure_openai_api_key,
                azure_endpoint=self.config.azure_openai_endpoint,
                api_version=self.config.azure_openai_api_version,
            )
            self._model = self.config.azure_openai_deployment
        else:
            raise ValueError(f"Unsupported LLM provider: {self.provider}")

    @property
    def model(self) -> Optional[str]:
        return self._model

    async def stream(
        self,
        prompt_text: str,
        on_chunk: ChunkCallback,
        *,
        model: Optional[str] = None,
    ) -> None:
        """Stream a completion, delivering text deltas to ``on_chunk`` in order."""
        model = model or self._model
        try:
            if self.provider in ("openai", "azure_openai"):
                coro = self._openai_stream(prompt_text, on_chunk, model)
            else:
                coro = self._anthropic_stream(prompt_text, on_chunk, model)
            await asyncio.wait_for(coro, timeout=self.config.request_timeout_s)
        except PromptForgeError:
            raise
        except asyncio.TimeoutError as e:
            logger.error("Generation stream timed out", provider=self.provider, model=model)
            raise GenerationError(
                f"Request timed out after {self.config.request_timeout_s:.0f}s"
            ) from e
        except Exception as e:
            logger.error("Generation stream failed", error=str(e), provider=self.provider, model=model)
            raise GenerationError(f"Generation failed: {e}") from e

    async def generate_structured(
        self,
        prompt_text: str,
        schema: Dict[str, Any],
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Generate a JSON object described by ``schema``."""
        model = model or self.config.analysis_model or self._model
        instructions = STRUCTURED_OUTPUT_INSTRUCTIONS.format(schema=json.dumps(schema, indent=2))
        system = f"{system_prompt}\n\n{instructions}" if system_prompt else instructions

        try:
            if self.provider in ("openai", "azure_openai"):
                coro = self._openai_json(prompt_text, system, model)
            else:
                coro = self._anthropic_json(prompt_text, system, model)
            text = await asyncio.wait_for(coro, timeout=self.config.request_timeout_s)
        except asyncio.TimeoutError as e:
            logger.error("Structured generation timed out", provider=self.provider, model=model)
            raise GenerationError(
                f"Request timed out after {self.config.request_timeout_s:.0f}s"
            ) from e
        except Exception as e:
            logger.error("Structured generation failed", error=str(e), provider=self.provider, model=model)
            raise GenerationError(f"Structured generation failed: {e}") from e

        return parse_json_object(text)

    async def _openai_stream(self, prompt_text: str, on_chunk: ChunkCallback, model: str) -> None:
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt_text}],
            "temperature": self.config.temperature,
            "stream": True,
        }
        if self.config.max_tokens:
            kwargs["max_tokens"] = self.config.max_tokens

        response = await self._client.chat.completions.create(**kwargs)
        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                on_chunk(delta)

    async def _anthropic_stream(self, prompt_text: str, on_chunk: ChunkCallback, model: str) -> None:
        async with self._client.messages.stream(
            model=model,
            messages=[{"role": "user", "content": prompt_text}],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    on_chunk(text)

    async def _openai_json(self, prompt_text: str, system_prompt: str, model: str) -> str:
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt_text},
        ]
        response = await self._client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=self.config.analysis_temperature,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    async def _anthropic_json(self, prompt_text: str, system_prompt: str, model: str) -> str:
        response = await self._client.messages.create(
            model=model,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt_text}],
            temperature=self.config.analysis_temperature,
            max_tokens=self.config.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
        )
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a JSON object from model output.

    Falls back to the outermost ``{...}`` span when the model wrapped the
    object in prose or code fences.
    """
    text = (text or "").strip()
    try:
        result = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            logger.error("No JSON object in model output", preview=text[:200])
            raise GenerationError("Invalid AI response format: no JSON object found")
        try:
            result = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            logger.error("Failed to parse model output as JSON", preview=text[:200])
            raise GenerationError(f"Invalid AI response format: {e}") from e

    if not isinstance(result, dict):
        raise GenerationError("Invalid AI response format: expected a JSON object")
    return result


def create_generation_client(config: Optional[PromptForgeConfig] = None) -> GenerationClient:
    """Factory function to create a configured generation client."""
    if config is None:
        from ..utils.config import config as default_config

        config = default_config

    return ConfigurableGenerationClient(config)
