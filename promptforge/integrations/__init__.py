"""Integrations with generation services and local storage."""

from .llm_provider import ConfigurableGenerationClient, create_generation_client
from .local_store import LocalPromptStore

__all__ = ["ConfigurableGenerationClient", "create_generation_client", "LocalPromptStore"]
