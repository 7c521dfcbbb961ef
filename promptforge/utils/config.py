"""Configuration management for PromptForge."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

SUPPORTED_PROVIDERS = ("openai", "anthropic", "azure_openai")


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value else None


@dataclass
class PromptForgeConfig:
    """Configuration settings for PromptForge."""

    # LLM Configuration
    llm_provider: str = "openai"  # openai, anthropic, azure_openai

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    openai_comparison_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    anthropic_comparison_model: str = "claude-3-5-haiku-20241022"

    # Azure OpenAI
    azure_openai_api_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_deployment: Optional[str] = None
    azure_openai_api_version: str = "2024-02-01"

    # Refine / critique / evaluate
    analysis_model: Optional[str] = None  # defaults to the provider model
    analysis_temperature: float = 0.2

    # Generation settings
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    request_timeout_s: float = 120.0

    # General settings
    log_level: str = "WARNING"
    debug: bool = False
    storage_dir: str = str(Path.home() / ".promptforge")
    history_limit: int = 50

    @classmethod
    def from_env(cls) -> "PromptForgeConfig":
        """Load configuration from environment variables."""
        return cls(
            llm_provider=os.getenv("LLM_PROVIDER", "openai"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            openai_comparison_model=os.getenv("OPENAI_COMPARISON_MODEL", "gpt-4o-mini"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022"),
            anthropic_comparison_model=os.getenv(
                "ANTHROPIC_COMPARISON_MODEL", "claude-3-5-haiku-20241022"
            ),
            azure_openai_api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            azure_openai_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
            azure_openai_deployment=os.getenv("AZURE_OPENAI_DEPLOYMENT"),
            azure_openai_api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01"),
            analysis_model=os.getenv("PROMPTFORGE_ANALYSIS_MODEL") or None,
            analysis_temperature=float(os.getenv("PROMPTFORGE_ANALYSIS_TEMPERATURE", "0.2")),
            temperature=float(os.getenv("PROMPTFORGE_TEMPERATURE", "0.7")),
            max_tokens=_optional_int(os.getenv("PROMPTFORGE_MAX_TOKENS")),
            request_timeout_s=float(os.getenv("PROMPTFORGE_REQUEST_TIMEOUT_S", "120")),
            log_level=os.getenv("LOG_LEVEL", "WARNING"),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            storage_dir=os.getenv(
                "PROMPTFORGE_STORAGE_DIR", str(Path.home() / ".promptforge")
            ),
            history_limit=int(os.getenv("PROMPTFORGE_HISTORY_LIMIT", "50")),
        )

    @property
    def default_model(self) -> Optional[str]:
        """Model used for chain stages and single tests."""
        if self.llm_provider == "anthropic":
            return self.anthropic_model
        if self.llm_provider == "azure_openai":
            return self.azure_openai_deployment
        return self.openai_model

    @property
    def comparison_model(self) -> Optional[str]:
        """Default challenger model for side-by-side comparisons."""
        if self.llm_provider == "anthropic":
            return self.anthropic_comparison_model
        if self.llm_provider == "azure_openai":
            return self.azure_openai_deployment
        return self.openai_comparison_model

    @property
    def effective_analysis_model(self) -> Optional[str]:
        return self.analysis_model or self.default_model

    def validate_openai(self) -> None:
        if not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when using OpenAI provider")

    def validate_anthropic(self) -> None:
        if not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is required when using Anthropic provider")

    def validate_azure_openai(self) -> None:
        if not all([self.azure_openai_api_key, self.azure_openai_endpoint, self.azure_openai_deployment]):
            raise ValueError("Azure OpenAI requires API key, endpoint, and deployment")

    def validate(self) -> None:
        """Validate configuration for the selected provider."""
        if self.llm_provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported LLM provider: {self.llm_provider} "
                f"(expected one of: {', '.join(SUPPORTED_PROVIDERS)})"
            )

        if self.llm_provider == "openai":
            self.validate_openai()
        elif self.llm_provider == "anthropic":
            self.validate_anthropic()
        elif self.llm_provider == "azure_openai":
            self.validate_azure_openai()

        if self.temperature < 0.0 or self.temperature > 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")

        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive")

        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")


# Global config instance
config = PromptForgeConfig.from_env()
