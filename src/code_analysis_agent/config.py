"""
Configuration management for code-analysis-agent

Uses pydantic-settings for environment variable parsing and validation.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Provider = Literal["anthropic", "openai", "openrouter", "deepseek", "google"]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Provider = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    max_context_tokens: int | None = None
    max_retries: int = 0
    system_role: str = "developer"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "code-analysis-agent"
    debug: bool = False
    log_level: str = "INFO"

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    deepseek_api_key: str = Field(default="", description="DeepSeek API key")
    google_api_key: str = Field(default="", description="Google AI API key for Gemini")

    # Default model settings
    default_provider: Provider = "anthropic"
    default_model: str = ""
    max_tokens: int = 4096
    temperature: float | None = None
    max_retries: int = Field(default=0, description="SDK-level retries per provider call")
    max_context_tokens: int | None = Field(
        default=None, description="Override the model's context window size"
    )
    openai_system_role: str = Field(
        default="developer", description="Role name used for system messages on OpenAI"
    )

    # Agent loop
    max_iterations: int = Field(default=30, ge=1)
    compaction_ratio: float = Field(default=0.75, gt=0, le=1)

    # Tools
    analysis_target_dir: str = Field(default="", description="Project root the tools operate on")
    analysis_output_dir: str = Field(default=".code-analysis", description="Reserved output subtree")
    max_file_size_kb: int = 500
    max_list_depth: int = 5

    @field_validator("analysis_output_dir", mode="before")
    @classmethod
    def strip_output_dir(cls, v: str) -> str:
        return v.strip().strip("/\\") if v else ".code-analysis"

    @property
    def effective_log_level(self) -> str:
        """DEBUG wins over LOG_LEVEL when debug mode is on."""
        return "DEBUG" if self.debug else self.log_level.upper()

    @property
    def target_directory(self) -> Path:
        """Resolved project root (defaults to the current directory)."""
        return Path(self.analysis_target_dir or os.getcwd()).expanduser().resolve()

    def get_llm_config(self, provider: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "deepseek": self.deepseek_api_key,
            "google": self.google_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o",
            "openrouter": "anthropic/claude-sonnet-4",
            "deepseek": "deepseek-chat",
            "google": "gemini-2.5-flash",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
            "deepseek": "https://api.deepseek.com",
            "google": "https://generativelanguage.googleapis.com/v1beta/openai/",
        }

        if provider not in api_key_map:
            raise ValueError(f"Unknown LLM provider: {provider}")

        model = model_map[provider]
        if self.default_model and provider == self.default_provider:
            model = self.default_model

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map[provider],
            base_url=base_url_map[provider],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            max_context_tokens=self.max_context_tokens,
            max_retries=self.max_retries,
            # Compatible endpoints only understand the classic role name
            system_role=self.openai_system_role if provider == "openai" else "system",
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
