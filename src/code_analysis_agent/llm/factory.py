"""
LLM factory for creating provider instances.

Supports: Anthropic Claude, OpenAI GPT, and OpenAI-compatible endpoints
(OpenRouter, DeepSeek, Google Gemini).
"""

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - openai -> OpenAILLM (native OpenAI SDK)
    - openrouter, deepseek, google -> OpenAILLM (OpenAI-compatible endpoint)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    provider = config.provider

    if provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            max_context_tokens=config.max_context_tokens,
            max_retries=config.max_retries,
        )
    elif provider in ("openai", "openrouter", "deepseek", "google"):
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            max_context_tokens=config.max_context_tokens,
            max_retries=config.max_retries,
            system_role=config.system_role,
            provider=provider,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")
