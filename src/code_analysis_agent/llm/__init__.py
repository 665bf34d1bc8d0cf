"""
LLM module for multi-provider model support.

Providers:
- Anthropic Claude (native SDK, embedded tool blocks)
- OpenAI GPT (native SDK, separate tool-call channel)
- OpenRouter, DeepSeek, Google Gemini (via OpenAI-compatible endpoints)
"""

from .base import (
    BaseLLM,
    ContentBlock,
    LLMMessage,
    LLMResponse,
    ProviderError,
    ResponseKind,
    StopReason,
    TextBlock,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "ContentBlock",
    "LLMMessage",
    "LLMResponse",
    "ProviderError",
    "ResponseKind",
    "StopReason",
    "TextBlock",
    "TokenUsage",
    "ToolCall",
    "ToolDefinition",
    "ToolResultBlock",
    "ToolUseBlock",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]
