"""
Base classes for LLM providers.

Every provider speaks the same logical message model (``LLMMessage`` with
optional content blocks) and returns a validated ``LLMResponse``.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from ..errors import ProviderError

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
]


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class TextBlock:
    text: str
    type: Literal["text"] = "text"


@dataclass
class ToolUseBlock:
    """A tool-invocation request embedded in an assistant message."""

    tool_call_id: str
    name: str
    arguments: dict[str, Any]
    type: Literal["tool_use"] = "tool_use"


@dataclass
class ToolResultBlock:
    """A tool-invocation result embedded in a user message."""

    tool_call_id: str
    name: str
    output: str
    type: Literal["tool_result"] = "tool_result"


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class LLMMessage:
    """A message in the conversation.

    ``content`` is either plain text or a list of content blocks. The
    ``tool_calls``/``tool_call_id`` fields carry the separate-channel
    encoding used by OpenAI-style providers.
    """

    role: Literal["user", "assistant", "system", "tool"]
    content: str | list[ContentBlock]
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @property
    def blocks(self) -> list[ContentBlock]:
        if isinstance(self.content, str):
            return []
        return list(self.content)

    @property
    def text(self) -> str:
        """Textual content only (text blocks joined by spaces)."""
        if isinstance(self.content, str):
            return self.content
        return " ".join(b.text for b in self.content if isinstance(b, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe rendering of the message."""
        data: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            data["content"] = self.content
        else:
            data["content"] = [asdict(block) for block in self.content]
        if self.tool_calls:
            data["tool_calls"] = [asdict(tc) for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        return data


class StopReason(str, Enum):
    """Provider-declared reason for ending a turn."""

    END_TURN = "end_turn"
    STOP_SEQUENCE = "stop_sequence"
    MAX_TOKENS = "max_tokens"
    TOOL_USE = "tool_use"
    CONTENT_FILTER = "content_filter"
    OTHER = "other"

    @property
    def is_natural_completion(self) -> bool:
        return self in (StopReason.END_TURN, StopReason.STOP_SEQUENCE)


class ResponseKind(str, Enum):
    TEXT = "text"
    TOOL_CALLS = "tool_calls"
    MIXED = "mixed"
    EMPTY = "empty"


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class LLMResponse:
    """Normalized response from an LLM.

    Construction validates the tool calls, so anything holding an
    ``LLMResponse`` can rely on unique, non-empty ids and dict arguments.
    """

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: StopReason = StopReason.END_TURN
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""
    raw_stop_reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.content, str):
            raise ValueError("Response content must be a string")
        seen: set[str] = set()
        for tc in self.tool_calls:
            if not tc.id:
                raise ValueError(f"Tool call '{tc.name}' has no id")
            if tc.id in seen:
                raise ValueError(f"Duplicate tool call id: {tc.id}")
            if not tc.name:
                raise ValueError(f"Tool call {tc.id} has no name")
            if not isinstance(tc.arguments, dict):
                raise ValueError(f"Tool call {tc.id} arguments must be an object")
            seen.add(tc.id)

    @property
    def kind(self) -> ResponseKind:
        if self.content and self.tool_calls:
            return ResponseKind.MIXED
        if self.tool_calls:
            return ResponseKind.TOOL_CALLS
        if self.content:
            return ResponseKind.TEXT
        return ResponseKind.EMPTY

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class BaseLLM(ABC):
    """Base class for LLM providers."""

    chars_per_token: float = 4.0
    default_max_context_tokens: int = 128_000

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
        max_context_tokens: int | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_context_tokens = max_context_tokens

    @abstractmethod
    async def send_message(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Send the conversation and return a normalized response.

        Raises:
            ProviderError: on any SDK/transport failure or malformed response.
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

    @property
    def model_name(self) -> str:
        return self.model

    def count_tokens(self, text: str) -> int:
        """Approximate token count; only used to decide when to compact."""
        return math.ceil(len(text) / self.chars_per_token)

    def count_message_tokens(self, messages: list[LLMMessage]) -> int:
        total = 0
        for msg in messages:
            if isinstance(msg.content, str) and not msg.tool_calls:
                total += self.count_tokens(msg.content)
            else:
                data = msg.to_dict()
                data.pop("role", None)
                total += self.count_tokens(json.dumps(data, ensure_ascii=False))
        return total

    def get_max_context_tokens(self) -> int:
        if self.max_context_tokens:
            return self.max_context_tokens
        return self._model_context_tokens()

    def _model_context_tokens(self) -> int:
        return self.default_max_context_tokens

    def _resolve_temperature(self, temperature: float | None) -> float | None:
        return temperature if temperature is not None else self.temperature
