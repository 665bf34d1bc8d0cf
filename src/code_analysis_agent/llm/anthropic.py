"""
Anthropic Claude LLM provider.

Tool requests and results travel as typed blocks inside message content; the
system message is hoisted into the request's ``system`` field.
"""

from typing import Any

import anthropic
import structlog

from .base import (
    BaseLLM,
    LLMMessage,
    LLMResponse,
    ProviderError,
    StopReason,
    TextBlock,
    TokenUsage,
    ToolCall,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)

logger = structlog.get_logger()

STOP_REASON_MAP = {
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.STOP_SEQUENCE,
    "max_tokens": StopReason.MAX_TOKENS,
    "tool_use": StopReason.TOOL_USE,
    "refusal": StopReason.CONTENT_FILTER,
}


class AnthropicLLM(BaseLLM):
    """Anthropic Claude LLM provider."""

    # Claude's tokenizer averages closer to 3.5 characters per token
    chars_per_token = 3.5
    default_max_context_tokens = 200_000

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
        max_context_tokens: int | None = None,
        max_retries: int = 0,
    ):
        if not api_key:
            raise ValueError("Anthropic API key is required")
        super().__init__(api_key, model, base_url, max_tokens, temperature, max_context_tokens)
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _model_context_tokens(self) -> int:
        if self.model.startswith("claude-2") or "instant" in self.model:
            return 100_000
        return 200_000

    def _convert_block(self, block: Any) -> dict[str, Any]:
        if isinstance(block, TextBlock):
            return {"type": "text", "text": block.text}
        if isinstance(block, ToolUseBlock):
            return {
                "type": "tool_use",
                "id": block.tool_call_id,
                "name": block.name,
                "input": block.arguments,
            }
        if isinstance(block, ToolResultBlock):
            return {
                "type": "tool_result",
                "tool_use_id": block.tool_call_id,
                "content": block.output,
            }
        raise ProviderError(f"Unsupported content block: {block!r}", provider=self.provider_name)

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to Anthropic format."""
        converted = []

        for msg in messages:
            if msg.role == "system":
                continue

            if msg.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": msg.tool_call_id,
                            "content": msg.text,
                        }
                    ],
                })
            elif msg.role == "assistant" and msg.tool_calls:
                content: list[dict[str, Any]] = []
                if msg.text:
                    content.append({"type": "text", "text": msg.text})
                for tc in msg.tool_calls:
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                converted.append({"role": "assistant", "content": content})
            elif isinstance(msg.content, list):
                converted.append({
                    "role": msg.role,
                    "content": [self._convert_block(b) for b in msg.content],
                })
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to Anthropic format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.parameters,
            }
            for tool in tools
        ]

    def _extract_system_prompt(self, messages: list[LLMMessage]) -> str | None:
        """Extract system prompt from messages."""
        for msg in messages:
            if msg.role == "system":
                return msg.text
        return None

    def _normalize_response(self, response: Any) -> LLMResponse:
        content = ""
        tool_calls = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input) if isinstance(block.input, dict) else {},
                ))

        raw_stop = response.stop_reason
        try:
            return LLMResponse(
                content=content,
                tool_calls=tool_calls,
                stop_reason=STOP_REASON_MAP.get(raw_stop, StopReason.OTHER),
                usage=TokenUsage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                ),
                model=getattr(response, "model", self.model) or self.model,
                raw_stop_reason=raw_stop,
            )
        except ValueError as e:
            raise ProviderError(f"Malformed Claude response: {e}", provider=self.provider_name) from e

    async def send_message(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Send the conversation to Claude."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": self._convert_messages(messages),
        }

        system = self._extract_system_prompt(messages)
        if system:
            kwargs["system"] = system

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        resolved_temperature = self._resolve_temperature(temperature)
        if resolved_temperature is not None:
            kwargs["temperature"] = resolved_temperature

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("Anthropic API error", error=str(e))
            raise ProviderError(
                f"Claude API error: {e}",
                provider=self.provider_name,
                status_code=getattr(e, "status_code", None),
            ) from e

        return self._normalize_response(response)
