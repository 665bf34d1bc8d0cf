"""
OpenAI GPT LLM provider (also works with OpenRouter and compatible APIs).

Tool requests live in a ``tool_calls`` array on the assistant message and each
tool result is its own ``tool`` message; system messages stay in the list
under the provider's preferred role name.
"""

import json
from typing import Any

import openai
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
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "content_filter": StopReason.CONTENT_FILTER,
}


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    default_max_context_tokens = 128_000

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float | None = None,
        max_context_tokens: int | None = None,
        max_retries: int = 0,
        system_role: str = "developer",
        provider: str = "openai",
    ):
        if not api_key:
            raise ValueError("OpenAI API key is required")
        super().__init__(api_key, model, base_url, max_tokens, temperature, max_context_tokens)
        self.system_role = system_role
        self._provider = provider
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    def _model_context_tokens(self) -> int:
        if "gpt-3.5" in self.model:
            return 16_000
        return 128_000

    def _format_tool_call(self, tool_call_id: str, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": tool_call_id,
            "type": "function",
            "function": {
                "name": name,
                "arguments": json.dumps(arguments),
            },
        }

    def _convert_block_message(self, msg: LLMMessage) -> list[dict[str, Any]]:
        """Split an embedded-block message into OpenAI messages."""
        text = "\n".join(b.text for b in msg.blocks if isinstance(b, TextBlock))
        tool_uses = [b for b in msg.blocks if isinstance(b, ToolUseBlock)]
        tool_results = [b for b in msg.blocks if isinstance(b, ToolResultBlock)]

        converted: list[dict[str, Any]] = []
        if tool_uses:
            converted.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    self._format_tool_call(b.tool_call_id, b.name, b.arguments)
                    for b in tool_uses
                ],
            })
        elif text:
            converted.append({"role": msg.role, "content": text})

        for block in tool_results:
            converted.append({
                "role": "tool",
                "tool_call_id": block.tool_call_id,
                "content": block.output,
            })
        return converted

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == "system":
                converted.append({
                    "role": self.system_role,
                    "content": msg.text,
                })
            elif msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.text,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.text or None,
                    "tool_calls": [
                        self._format_tool_call(tc.id, tc.name, tc.arguments)
                        for tc in msg.tool_calls
                    ],
                })
            elif isinstance(msg.content, list):
                converted.extend(self._convert_block_message(msg))
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    def _parse_arguments(self, raw: str | None, tool_name: str) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            arguments = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProviderError(
                f"Malformed arguments for tool '{tool_name}': {e}",
                provider=self.provider_name,
            ) from e
        if not isinstance(arguments, dict):
            raise ProviderError(
                f"Arguments for tool '{tool_name}' must be a JSON object",
                provider=self.provider_name,
            )
        return arguments

    def _normalize_response(self, response: Any) -> LLMResponse:
        if not response.choices:
            raise ProviderError("OpenAI response contained no choices", provider=self.provider_name)

        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(ToolCall(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=self._parse_arguments(tc.function.arguments, tc.function.name),
                ))

        try:
            return LLMResponse(
                content=message.content or "",
                tool_calls=tool_calls,
                stop_reason=STOP_REASON_MAP.get(choice.finish_reason, StopReason.OTHER),
                usage=TokenUsage(
                    input_tokens=response.usage.prompt_tokens if response.usage else 0,
                    output_tokens=response.usage.completion_tokens if response.usage else 0,
                ),
                model=getattr(response, "model", self.model) or self.model,
                raw_stop_reason=choice.finish_reason,
            )
        except ValueError as e:
            raise ProviderError(f"Malformed OpenAI response: {e}", provider=self.provider_name) from e

    async def send_message(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """Send the conversation to GPT."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_completion_tokens": max_tokens or self.max_tokens,
            "messages": self._convert_messages(messages),
        }

        resolved_temperature = self._resolve_temperature(temperature)
        if resolved_temperature is not None:
            kwargs["temperature"] = resolved_temperature

        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = "auto"

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", error=str(e))
            raise ProviderError(
                f"OpenAI API error: {e}",
                provider=self.provider_name,
                status_code=getattr(e, "status_code", None),
            ) from e

        return self._normalize_response(response)
