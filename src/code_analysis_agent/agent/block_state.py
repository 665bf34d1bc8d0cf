"""
Chat state for providers that embed tool traffic in message content.

Tool requests are ``ToolUseBlock``s on an assistant message; results are
``ToolResultBlock``s on the following user message (all results of one
round-trip share that message).
"""

from ..llm.base import LLMMessage, TextBlock, ToolCall, ToolResultBlock, ToolUseBlock
from .state import ChatState


class BlockChatState(ChatState):
    """Conversation log in the embedded-block wire shape."""

    def _tool_use_message(self, tool_calls: list[ToolCall]) -> LLMMessage:
        return LLMMessage(
            role="assistant",
            content=[
                ToolUseBlock(tool_call_id=tc.id, name=tc.name, arguments=tc.arguments)
                for tc in tool_calls
            ],
        )

    def _append_tool_result(self, tool_call_id: str, tool_name: str, result: str) -> None:
        block = ToolResultBlock(tool_call_id=tool_call_id, name=tool_name, output=result)

        last = self.messages[-1] if self.messages else None
        if last is not None and last.role == "user" and self._is_tool_result(last):
            # Still answering the same round-trip
            last.content.append(block)  # type: ignore[union-attr]
        else:
            self.messages.append(LLMMessage(role="user", content=[block]))

    def _request_ids(self, msg: LLMMessage) -> list[str]:
        if msg.role != "assistant":
            return []
        return [b.tool_call_id for b in msg.blocks if isinstance(b, ToolUseBlock)]

    def _result_ids(self, msg: LLMMessage) -> list[str]:
        if msg.role != "user":
            return []
        return [b.tool_call_id for b in msg.blocks if isinstance(b, ToolResultBlock)]

    def _render(self, msg: LLMMessage) -> tuple[str, str]:
        if isinstance(msg.content, str):
            text = msg.content
        else:
            parts = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    parts.append(f"[Tool call: {block.name}]")
                elif isinstance(block, ToolResultBlock):
                    parts.append(block.output)
            text = " ".join(parts)

        if self._is_tool_result(msg):
            return "Tool Result", text
        return ("User" if msg.role == "user" else "Assistant"), text
