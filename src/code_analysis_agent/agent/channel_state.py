"""
Chat state for providers with a separate tool-call channel.

Tool requests ride on the assistant message's ``tool_calls`` (content left
empty) and every result is its own ``tool`` message carrying the call id.
"""

from ..llm.base import LLMMessage, ToolCall
from .state import ChatState


class ToolChannelChatState(ChatState):
    """Conversation log in the separate-channel wire shape."""

    def _tool_use_message(self, tool_calls: list[ToolCall]) -> LLMMessage:
        return LLMMessage(
            role="assistant",
            content="",
            tool_calls=[
                ToolCall(id=tc.id, name=tc.name, arguments=dict(tc.arguments))
                for tc in tool_calls
            ],
        )

    def _append_tool_result(self, tool_call_id: str, tool_name: str, result: str) -> None:
        self.messages.append(LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name,
        ))

    def _request_ids(self, msg: LLMMessage) -> list[str]:
        if msg.role != "assistant" or not msg.tool_calls:
            return []
        return [tc.id for tc in msg.tool_calls]

    def _result_ids(self, msg: LLMMessage) -> list[str]:
        if msg.role == "tool" and msg.tool_call_id:
            return [msg.tool_call_id]
        return []

    def _render(self, msg: LLMMessage) -> tuple[str, str]:
        if msg.role == "tool":
            return "Tool Result", msg.text
        if msg.role == "assistant":
            text = msg.text
            if not text and msg.tool_calls:
                text = f"[Tool calls: {', '.join(tc.name for tc in msg.tool_calls)}]"
            return "Assistant", text
        return "User", msg.text
