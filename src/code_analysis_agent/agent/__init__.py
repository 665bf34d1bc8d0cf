"""
Agent module - the turn loop and its conversation state.

Includes:
- Agent: Drives the LLM and file tools until the analysis is done
- ChatState: Conversation log with pairing checks and compaction
- BlockChatState / ToolChannelChatState: The two tool-traffic wire shapes
- collect_json_output: Recover the JSON artifact after a run
"""

from .core import (
    Agent,
    AgentResult,
    AgentStatus,
    IterationPhase,
    IterationRecord,
    MAX_TOKENS_PROMPT,
    extract_json,
)
from .state import ChatState
from .block_state import BlockChatState
from .channel_state import ToolChannelChatState
from .compaction import CompactionResult
from .output import OutputResult, collect_json_output
from .factory import create_agent, create_chat_state

__all__ = [
    "Agent",
    "AgentResult",
    "AgentStatus",
    "IterationPhase",
    "IterationRecord",
    "MAX_TOKENS_PROMPT",
    "extract_json",
    "ChatState",
    "BlockChatState",
    "ToolChannelChatState",
    "CompactionResult",
    "OutputResult",
    "collect_json_output",
    "create_agent",
    "create_chat_state",
]
