"""
Wiring: pair an LLM with the chat state that speaks its wire shape.
"""

from ..config import Settings, get_settings
from ..events import EventSink
from ..llm.anthropic import AnthropicLLM
from ..llm.base import BaseLLM
from ..llm.factory import create_llm
from ..tools.file_tool import FileToolExecutor
from .block_state import BlockChatState
from .channel_state import ToolChannelChatState
from .compaction import DEFAULT_COMPACTION_RATIO
from .core import Agent
from .state import ChatState


def create_chat_state(
    llm: BaseLLM,
    max_context_tokens: int | None = None,
    compaction_ratio: float = DEFAULT_COMPACTION_RATIO,
) -> ChatState:
    """Anthropic gets embedded blocks; every OpenAI-style client gets the tool channel."""
    state_class = BlockChatState if isinstance(llm, AnthropicLLM) else ToolChannelChatState
    return state_class(llm, max_context_tokens=max_context_tokens, compaction_ratio=compaction_ratio)


def create_agent(
    settings: Settings | None = None,
    provider: str | None = None,
    model: str | None = None,
    working_directory: str | None = None,
    max_iterations: int | None = None,
    event_sink: EventSink | None = None,
    llm: BaseLLM | None = None,
) -> Agent:
    """Build a ready-to-run agent from settings."""
    settings = settings or get_settings()

    if llm is None:
        config = settings.get_llm_config(provider)
        if model:
            config.model = model
        llm = create_llm(config)

    executor = FileToolExecutor(
        working_directory or settings.target_directory,
        output_dir=settings.analysis_output_dir,
        max_file_size=settings.max_file_size_kb * 1024,
        max_depth=settings.max_list_depth,
    )
    state = create_chat_state(
        llm,
        max_context_tokens=settings.max_context_tokens,
        compaction_ratio=settings.compaction_ratio,
    )

    return Agent(
        llm=llm,
        state=state,
        tool_executor=executor,
        max_iterations=max_iterations or settings.max_iterations,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        event_sink=event_sink,
    )
