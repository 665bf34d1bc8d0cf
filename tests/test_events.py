"""
Tests for event sinks and agent wiring.
"""

import os
from unittest.mock import patch

from code_analysis_agent.agent.block_state import BlockChatState
from code_analysis_agent.agent.channel_state import ToolChannelChatState
from code_analysis_agent.agent.factory import create_agent, create_chat_state
from code_analysis_agent.config import Settings
from code_analysis_agent.events import AgentEvent, CollectingEventSink, LoggingEventSink, NullEventSink
from code_analysis_agent.llm.anthropic import AnthropicLLM
from code_analysis_agent.llm.openai import OpenAILLM


def test_collecting_sink_filters_by_type():
    """Test in-memory event collection."""
    sink = CollectingEventSink()
    sink.publish(AgentEvent(type="status", data={"status": "running"}))
    sink.publish(AgentEvent(type="phase", data={"phase": "awaiting_response"}))

    assert len(sink.events) == 2
    assert sink.of_type("status")[0].data == {"status": "running"}


def test_null_and_logging_sinks_accept_events():
    """Test the fire-and-forget sinks."""
    event = AgentEvent(type="progress", data={"stage": "processing"})

    NullEventSink().publish(event)
    LoggingEventSink(run="test").publish(event)


def test_create_chat_state_matches_wire_shape():
    """Test each client gets the state that speaks its encoding."""
    assert isinstance(create_chat_state(AnthropicLLM(api_key="k")), BlockChatState)
    assert isinstance(create_chat_state(OpenAILLM(api_key="k")), ToolChannelChatState)


def test_create_agent_from_settings(tmp_path):
    """Test building an agent from settings."""
    env = {
        "OPENAI_API_KEY": "test-key",
        "DEFAULT_PROVIDER": "openai",
        "MAX_ITERATIONS": "7",
        "MAX_FILE_SIZE_KB": "10",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)
        sink = CollectingEventSink()
        agent = create_agent(settings=settings, working_directory=str(tmp_path), event_sink=sink)

        assert isinstance(agent.llm, OpenAILLM)
        assert isinstance(agent.state, ToolChannelChatState)
        assert agent.max_iterations == 7
        assert agent.tool_executor.project_root == tmp_path.resolve()
        assert agent.tool_executor.max_file_size == 10 * 1024
        assert agent.event_sink is sink
        assert [t.name for t in agent.tools] == ["read_file", "list_directory", "search_files", "write_file"]
