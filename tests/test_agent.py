"""
Tests for the agent turn loop.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from code_analysis_agent.agent.block_state import BlockChatState
from code_analysis_agent.agent.channel_state import ToolChannelChatState
from code_analysis_agent.agent.core import (
    MAX_TOKENS_PROMPT,
    Agent,
    AgentStatus,
    extract_json,
)
from code_analysis_agent.errors import ProviderError
from code_analysis_agent.events import CollectingEventSink
from code_analysis_agent.llm.anthropic import AnthropicLLM
from code_analysis_agent.llm.base import LLMMessage, LLMResponse, StopReason, TokenUsage, ToolCall
from code_analysis_agent.llm.openai import OpenAILLM

USAGE = TokenUsage(input_tokens=10, output_tokens=5)


def _text(content, stop_reason=StopReason.END_TURN):
    return LLMResponse(content=content, stop_reason=stop_reason, usage=USAGE)


def _tools(*calls):
    return LLMResponse(tool_calls=list(calls), stop_reason=StopReason.TOOL_USE, usage=USAGE)


def _script(llm, responses, summary="Summary of earlier work."):
    """Replace send_message with a script; returns snapshots of each request."""
    requests = []
    remaining = list(responses)

    async def send_message(messages, tools=None, max_tokens=None, temperature=None):
        if tools is None:
            return LLMResponse(content=summary)
        requests.append([(m.role, m.text) for m in messages])
        response = remaining.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    llm.send_message = AsyncMock(side_effect=send_message)
    return requests


@pytest.fixture
def project(tmp_path):
    (tmp_path / "a.js").write_text("export const a = 1;\n")
    return tmp_path


@pytest.fixture(params=["anthropic", "openai"])
def llm(request):
    if request.param == "anthropic":
        return AnthropicLLM(api_key="test-key")
    return OpenAILLM(api_key="test-key")


@pytest.fixture
def state(llm):
    if isinstance(llm, AnthropicLLM):
        return BlockChatState(llm)
    return ToolChannelChatState(llm)


@pytest.mark.asyncio
async def test_agent_reads_file_then_finishes(llm, state, project):
    """Test one tool round-trip followed by natural completion."""
    _script(llm, [
        _tools(ToolCall(id="t1", name="read_file", arguments={"path": "a.js"})),
        _text("Done."),
    ])
    on_tool_call = MagicMock()
    on_message = MagicMock()
    on_complete = MagicMock()

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run(
        "You analyze code.",
        "analyze X",
        on_tool_call=on_tool_call,
        on_message=on_message,
        on_complete=on_complete,
    )

    assert result.success is True
    assert result.iterations == 2
    assert result.stop_reason == "end_turn"
    assert result.max_iterations_reached is False
    assert result.token_usage == {"input_tokens": 20, "output_tokens": 10, "total_tokens": 30}
    assert [r.tool_count for r in result.conversation_log] == [1, 0]

    messages = agent.get_messages()
    assert messages[-1].role == "assistant"
    assert messages[-1].content == "Done."
    state.validate()

    on_tool_call.assert_called_once_with("read_file", {"path": "a.js"}, "export const a = 1;\n", None)
    on_message.assert_called_once_with("assistant", "Done.")
    on_complete.assert_called_once_with(result)
    assert state.is_file_cached("a.js")
    assert agent.status == AgentStatus.COMPLETED


@pytest.mark.asyncio
async def test_agent_tool_failure_does_not_abort(llm, state, project):
    """Test failed tools come back as Error: results and the loop continues."""
    _script(llm, [
        _tools(ToolCall(id="t1", name="read_file", arguments={"path": "missing.js"})),
        _text("Could not find it."),
    ])
    on_tool_call = MagicMock()

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "go", on_tool_call=on_tool_call)

    assert result.success is True
    name, args, text, error = on_tool_call.call_args.args
    assert text == "Error: File not found: missing.js"
    assert error == "File not found: missing.js"
    assert not state.is_file_cached("missing.js")


@pytest.mark.asyncio
async def test_agent_max_tokens_injects_forcing_message(llm, state, project):
    """Test a truncated reply is followed by a request to finish."""
    requests = _script(llm, [
        _text("partial", stop_reason=StopReason.MAX_TOKENS),
        _text("final"),
    ])

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "go")

    assert result.success is True
    assert result.iterations == 2
    assert requests[1][-1] == ("user", MAX_TOKENS_PROMPT)
    assert requests[1][-2] == ("assistant", "partial")


@pytest.mark.asyncio
async def test_agent_terminates_on_natural_completion(llm, state, project):
    """Test the loop ends as soon as a natural completion arrives."""
    _script(llm, [
        _tools(ToolCall(id="t1", name="list_directory", arguments={"path": "."})),
        _tools(ToolCall(id="t2", name="search_files", arguments={"pattern": "*.js"})),
        _text("All done", stop_reason=StopReason.STOP_SEQUENCE),
    ])

    agent = Agent(llm=llm, state=state, working_directory=str(project), max_iterations=10)
    result = await agent.run("sys", "go")

    assert result.success is True
    assert result.iterations == 3
    assert result.iterations <= agent.max_iterations


@pytest.mark.asyncio
async def test_agent_stops_at_max_iterations(llm, state, project):
    """Test the iteration cap ends the run successfully with a flag."""
    _script(llm, [
        _tools(ToolCall(id=f"t{i}", name="list_directory", arguments={"path": "."}))
        for i in range(5)
    ])

    agent = Agent(llm=llm, state=state, working_directory=str(project), max_iterations=3)
    result = await agent.run("sys", "go")

    assert result.success is True
    assert result.max_iterations_reached is True
    assert result.iterations == 3
    state.validate()


@pytest.mark.asyncio
async def test_agent_provider_error_fails_run(llm, state, project):
    """Test a provider failure ends the run without raising."""
    _script(llm, [ProviderError("Claude API error: overloaded", provider="anthropic")])
    on_complete = MagicMock()
    sink = CollectingEventSink()

    agent = Agent(llm=llm, state=state, working_directory=str(project), event_sink=sink)
    result = await agent.run("sys", "go", on_complete=on_complete)

    assert result.success is False
    assert result.error == "Claude API error: overloaded"
    assert result.iterations == 1
    on_complete.assert_called_once_with(result)
    assert agent.status == AgentStatus.FAILED
    assert [e.data["status"] for e in sink.of_type("status")] == ["running", "failed"]


@pytest.mark.asyncio
async def test_agent_callback_error_fails_run(llm, state, project):
    """Test an exception from a callback is reported as a failed run."""
    _script(llm, [_text("hello")])

    def on_message(role, content):
        raise RuntimeError("callback broke")

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "go", on_message=on_message)

    assert result.success is False
    assert result.error == "callback broke"


@pytest.mark.asyncio
async def test_should_continue_overrides_default(llm, state, project):
    """Test the continuation predicate can keep the conversation going."""
    requests = _script(llm, [_text("first pass"), _text("second pass")])

    agent = Agent(llm=llm, state=state, working_directory=str(project))

    def should_continue(response, iteration):
        if iteration == 1:
            agent.add_user_message("Now write the JSON.")
            return True
        return False

    result = await agent.run("sys", "go", should_continue=should_continue)

    assert result.success is True
    assert result.iterations == 2
    assert requests[1][-1] == ("user", "Now write the JSON.")


@pytest.mark.asyncio
async def test_should_continue_suppresses_forcing_message(llm, state, project):
    """Test a predicate replaces the max-tokens recovery."""
    _script(llm, [_text("partial", stop_reason=StopReason.MAX_TOKENS)])

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "go", should_continue=lambda response, iteration: False)

    assert result.iterations == 1
    assert all(m.content != MAX_TOKENS_PROMPT for m in agent.get_messages())


@pytest.mark.asyncio
async def test_unexpected_stop_reason_ends_run(llm, state, project):
    """Test other stop reasons without tool calls end the loop."""
    _script(llm, [_text("", stop_reason=StopReason.CONTENT_FILTER)])

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "go")

    assert result.success is True
    assert result.iterations == 1
    assert result.stop_reason == "content_filter"


@pytest.mark.asyncio
async def test_progress_and_events(llm, state, project):
    """Test progress stages and phase transitions are reported."""
    _script(llm, [
        _tools(ToolCall(id="t1", name="read_file", arguments={"path": "a.js"})),
        _text("Done."),
    ])
    on_progress = MagicMock()
    sink = CollectingEventSink()

    agent = Agent(llm=llm, state=state, working_directory=str(project), event_sink=sink)
    await agent.run("sys", "go", on_progress=on_progress)

    stages = [c.args[0] for c in on_progress.call_args_list]
    assert stages[0] == "initializing"
    assert "tool-execution" in stages
    assert stages[-1] == "completing"
    assert ("tool-execution", "Reading a.js", 1) in [c.args for c in on_progress.call_args_list]

    phases = [e.data["phase"] for e in sink.of_type("phase")]
    assert phases == [
        "awaiting_response",
        "tool_execution",
        "awaiting_response",
        "evaluating_continuation",
    ]


@pytest.mark.asyncio
async def test_agent_compacts_long_conversation(project):
    """Test compaction runs mid-loop and keeps the log valid."""
    llm = AnthropicLLM(api_key="test-key")
    state = BlockChatState(llm, compaction_threshold=200)
    _script(llm, [
        _tools(ToolCall(id="t1", name="read_file", arguments={"path": "a.js"})),
        _text("Interim findings " + "x" * 1000, stop_reason=StopReason.MAX_TOKENS),
        _text("Done."),
    ])
    on_progress = MagicMock()

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "analyze " + "y" * 1000, on_progress=on_progress)

    assert result.success is True
    assert result.compaction_count >= 1
    assert "compacting" in [c.args[0] for c in on_progress.call_args_list]
    state.validate()
    assert state.messages[0].role == "system"


def test_agent_requires_executor_or_directory():
    """Test construction without a tool executor is rejected."""
    with pytest.raises(ValueError):
        Agent(llm=AnthropicLLM(api_key="test-key"), state=MagicMock())


def test_get_metadata(llm, state, project):
    """Test metadata before any run."""
    agent = Agent(llm=llm, state=state, working_directory=str(project))
    metadata = agent.get_metadata()

    assert metadata["iterations"] == 0
    assert metadata["total_tokens"] == 0
    assert metadata["state"]["message_count"] == 0


def test_extract_json_prefers_json_fence():
    """Test a ```json fence wins."""
    messages = [
        LLMMessage(role="user", content='{"ignored": true}'),
        LLMMessage(role="assistant", content='Here:\n```json\n{"files": 3}\n```'),
    ]

    assert extract_json(messages) == {"files": 3}


def test_extract_json_any_fence_and_bare():
    """Test plain fences and bare objects are accepted."""
    assert extract_json([LLMMessage(role="assistant", content="```\n[1, 2]\n```")]) == [1, 2]
    assert extract_json([LLMMessage(role="assistant", content='Result {"ok": true} end')]) == {"ok": True}


def test_extract_json_skips_tool_echoes():
    """Test tool-call echoes are not mistaken for output."""
    messages = [
        LLMMessage(role="assistant", content='```json\n{"summary": "real"}\n```'),
        LLMMessage(role="assistant", content='{"name": "write_file", "input": {}}'),
    ]

    assert extract_json(messages) == {"summary": "real"}


def test_extract_json_none():
    """Test no JSON gives None."""
    assert extract_json([LLMMessage(role="assistant", content="no json here")]) is None


@pytest.mark.asyncio
async def test_agent_does_not_resummarize_unshrinkable_log(llm, state, project):
    """Test a log dominated by one large tool result triggers no summary calls."""
    (project / "big.js").write_text("x" * 20_000)
    llm.max_context_tokens = 4000
    _script(llm, [
        _tools(ToolCall(id="t1", name="read_file", arguments={"path": "big.js"})),
        _tools(ToolCall(id="t2", name="list_directory", arguments={"path": "."})),
        _tools(ToolCall(id="t3", name="search_files", arguments={"pattern": "*.js"})),
        _text("Done."),
    ])

    agent = Agent(llm=llm, state=state, working_directory=str(project))
    result = await agent.run("sys", "analyze X")

    summary_calls = [c for c in llm.send_message.call_args_list if "tools" not in c.kwargs]
    assert result.success is True
    assert result.compaction_count == 0
    assert summary_calls == []
    state.validate()
