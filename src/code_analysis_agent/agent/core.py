"""
Core agent implementation: the conversation turn loop.

The agent:
1. Seeds the chat state with the system prompt and the initial message
2. Compacts the conversation when it grows past the threshold
3. Sends the log plus the file tool catalog to the LLM
4. Executes requested tools and feeds the results back
5. Decides whether to continue, and reports aggregate usage at the end
"""

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import structlog

from ..llm.base import BaseLLM, LLMMessage, LLMResponse, StopReason, ToolCall
from ..tools.file_tool import FileToolExecutor
from ..events import AgentEvent, EventSink, NullEventSink, ProgressStage
from .state import ChatState

logger = structlog.get_logger()

DEFAULT_MAX_ITERATIONS = 30

MAX_TOKENS_PROMPT = "You've reached the token limit. Please provide your final output now."


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IterationPhase(str, Enum):
    AWAITING_RESPONSE = "awaiting_response"
    TOOL_EXECUTION = "tool_execution"
    EVALUATING_CONTINUATION = "evaluating_continuation"


TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.IDLE: frozenset({AgentStatus.RUNNING}),
    AgentStatus.RUNNING: frozenset({AgentStatus.COMPLETED, AgentStatus.FAILED}),
    AgentStatus.COMPLETED: frozenset(),
    AgentStatus.FAILED: frozenset(),
}

PHASE_TRANSITIONS: dict[IterationPhase | None, frozenset[IterationPhase]] = {
    None: frozenset({IterationPhase.AWAITING_RESPONSE}),
    IterationPhase.AWAITING_RESPONSE: frozenset({
        IterationPhase.TOOL_EXECUTION,
        IterationPhase.EVALUATING_CONTINUATION,
    }),
    IterationPhase.TOOL_EXECUTION: frozenset({IterationPhase.AWAITING_RESPONSE}),
    IterationPhase.EVALUATING_CONTINUATION: frozenset({IterationPhase.AWAITING_RESPONSE}),
}

ProgressCallback = Callable[..., None]
ToolCallCallback = Callable[..., None]
IterationCallback = Callable[[int, LLMResponse], None]
MessageCallback = Callable[[str, str], None]
CompleteCallback = Callable[["AgentResult"], None]
ContinuePredicate = Callable[[LLMResponse, int], bool]


@dataclass(frozen=True)
class IterationRecord:
    """Audit entry for one provider round-trip."""

    iteration: int
    timestamp: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    tool_count: int

    @property
    def has_tool_calls(self) -> bool:
        return self.tool_count > 0


@dataclass
class AgentResult:
    """Outcome of ``Agent.run``."""

    success: bool
    iterations: int
    stop_reason: str | None
    token_usage: dict[str, int]
    conversation_log: list[IterationRecord] = field(default_factory=list)
    error: str | None = None
    max_iterations_reached: bool = False
    compaction_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["conversation_log"] = [asdict(r) for r in self.conversation_log]
        return data


def describe_tool_call(tool_call: ToolCall) -> str:
    """Short human-readable description used for progress reporting."""
    args = tool_call.arguments or {}
    target = args.get("path") or args.get("file_path") or "unknown"
    if tool_call.name == "read_file":
        return f"Reading {target}"
    if tool_call.name == "list_directory":
        return f"Listing directory {args.get('path') or '.'}"
    if tool_call.name == "search_files":
        return f"Searching for {args.get('pattern', '')}"
    if tool_call.name == "write_file":
        return f"Writing {target}"
    return tool_call.name


class Agent:
    """Drives a tool-using conversation with one LLM over one chat state.

    An agent instance owns its chat state, tool executor and iteration log;
    nothing is shared between instances, so independent agents can run
    concurrently.
    """

    def __init__(
        self,
        llm: BaseLLM,
        state: ChatState,
        tool_executor: FileToolExecutor | None = None,
        working_directory: str | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_tokens: int | None = None,
        temperature: float | None = None,
        event_sink: EventSink | None = None,
    ):
        if tool_executor is None:
            if working_directory is None:
                raise ValueError("Either tool_executor or working_directory is required")
            tool_executor = FileToolExecutor(working_directory)

        self.llm = llm
        self.state = state
        self.tool_executor = tool_executor
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens or llm.max_tokens
        self.temperature = temperature
        self.event_sink: EventSink = event_sink or NullEventSink()
        self.tools = tool_executor.get_definitions()

        self.status = AgentStatus.IDLE
        self.phase: IterationPhase | None = None
        self.conversation_log: list[IterationRecord] = []

    # -- state machine -------------------------------------------------

    def _publish(self, event_type: str, **data: Any) -> None:
        self.event_sink.publish(AgentEvent(type=event_type, data=data))

    def _transition(self, status: AgentStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise RuntimeError(f"Invalid agent transition: {self.status.value} -> {status.value}")
        previous, self.status = self.status, status
        self._publish("status", previous=previous.value, status=status.value)

    def _enter_phase(self, phase: IterationPhase, iteration: int) -> None:
        if phase not in PHASE_TRANSITIONS[self.phase]:
            raise RuntimeError(
                f"Invalid iteration phase: {self.phase.value if self.phase else None} -> {phase.value}"
            )
        self.phase = phase
        self._publish("phase", phase=phase.value, iteration=iteration)

    # -- run -----------------------------------------------------------

    async def run(
        self,
        system_prompt: str,
        initial_message: str,
        on_progress: ProgressCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_iteration: IterationCallback | None = None,
        on_message: MessageCallback | None = None,
        on_complete: CompleteCallback | None = None,
        should_continue: ContinuePredicate | None = None,
    ) -> AgentResult:
        """Run the conversation until completion, failure or the iteration cap.

        Never raises: failures are returned as ``AgentResult(success=False)``.
        """

        def progress(stage: ProgressStage, message: str, iteration: int | None = None) -> None:
            self._publish("progress", stage=stage.value, message=message, iteration=iteration)
            if on_progress:
                on_progress(stage.value, message, iteration)

        iteration = 0
        stop_reason: StopReason | None = None
        max_iterations_reached = False
        error: str | None = None

        try:
            self._transition(AgentStatus.RUNNING)
            self.state.add_system_message(system_prompt)
            self.state.add_user_message(initial_message)
            progress(ProgressStage.INITIALIZING, "Starting conversation...")

            while True:
                if iteration >= self.max_iterations:
                    max_iterations_reached = True
                    logger.warning("Reached maximum iterations", max_iterations=self.max_iterations)
                    break
                iteration += 1

                self._enter_phase(IterationPhase.AWAITING_RESPONSE, iteration)
                logger.debug(
                    "Iteration",
                    iteration=iteration,
                    max_iterations=self.max_iterations,
                    token_count=self.state.get_token_count(),
                )

                if self.state.needs_compaction():
                    logger.info("Context needs compaction, summarizing conversation")
                    progress(ProgressStage.COMPACTING, "Compacting context...", iteration)
                    result = await self.state.compact(self.llm)
                    self._publish(
                        "compaction",
                        tokens_before=result.tokens_before,
                        tokens_after=result.tokens_after,
                        fallback=result.used_fallback,
                    )

                progress(ProgressStage.PROCESSING, "Waiting for AI response...", iteration)
                response = await self.llm.send_message(
                    self.state.get_messages(),
                    tools=self.tools,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
                stop_reason = response.stop_reason

                self.conversation_log.append(IterationRecord(
                    iteration=iteration,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    stop_reason=response.stop_reason.value,
                    tool_count=len(response.tool_calls),
                ))

                logger.debug(
                    "Response received",
                    kind=response.kind.value,
                    stop_reason=response.stop_reason.value,
                    tool_calls=len(response.tool_calls),
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                )
                if on_iteration:
                    on_iteration(iteration, response)

                if response.content:
                    self.state.add_assistant_message(response.content)
                    self._publish("message", role="assistant", length=len(response.content))
                    if on_message:
                        on_message("assistant", response.content)

                if response.tool_calls:
                    self._enter_phase(IterationPhase.TOOL_EXECUTION, iteration)
                    await self._handle_tool_calls(response.tool_calls, iteration, progress, on_tool_call)
                    continue

                self._enter_phase(IterationPhase.EVALUATING_CONTINUATION, iteration)

                if response.stop_reason.is_natural_completion:
                    progress(ProgressStage.COMPLETING, "AI analysis complete", iteration)

                if should_continue is not None:
                    if not should_continue(response, iteration):
                        break
                    continue

                if response.stop_reason.is_natural_completion:
                    break

                if response.stop_reason == StopReason.MAX_TOKENS:
                    logger.warning("Max tokens reached in response")
                    self.state.add_user_message(MAX_TOKENS_PROMPT)
                    continue

                logger.debug("No tool calls and unexpected stop reason", stop_reason=response.stop_reason.value)
                break

        except Exception as e:
            logger.error("Agent run failed", error=str(e), iteration=iteration)
            error = str(e)

        success = error is None
        if self.status == AgentStatus.RUNNING:
            self._transition(AgentStatus.COMPLETED if success else AgentStatus.FAILED)
        self.phase = None

        result = AgentResult(
            success=success,
            iterations=iteration,
            stop_reason=stop_reason.value if stop_reason else None,
            token_usage=self._token_usage(),
            conversation_log=list(self.conversation_log),
            error=error,
            max_iterations_reached=max_iterations_reached,
            compaction_count=self.state.compaction_count,
        )

        if on_complete:
            try:
                on_complete(result)
            except Exception as e:
                logger.error("on_complete callback failed", error=str(e))

        return result

    async def _handle_tool_calls(
        self,
        tool_calls: list[ToolCall],
        iteration: int,
        progress: Callable[..., None],
        on_tool_call: ToolCallCallback | None,
    ) -> None:
        logger.info(
            "Executing tool calls",
            count=len(tool_calls),
            tools=", ".join(tc.name for tc in tool_calls),
        )

        self.state.add_tool_use(tool_calls)

        for tool_call in tool_calls:
            description = describe_tool_call(tool_call)
            progress(ProgressStage.TOOL_EXECUTION, description, iteration)

            result = await self.tool_executor.execute(tool_call.name, tool_call.arguments)
            result_text = result.text
            self.state.add_tool_result(tool_call.id, tool_call.name, result_text)

            if result.success:
                logger.debug("Tool completed", tool=tool_call.name, result_length=len(result_text))
                if tool_call.name == "read_file":
                    self.state.mark_file_cached(str(tool_call.arguments.get("path", "")))
            else:
                logger.warning("Tool failed", tool=tool_call.name, error=result.error)

            self._publish("tool_call", tool=tool_call.name, success=result.success, description=description)
            if on_tool_call:
                on_tool_call(
                    tool_call.name,
                    tool_call.arguments,
                    result_text,
                    None if result.success else result.error,
                )

    # -- helpers -------------------------------------------------------

    def _token_usage(self) -> dict[str, int]:
        input_tokens = sum(r.input_tokens for r in self.conversation_log)
        output_tokens = sum(r.output_tokens for r in self.conversation_log)
        return {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        }

    def add_user_message(self, content: str) -> None:
        """Add a user message to continue the conversation."""
        self.state.add_user_message(content)

    def get_messages(self) -> list[LLMMessage]:
        return self.state.get_messages()

    def get_metadata(self) -> dict[str, Any]:
        usage = self._token_usage()
        return {
            "iterations": len(self.conversation_log),
            "total_tokens": usage["total_tokens"],
            "token_usage": usage,
            "conversation_log": list(self.conversation_log),
            "state": self.state.get_stats(),
        }

    def extract_json(self) -> Any | None:
        """Find JSON output in the assistant's messages (newest first)."""
        return extract_json(self.state.get_messages())


_JSON_FENCE = re.compile(r"```json\s*\n?([\s\S]*?)\n?```")
_ANY_FENCE = re.compile(r"```[a-zA-Z]*\s*\n?([\s\S]*?)\n?```")
_BARE_OBJECT = re.compile(r"(\{[\s\S]*\})")
_BARE_ARRAY = re.compile(r"(\[[\s\S]*\])")


def _json_candidates(text: str) -> list[str]:
    candidates = []
    for pattern in (_JSON_FENCE, _ANY_FENCE, _BARE_OBJECT, _BARE_ARRAY):
        for match in pattern.finditer(text):
            candidates.append(match.group(1).strip())
    return candidates


def _is_tool_call_echo(value: Any) -> bool:
    return isinstance(value, dict) and (
        value.get("type") == "tool_use" or value.get("name") == "write_file"
    )


def extract_json(messages: list[LLMMessage]) -> Any | None:
    """Return the newest assistant JSON payload that is not a tool-call echo."""
    for msg in reversed(messages):
        if msg.role != "assistant":
            continue
        text = msg.text
        if not text:
            continue

        for candidate in _json_candidates(text):
            try:
                parsed = json.loads(candidate)
            except (json.JSONDecodeError, ValueError):
                continue
            if _is_tool_call_echo(parsed):
                continue
            return parsed

    return None
