"""
Chat state: the ordered message log, token estimation and compaction.

Two concrete states exist, one per provider wire shape:

- ``BlockChatState``: tool requests/results as blocks inside message content
- ``ToolChannelChatState``: tool requests on ``tool_calls``, results as
  ``tool`` messages

Both enforce the same invariants on every mutation:

1. every tool request is answered by a result with the same id before any
   other message is added, and no result appears without its request;
2. there is exactly one system message and it comes first.
"""

from abc import ABC, abstractmethod
from typing import Any

import structlog

from ..errors import ConversationError
from ..llm.base import BaseLLM, LLMMessage, ToolCall
from .compaction import (
    ASSISTANT_EXCERPT_LIMIT,
    DEFAULT_COMPACTION_RATIO,
    MIN_MESSAGES_TO_COMPACT,
    MIN_RECENT_MESSAGES,
    TOOL_EXCERPT_LIMIT,
    USER_EXCERPT_LIMIT,
    CompactionResult,
    build_compaction_prompt,
    build_summary_content,
    compaction_threshold,
    truncate,
)

logger = structlog.get_logger()

TRANSCRIPT_ENTRY_LIMIT = 2000

EXCERPT_LIMITS = {
    "User": USER_EXCERPT_LIMIT,
    "Assistant": ASSISTANT_EXCERPT_LIMIT,
    "Tool Result": TOOL_EXCERPT_LIMIT,
}


class ChatState(ABC):
    """Conversation log for one agent run."""

    def __init__(
        self,
        llm: BaseLLM,
        max_context_tokens: int | None = None,
        compaction_threshold: int | None = None,
        compaction_ratio: float = DEFAULT_COMPACTION_RATIO,
    ):
        self.llm = llm
        self.messages: list[LLMMessage] = []
        self.compaction_ratio = compaction_ratio
        self.compaction_count = 0
        self._max_context_override = max_context_tokens
        self._threshold_override = compaction_threshold
        self._threshold_basis: int | None = None
        self._threshold = 0
        self._pending: dict[str, str] = {}
        self._file_cache: set[str] = set()
        self._refresh_threshold()

    # -- wire shape hooks ----------------------------------------------

    @abstractmethod
    def _tool_use_message(self, tool_calls: list[ToolCall]) -> LLMMessage:
        """Build the assistant message that carries the tool requests."""

    @abstractmethod
    def _append_tool_result(self, tool_call_id: str, tool_name: str, result: str) -> None:
        """Append one tool result in this wire shape."""

    @abstractmethod
    def _request_ids(self, msg: LLMMessage) -> list[str]:
        """Tool call ids requested by ``msg``."""

    @abstractmethod
    def _result_ids(self, msg: LLMMessage) -> list[str]:
        """Tool call ids answered by ``msg``."""

    @abstractmethod
    def _render(self, msg: LLMMessage) -> tuple[str, str]:
        """(label, text) used in transcripts and the fallback summary."""

    # -- thresholds ----------------------------------------------------

    @property
    def max_context_tokens(self) -> int:
        return self._max_context_override or self.llm.get_max_context_tokens()

    @property
    def compaction_threshold(self) -> int:
        if self._threshold_override is not None:
            return self._threshold_override
        self._refresh_threshold()
        return self._threshold

    def _refresh_threshold(self) -> None:
        max_tokens = self.max_context_tokens
        if max_tokens != self._threshold_basis:
            self._threshold_basis = max_tokens
            self._threshold = compaction_threshold(max_tokens, self.compaction_ratio)

    # -- mutators ------------------------------------------------------

    def _ensure_no_pending(self, action: str) -> None:
        if self._pending:
            raise ConversationError(
                f"Cannot {action} while tool calls are unanswered: "
                + ", ".join(self._pending)
            )

    def add_system_message(self, content: str) -> None:
        """Add the system message (must be the first message)."""
        if self.messages:
            raise ConversationError("The system message must be the first and only system message")
        self.messages.append(LLMMessage(role="system", content=content))

    def add_user_message(self, content: str) -> None:
        self._ensure_no_pending("add a user message")
        self.messages.append(LLMMessage(role="user", content=content))

    def add_assistant_message(self, content: str) -> None:
        self._ensure_no_pending("add an assistant message")
        self.messages.append(LLMMessage(role="assistant", content=content))

    def add_tool_use(self, tool_calls: list[ToolCall]) -> None:
        """Record the assistant's tool requests; results must follow."""
        self._ensure_no_pending("add tool calls")
        if not tool_calls:
            raise ConversationError("add_tool_use needs at least one tool call")

        ids = [tc.id for tc in tool_calls]
        if len(set(ids)) != len(ids):
            raise ConversationError(f"Duplicate tool call ids: {ids}")

        self.messages.append(self._tool_use_message(tool_calls))
        self._pending = {tc.id: tc.name for tc in tool_calls}

    def add_tool_result(self, tool_call_id: str, tool_name: str, result: str) -> None:
        """Record the result of a pending tool call."""
        if tool_call_id not in self._pending:
            raise ConversationError(f"No pending tool call with id {tool_call_id}")

        self._append_tool_result(tool_call_id, tool_name, result)
        del self._pending[tool_call_id]

    def add_tool_round_trip(self, tool_calls: list[ToolCall], results: list[str]) -> None:
        """Record tool requests together with their results."""
        if len(tool_calls) != len(results):
            raise ConversationError("Each tool call needs exactly one result")
        self.add_tool_use(tool_calls)
        for tc, result in zip(tool_calls, results):
            self.add_tool_result(tc.id, tc.name, result)

    # -- queries -------------------------------------------------------

    def get_messages(self) -> list[LLMMessage]:
        return self.messages

    @property
    def pending_tool_call_ids(self) -> list[str]:
        return list(self._pending)

    def get_token_count(self) -> int:
        return self.llm.count_message_tokens(self.messages)

    def needs_compaction(self) -> bool:
        return self.get_token_count() > self.compaction_threshold

    def _is_tool_result(self, msg: LLMMessage) -> bool:
        return bool(self._result_ids(msg))

    def _has_tool_calls(self, msg: LLMMessage) -> bool:
        return bool(self._request_ids(msg))

    def _is_clean_boundary(self, msg: LLMMessage) -> bool:
        if msg.role == "user":
            return not self._is_tool_result(msg)
        if msg.role == "assistant":
            return not self._has_tool_calls(msg)
        return False

    def validate(self, allow_pending: bool = False) -> None:
        """Check tool-call pairing and the system-message rule.

        Raises:
            ConversationError: describing the first violation found.
        """
        system_positions = [i for i, m in enumerate(self.messages) if m.role == "system"]
        if self.messages and system_positions != [0]:
            raise ConversationError(
                f"Expected exactly one system message at position 0, found {system_positions}"
            )

        open_ids: set[str] = set()
        for i, msg in enumerate(self.messages):
            answered = self._result_ids(msg)
            for tool_call_id in answered:
                if tool_call_id not in open_ids:
                    raise ConversationError(f"Orphaned tool result {tool_call_id} at position {i}")
                open_ids.discard(tool_call_id)

            if answered:
                continue

            if open_ids:
                raise ConversationError(
                    f"Message at position {i} interrupts unanswered tool calls: {sorted(open_ids)}"
                )
            open_ids.update(self._request_ids(msg))

        if open_ids and not allow_pending:
            raise ConversationError(f"Unanswered tool calls: {sorted(open_ids)}")

    # -- compaction ----------------------------------------------------

    def _find_split_index(self, conversation: list[LLMMessage]) -> int:
        """Index where the recent tail starts; never inside a tool round-trip."""
        split = 0
        for i in range(len(conversation) - 1, -1, -1):
            if self._is_clean_boundary(conversation[i]):
                split = i + 1
                break

        split = max(min(split, len(conversation) - MIN_RECENT_MESSAGES), 0)

        while split > 0 and self._is_tool_result(conversation[split]):
            split -= 1
        return split

    def _transcript(self, messages: list[LLMMessage]) -> str:
        lines = []
        for idx, msg in enumerate(messages):
            label, text = self._render(msg)
            lines.append(f"[{label} {idx}]: {truncate(text, TRANSCRIPT_ENTRY_LIMIT)}")
        return "\n\n".join(lines)

    def _fallback_summary(self, messages: list[LLMMessage]) -> str:
        """Summary built from truncated excerpts, without calling a model."""
        parts = []
        for msg in messages:
            label, text = self._render(msg)
            parts.append(f"{label}: {truncate(text, EXCERPT_LIMITS.get(label, USER_EXCERPT_LIMIT))}")
        return "\n\n".join(parts)

    async def _generate_summary(
        self,
        llm: BaseLLM,
        system_messages: list[LLMMessage],
        messages: list[LLMMessage],
    ) -> str:
        prompt = build_compaction_prompt(self._transcript(messages))
        response = await llm.send_message(
            [*system_messages, LLMMessage(role="user", content=prompt)]
        )
        summary = response.content.strip()
        if not summary:
            raise ValueError("empty summary")
        return summary

    def _rebuild(
        self,
        system_messages: list[LLMMessage],
        summary: str,
        recent: list[LLMMessage],
    ) -> list[LLMMessage]:
        return [
            *system_messages,
            LLMMessage(role="user", content=build_summary_content(summary)),
            *recent,
        ]

    async def compact(self, llm: BaseLLM | None = None) -> CompactionResult:
        """Summarize the older part of the log and keep the recent tail.

        ``llm`` is used for the side-channel summary request; without it, or
        if that request fails, a deterministic summary is used instead.
        """
        tokens_before = self.get_token_count()
        original_count = len(self.messages)

        if original_count < MIN_MESSAGES_TO_COMPACT:
            return CompactionResult.skipped(original_count, tokens_before)

        logger.debug(
            "Compacting context",
            state=type(self).__name__,
            message_count=original_count,
            tokens=tokens_before,
        )

        system_messages = [m for m in self.messages if m.role == "system"]
        conversation = [m for m in self.messages if m.role != "system"]

        split = self._find_split_index(conversation)
        older, recent = conversation[:split], conversation[split:]

        if not older:
            return CompactionResult.skipped(original_count, tokens_before)

        # Excerpts are capped per message, so if they cannot shrink the log
        # the older slice is already short and no summary will help.
        summary = self._fallback_summary(older)
        rebuilt = self._rebuild(system_messages, summary, recent)
        tokens_after = self.llm.count_message_tokens(rebuilt)
        if tokens_after >= tokens_before:
            logger.debug(
                "Older messages too short to compact",
                state=type(self).__name__,
                older_count=len(older),
                tokens_before=tokens_before,
                tokens_after=tokens_after,
            )
            return CompactionResult.skipped(original_count, tokens_before)

        used_fallback = True
        if llm is not None:
            try:
                llm_summary = await self._generate_summary(llm, system_messages, older)
            except Exception as e:
                logger.warning("Failed to get LLM summary, using basic summary", error=str(e))
            else:
                candidate = self._rebuild(system_messages, llm_summary, recent)
                candidate_tokens = self.llm.count_message_tokens(candidate)
                if candidate_tokens < tokens_before:
                    summary, rebuilt, tokens_after = llm_summary, candidate, candidate_tokens
                    used_fallback = False
                else:
                    logger.warning(
                        "LLM summary did not shrink the context, using basic summary",
                        tokens_before=tokens_before,
                        tokens_after=candidate_tokens,
                    )

        # Same list object, new contents
        self.messages[:] = rebuilt
        self.compaction_count += 1

        logger.info(
            "Compaction complete",
            state=type(self).__name__,
            original=original_count,
            compacted=len(rebuilt),
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            saved=tokens_before - tokens_after,
            fallback=used_fallback,
        )

        return CompactionResult(
            compacted=True,
            original_message_count=original_count,
            compacted_message_count=len(rebuilt),
            tokens_before=tokens_before,
            tokens_after=tokens_after,
            summary=summary,
            used_fallback=used_fallback,
        )

    # -- file cache & stats --------------------------------------------

    def mark_file_cached(self, file_path: str) -> None:
        """Remember that a file's content has been sent to the model."""
        self._file_cache.add(file_path)

    def is_file_cached(self, file_path: str) -> bool:
        return file_path in self._file_cache

    def clear(self) -> None:
        """Start fresh."""
        self.messages.clear()
        self._pending.clear()
        self._file_cache.clear()

    def get_stats(self) -> dict[str, Any]:
        token_count = self.get_token_count()
        max_tokens = self.max_context_tokens
        return {
            "message_count": len(self.messages),
            "token_count": token_count,
            "max_tokens": max_tokens,
            "compaction_threshold": self.compaction_threshold,
            "utilization_percent": round(token_count / max_tokens * 100) if max_tokens else 0,
            "cached_files": len(self._file_cache),
            "compaction_count": self.compaction_count,
            "pending_tool_calls": len(self._pending),
        }
