"""
Conversation Compaction - context summarization helpers.

When the estimated size of a conversation crosses the compaction threshold,
the older part of the log is replaced by a single summary message. The split
itself lives on ``ChatState``; this module holds the prompts, the
deterministic fallback summary and the result record.
"""

from dataclasses import dataclass

DEFAULT_COMPACTION_RATIO = 0.75  # Compact when 75% of the context window is used
MIN_RECENT_MESSAGES = 2  # Always keep the final exchange verbatim
MIN_MESSAGES_TO_COMPACT = 4

USER_EXCERPT_LIMIT = 200
ASSISTANT_EXCERPT_LIMIT = 300
TOOL_EXCERPT_LIMIT = 200

SUMMARY_HEADER = "[Analysis Summary]"
SUMMARY_FOOTER = "[Continuing with recent context...]"


@dataclass
class CompactionResult:
    """Result of a compaction operation."""

    compacted: bool
    original_message_count: int
    compacted_message_count: int
    tokens_before: int
    tokens_after: int
    summary: str = ""
    used_fallback: bool = False

    @property
    def tokens_saved(self) -> int:
        return max(0, self.tokens_before - self.tokens_after)

    @classmethod
    def skipped(cls, message_count: int, tokens: int) -> "CompactionResult":
        return cls(
            compacted=False,
            original_message_count=message_count,
            compacted_message_count=message_count,
            tokens_before=tokens,
            tokens_after=tokens,
        )


def compaction_threshold(max_context_tokens: int, ratio: float = DEFAULT_COMPACTION_RATIO) -> int:
    return int(max_context_tokens * ratio)


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_compaction_prompt(transcript: str) -> str:
    """Instruction asking the model to summarize the older conversation."""
    return f"""Please summarize the following conversation in 2-3 concise paragraphs. Focus on:
1. What code/files were examined
2. Key findings and observations
3. Current analysis progress

Conversation to summarize:
{transcript}

Provide a clear, structured summary that captures the essential context for continuing the analysis."""


def build_summary_content(summary: str) -> str:
    """Wrap a summary in the delimiters used for the synthetic user message."""
    return f"{SUMMARY_HEADER}\n{summary}\n\n{SUMMARY_FOOTER}"


def is_summary_content(text: str) -> bool:
    return text.startswith(SUMMARY_HEADER)
