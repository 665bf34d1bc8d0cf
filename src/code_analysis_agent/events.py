"""
Event sinks for agent progress.

The agent publishes an ``AgentEvent`` at each state transition and hook point.
Callers inject a sink instead of relying on a global broadcaster.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()


class ProgressStage(str, Enum):
    """Stages reported through ``on_progress``."""

    INITIALIZING = "initializing"
    PROCESSING = "processing"
    COMPACTING = "compacting"
    TOOL_EXECUTION = "tool-execution"
    COMPLETING = "completing"


@dataclass(frozen=True)
class AgentEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    def publish(self, event: AgentEvent) -> None:
        ...


class NullEventSink:
    """Discards every event."""

    def publish(self, event: AgentEvent) -> None:
        pass


class LoggingEventSink:
    """Writes events to the structured log."""

    def __init__(self, **context: Any):
        self._logger = logger.bind(**context) if context else logger

    def publish(self, event: AgentEvent) -> None:
        self._logger.debug("Agent event", event_type=event.type, **event.data)


class CollectingEventSink:
    """Keeps events in memory, e.g. for a caller that replays them later."""

    def __init__(self):
        self.events: list[AgentEvent] = []

    def publish(self, event: AgentEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[AgentEvent]:
        return [e for e in self.events if e.type == event_type]
