"""
Exception types raised by the agent runtime.
"""


class AgentRuntimeError(Exception):
    """Base class for runtime errors."""


class ProviderError(AgentRuntimeError):
    """A provider call failed or returned something we could not normalize."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class ConversationError(AgentRuntimeError):
    """A mutation would break tool-call pairing or the system-message rule."""


class AccessDenied(AgentRuntimeError):
    """A tool path resolved outside the area it is allowed to touch."""

    def __init__(self, path: str, reason: str = "path outside project root"):
        super().__init__(f"Access denied: {reason} ({path})")
        self.path = path
        self.reason = reason
