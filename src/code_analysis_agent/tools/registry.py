"""
Tool registry mapping tool names to handlers.
"""

import inspect
from typing import Any, Awaitable, Callable

import structlog

from ..llm.base import ToolDefinition
from .base import ToolResult, ToolSpec

logger = structlog.get_logger()

ToolHandler = Callable[..., Awaitable[str]]


class ToolRegistry:
    """Registry for managing tools.

    Each registry is owned by one executor; there is no process-wide instance.
    """

    def __init__(self):
        self._tools: dict[str, tuple[ToolSpec, ToolHandler]] = {}

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        """Register a tool."""
        self._tools[spec.name] = (spec, handler)
        logger.debug("Tool registered", tool_name=spec.name)

    def get(self, name: str) -> ToolSpec | None:
        """Get a tool spec by name."""
        entry = self._tools.get(name)
        return entry[0] if entry else None

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [spec.to_definition() for spec, _ in self._tools.values()]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name. Never raises."""
        entry = self._tools.get(name)
        if entry is None:
            return ToolResult(
                success=False,
                error=f"Unknown tool: {name}",
            )

        _, handler = entry
        arguments = arguments or {}
        try:
            inspect.signature(handler).bind(**arguments)
        except TypeError as e:
            logger.warning("Invalid tool arguments", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                error=f"Invalid arguments for {name}: {e}",
            )

        try:
            logger.info("Executing tool", tool_name=name, arguments=arguments)
            result = ToolResult.from_output(await handler(**arguments))
            logger.info("Tool executed", tool_name=name, success=result.success)
            return result
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            return ToolResult(
                success=False,
                error=str(e),
            )
