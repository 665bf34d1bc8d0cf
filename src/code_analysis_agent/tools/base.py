"""
Base classes for tools.
"""

from dataclasses import dataclass, field
from typing import Any

from ..llm.base import ToolDefinition

ERROR_PREFIX = "Error:"


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    error: str | None = None

    @property
    def text(self) -> str:
        """The string fed back to the model."""
        if self.success:
            return self.output
        if self.output.startswith(ERROR_PREFIX):
            return self.output
        return f"{ERROR_PREFIX} {self.error or 'unknown error'}"

    @classmethod
    def from_output(cls, output: str) -> "ToolResult":
        """Classify a tool's string output by its ``Error:`` prefix."""
        if output.startswith(ERROR_PREFIX):
            return cls(
                success=False,
                output=output,
                error=output[len(ERROR_PREFIX):].strip(),
            )
        return cls(success=True, output=output)


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class ToolSpec:
    """Declarative description of a tool offered to the model."""

    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> ToolDefinition:
        """Convert to a tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )
