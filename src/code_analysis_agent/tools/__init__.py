"""
Tools module: the sandboxed file-system capabilities offered to the model.
"""

from .base import ERROR_PREFIX, ToolParameter, ToolResult, ToolSpec
from .registry import ToolRegistry
from .file_tool import (
    ANALYSIS_OUTPUT_DIR,
    FILE_TOOL_DEFINITIONS,
    FileToolExecutor,
    create_file_tool_specs,
    glob_to_regex,
)

__all__ = [
    "ERROR_PREFIX",
    "ToolParameter",
    "ToolResult",
    "ToolSpec",
    "ToolRegistry",
    "ANALYSIS_OUTPUT_DIR",
    "FILE_TOOL_DEFINITIONS",
    "FileToolExecutor",
    "create_file_tool_specs",
    "glob_to_regex",
]
