"""
File Operations Tool - Read, list, search and write files in a project.

Every path is resolved against the project root and must stay inside it.
Writes are only accepted inside the reserved output subtree, and reads of that
subtree are refused so the model never re-analyzes its own output.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any

from ..errors import AccessDenied
from ..llm.base import ToolDefinition
from .base import ERROR_PREFIX, ToolParameter, ToolResult, ToolSpec
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

ANALYSIS_OUTPUT_DIR = ".code-analysis"
MAX_FILE_SIZE = 500 * 1024
MAX_LIST_DEPTH = 5
MAX_SEARCH_DEPTH = 10
MAX_SEARCH_RESULTS = 1000

IGNORED_DIRECTORIES = frozenset({
    "node_modules", ".git", "dist", "build", ".next",
    "__pycache__", ".venv", "venv",
})


def create_file_tool_specs(output_dir: str = ANALYSIS_OUTPUT_DIR) -> list[ToolSpec]:
    """Create the four file tool declarations."""
    read_file = ToolSpec(
        name="read_file",
        description=(
            "Read the complete content of a file. Use this when you need to analyze "
            "specific code files. The path should be relative to the project root."
        ),
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Relative path to the file from project root (e.g., 'src/app.js')",
            ),
        ],
    )

    list_directory = ToolSpec(
        name="list_directory",
        description=(
            "List all files and subdirectories in a given directory. Use this to explore "
            "the project structure. Directory names end with '/'."
        ),
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Relative path to directory from project root. Use '.' for project root.",
            ),
            ToolParameter(
                name="recursive",
                param_type="boolean",
                description="If true, list files recursively in subdirectories. Default is false.",
                required=False,
            ),
        ],
    )

    search_files = ToolSpec(
        name="search_files",
        description=(
            "Search for files matching a glob-like pattern ('*' matches any run of "
            "characters, '?' a single character). Use this to find specific types of "
            "files or files with certain names across the project."
        ),
        parameters=[
            ToolParameter(
                name="pattern",
                param_type="string",
                description="Search pattern (e.g., '*.js' for all JS files, 'test_*.py' for test files)",
            ),
            ToolParameter(
                name="directory",
                param_type="string",
                description="Starting directory, relative to project root. Default is '.' (project root).",
                required=False,
            ),
        ],
    )

    write_file = ToolSpec(
        name="write_file",
        description=(
            f"Write content to a file in the {output_dir} directory. REQUIRED to save "
            f"your output. The path must be relative to the project root and MUST start "
            f"with '{output_dir}/'."
        ),
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description=f"Relative path to the output file (MUST start with '{output_dir}/')",
            ),
            ToolParameter(
                name="content",
                param_type="string",
                description=(
                    "Content to write to the file. For JSON output, provide a valid JSON "
                    "string (not wrapped in markdown code blocks)."
                ),
            ),
        ],
    )

    return [read_file, list_directory, search_files, write_file]


FILE_TOOL_DEFINITIONS: list[ToolDefinition] = [
    spec.to_definition() for spec in create_file_tool_specs()
]


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a simple glob: ``*`` is any run of characters, ``?`` one character."""
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


class FileToolExecutor:
    """Sandboxed file-system tools rooted at a project directory."""

    def __init__(
        self,
        project_root: str | Path,
        output_dir: str = ANALYSIS_OUTPUT_DIR,
        max_file_size: int = MAX_FILE_SIZE,
        max_depth: int = MAX_LIST_DEPTH,
    ):
        self.project_root = Path(project_root).expanduser().resolve()
        self.output_dir = output_dir.strip("/\\") or ANALYSIS_OUTPUT_DIR
        self.output_root = (self.project_root / self.output_dir).resolve()
        self.max_file_size = max_file_size
        self.max_depth = max_depth

        self.registry = ToolRegistry()
        handlers = {
            "read_file": self.read_file,
            "list_directory": self.list_directory,
            "search_files": self.search_files,
            "write_file": self.write_file,
        }
        for spec in create_file_tool_specs(self.output_dir):
            self.registry.register(spec, handlers[spec.name])

    # -- path safety ---------------------------------------------------

    @staticmethod
    def _is_within(path: Path, root: Path) -> bool:
        return path == root or root in path.parents

    def resolve_path(self, path: str) -> Path:
        """Resolve a tool path against the project root.

        Raises:
            AccessDenied: if the resolved location is outside the project root.
        """
        candidate = Path(str(path)).expanduser()
        if not candidate.is_absolute():
            candidate = self.project_root / candidate

        resolved = candidate.resolve()
        if not self._is_within(resolved, self.project_root):
            logger.warning(f"Path outside project root: {path}")
            raise AccessDenied(str(path))
        return resolved

    def is_output_path(self, resolved: Path) -> bool:
        return self._is_within(resolved, self.output_root)

    def _relative(self, resolved: Path) -> str:
        rel = resolved.relative_to(self.project_root).as_posix()
        return rel or "."

    # -- dispatch ------------------------------------------------------

    def get_definitions(self) -> list[ToolDefinition]:
        return self.registry.get_definitions()

    async def execute(self, name: str, arguments: dict[str, Any] | None) -> ToolResult:
        """Execute a tool by name; failures come back as a failed ToolResult."""
        return await self.registry.execute(name, arguments or {})

    async def execute_tool(self, name: str, arguments: dict[str, Any] | None) -> str:
        """Execute a tool by name and return the string for the model."""
        return (await self.execute(name, arguments)).text

    # -- tools ---------------------------------------------------------

    async def read_file(self, path: str) -> str:
        """Read a source file (not from the output subtree)."""
        return await asyncio.to_thread(self._read_file, path)

    def _read_file(self, path: str) -> str:
        try:
            file_path = self.resolve_path(path)
        except AccessDenied as e:
            return f"{ERROR_PREFIX} {e}"

        if self.is_output_path(file_path):
            return (
                f"{ERROR_PREFIX} Cannot read files in {self.output_dir} directory. This "
                f"directory contains analysis outputs, not source code. Only read source "
                f"code files from your codebase."
            )

        if not file_path.exists():
            return f"{ERROR_PREFIX} File not found: {path}"

        if not file_path.is_file():
            return f"{ERROR_PREFIX} {path} is not a file"

        size = file_path.stat().st_size
        if size > self.max_file_size:
            return (
                f"{ERROR_PREFIX} File too large ({round(size / 1024)}KB). "
                f"Maximum size is {self.max_file_size // 1024}KB"
            )

        try:
            return file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return f"{ERROR_PREFIX} {path} is not a UTF-8 text file"
        except OSError as e:
            return f"{ERROR_PREFIX} Could not read {path}: {e.strerror or e}"

    async def list_directory(self, path: str = ".", recursive: bool = False) -> str:
        """List a directory, optionally as a depth-limited tree."""
        return await asyncio.to_thread(self._list_directory, path, _as_bool(recursive))

    def _list_directory(self, path: str, recursive: bool) -> str:
        path = path or "."
        try:
            dir_path = self.resolve_path(path)
        except AccessDenied as e:
            return f"{ERROR_PREFIX} {e}"

        if not dir_path.exists():
            return f"{ERROR_PREFIX} Directory not found: {path}"

        if not dir_path.is_dir():
            return f"{ERROR_PREFIX} {path} is not a directory"

        try:
            if recursive:
                lines = self._list_recursive(dir_path, 0)
            else:
                lines = [
                    f"{entry.name}/" if entry.is_dir() else entry.name
                    for entry in sorted(dir_path.iterdir(), key=lambda p: p.name)
                ]
        except OSError as e:
            return f"{ERROR_PREFIX} Could not list {path}: {e.strerror or e}"

        body = "\n".join(lines) if lines else "(empty)"
        return f"Contents of {path}:\n{body}"

    def _list_recursive(self, dir_path: Path, depth: int) -> list[str]:
        if depth > self.max_depth:
            return []

        lines = []
        indent = "  " * depth
        for entry in sorted(dir_path.iterdir(), key=lambda p: p.name):
            is_dir = entry.is_dir()
            if is_dir and entry.name in IGNORED_DIRECTORIES:
                continue

            lines.append(f"{indent}{entry.name}/" if is_dir else f"{indent}{entry.name}")

            if is_dir and not entry.is_symlink():
                try:
                    lines.extend(self._list_recursive(entry, depth + 1))
                except OSError:
                    continue
        return lines

    async def search_files(self, pattern: str, directory: str = ".") -> str:
        """Find files whose name (or relative path, if the pattern has '/') matches."""
        return await asyncio.to_thread(self._search_files, pattern, directory)

    def _search_files(self, pattern: str, directory: str) -> str:
        directory = directory or "."
        if not pattern:
            return f"{ERROR_PREFIX} A search pattern is required"

        try:
            start_path = self.resolve_path(directory)
        except AccessDenied as e:
            return f"{ERROR_PREFIX} {e}"

        if not start_path.is_dir():
            return f"{ERROR_PREFIX} Directory not found: {directory}"

        regex = glob_to_regex(pattern)
        match_paths = "/" in pattern
        matches: list[str] = []
        self._search_recursive(start_path, start_path, regex, match_paths, matches, 0)

        if not matches:
            return f"No files found matching pattern: {pattern}"

        output = f'Files matching "{pattern}":\n' + "\n".join(sorted(matches))
        if len(matches) >= MAX_SEARCH_RESULTS:
            output += f"\n\n... (stopped after {MAX_SEARCH_RESULTS} matches)"
        return output

    def _search_recursive(
        self,
        current: Path,
        base: Path,
        regex: re.Pattern[str],
        match_paths: bool,
        matches: list[str],
        depth: int,
    ) -> None:
        if depth > MAX_SEARCH_DEPTH or len(matches) >= MAX_SEARCH_RESULTS:
            return

        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError:
            # Unreadable directories are skipped
            return

        for entry in entries:
            if len(matches) >= MAX_SEARCH_RESULTS:
                return
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue

            entry_path = Path(entry.path)
            if is_dir:
                if entry.name not in IGNORED_DIRECTORIES:
                    self._search_recursive(entry_path, base, regex, match_paths, matches, depth + 1)
                continue

            relative = entry_path.relative_to(base).as_posix()
            target = relative if match_paths else entry.name
            if regex.match(target):
                matches.append(relative)

    async def write_file(self, path: str, content: str) -> str:
        """Write an output file; only the output subtree is writable."""
        return await asyncio.to_thread(self._write_file, path, content)

    def _write_file(self, path: str, content: str) -> str:
        rejection = (
            f"{ERROR_PREFIX} Can only write files to {self.output_dir}/ directory for "
            f"security reasons. Your path: {path}"
        )
        if not path:
            return rejection

        try:
            file_path = self.resolve_path(path)
        except AccessDenied:
            return rejection

        if file_path == self.output_root or not self.is_output_path(file_path):
            return rejection

        if not isinstance(content, str):
            return f"{ERROR_PREFIX} content must be a string"

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
        except OSError as e:
            return f"{ERROR_PREFIX} writing file: {e.strerror or e}"

        logger.info(f"Wrote output file: {self._relative(file_path)}")
        return f"Success: File written to {path} ({len(content.encode('utf-8'))} bytes)"
