"""
Collect the JSON artifact produced by an agent run.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TYPE_CHECKING

import structlog

from ..errors import AccessDenied

if TYPE_CHECKING:
    from .core import Agent

logger = structlog.get_logger()


@dataclass
class OutputResult:
    """JSON output recovered after a run."""

    success: bool
    data: Any = None
    path: str | None = None
    source: str | None = None  # "file" or "extracted"
    error: str | None = None


def _load_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def collect_json_output(agent: "Agent", output_path: str, write_back: bool = True) -> OutputResult:
    """Read the file the model wrote, falling back to JSON in its messages.

    ``output_path`` is resolved inside the tool executor's output directory,
    e.g. ``"analysis.json"`` or ``".code-analysis/analysis.json"``.
    """
    executor = agent.tool_executor
    relative = Path(output_path)
    if relative.parts and relative.parts[0] == executor.output_dir:
        relative = Path(*relative.parts[1:])

    try:
        target = executor.resolve_path(str(Path(executor.output_dir) / relative))
    except AccessDenied as e:
        return OutputResult(success=False, error=str(e))

    if not executor.is_output_path(target) or target == executor.output_root:
        return OutputResult(
            success=False,
            error=f"Output path must be inside {executor.output_dir}/: {output_path}",
        )

    if target.is_file():
        try:
            data = _load_json(target)
            logger.info("Loaded output file", path=str(target))
            return OutputResult(success=True, data=data, path=str(target), source="file")
        except (OSError, ValueError) as e:
            logger.warning("Output file is not valid JSON, trying message extraction", path=str(target), error=str(e))

    data = agent.extract_json()
    if data is None:
        return OutputResult(
            success=False,
            path=str(target),
            error=f"No JSON output found in {output_path} or in the conversation",
        )

    if write_back:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(data, indent=2), encoding="utf-8")
            logger.info("Wrote extracted JSON output", path=str(target))
        except OSError as e:
            return OutputResult(success=False, data=data, path=str(target), source="extracted", error=str(e))

    return OutputResult(success=True, data=data, path=str(target), source="extracted")
