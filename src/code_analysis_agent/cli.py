"""
Command-line interface for code-analysis-agent.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import structlog

from .config import Settings, get_settings

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through the stdlib logger at the given level."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), stream=sys.stderr, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="code-analysis",
        description="code-analysis-agent - LLM-driven analysis of a source tree",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run an analysis conversation")
    system_group = run_parser.add_mutually_exclusive_group(required=True)
    system_group.add_argument("--system", help="System prompt text")
    system_group.add_argument("--system-file", help="Read the system prompt from a file")
    run_parser.add_argument("--message", "-m", required=True, help="Initial user message")
    run_parser.add_argument("--provider", help="LLM provider (defaults to DEFAULT_PROVIDER)")
    run_parser.add_argument("--model", help="Model name override")
    run_parser.add_argument("--target", help="Project root to analyze (defaults to cwd)")
    run_parser.add_argument("--max-iterations", type=int, help="Iteration cap for the turn loop")
    run_parser.add_argument(
        "--output",
        help="JSON artifact to collect from the output directory, e.g. analysis.json",
    )

    subparsers.add_parser("config", help="Show configuration")

    return parser


def main() -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.effective_log_level)

    if args.command == "run":
        try:
            system_prompt = (
                Path(args.system_file).read_text(encoding="utf-8")
                if args.system_file
                else args.system
            )
        except OSError as e:
            logger.error("Could not read system prompt", path=args.system_file, error=str(e))
            sys.exit(2)
        sys.exit(asyncio.run(run_analysis(settings, args, system_prompt)))
    elif args.command == "config":
        show_config(settings)
    else:
        parser.print_help()


async def run_analysis(settings: Settings, args: argparse.Namespace, system_prompt: str) -> int:
    """Run one agent conversation and print the result as JSON."""
    from .agent import collect_json_output, create_agent
    from .events import LoggingEventSink

    try:
        agent = create_agent(
            settings=settings,
            provider=args.provider,
            model=args.model,
            working_directory=args.target,
            max_iterations=args.max_iterations,
            event_sink=LoggingEventSink(command="run"),
        )
    except ValueError as e:
        logger.error("Could not create agent", error=str(e))
        return 2

    logger.info(
        "Starting analysis",
        provider=agent.llm.provider_name,
        model=agent.llm.model_name,
        target=str(agent.tool_executor.project_root),
    )

    def on_progress(stage: str, message: str, iteration: int | None) -> None:
        logger.info(message, stage=stage, iteration=iteration)

    result = await agent.run(system_prompt, args.message, on_progress=on_progress)
    payload = {"result": result.to_dict()}

    if args.output and result.success:
        output = collect_json_output(agent, args.output)
        payload["output"] = {
            "success": output.success,
            "path": output.path,
            "source": output.source,
            "error": output.error,
            "data": output.data,
        }
        if not output.success:
            print(json.dumps(payload, indent=2, default=str))
            return 1

    print(json.dumps(payload, indent=2, default=str))
    return 0 if result.success else 1


def show_config(settings: Settings) -> None:
    """Show current configuration."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    llm_config = settings.get_llm_config()

    print(f"\n=== {settings.app_name} Configuration ===\n")
    print(f"Log Level: {settings.effective_log_level}\n")

    print("LLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Model: {llm_config.model}")
    print(f"  Base URL: {llm_config.base_url or '(provider default)'}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    print(f"  DeepSeek Key: {mask(settings.deepseek_api_key)}")
    print(f"  Google Key: {mask(settings.google_api_key)}")

    print("\nGeneration:")
    print(f"  Max Tokens: {settings.max_tokens}")
    print(f"  Temperature: {settings.temperature if settings.temperature is not None else '(provider default)'}")
    print(f"  Max Context Tokens: {settings.max_context_tokens or '(model default)'}")
    print(f"  Max Retries: {settings.max_retries}")
    print(f"  OpenAI System Role: {settings.openai_system_role}")

    print("\nAgent:")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Compaction Ratio: {settings.compaction_ratio}")

    print("\nTools:")
    print(f"  Target Directory: {settings.target_directory}")
    print(f"  Output Directory: {settings.analysis_output_dir}")
    print(f"  Max File Size: {settings.max_file_size_kb}KB")
    print(f"  Max List Depth: {settings.max_list_depth}")


if __name__ == "__main__":
    main()
