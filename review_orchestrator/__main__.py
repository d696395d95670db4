"""Entry point for the review orchestrator CLI."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import sys
from pathlib import Path

import yaml

from review_orchestrator.config.settings import Settings, get_default_config, get_settings, load_settings_from_yaml
from review_orchestrator.core.exceptions import ReviewOrchestratorError, StorageUnavailableError
from review_orchestrator.core.models import Category, MergeStrategy, ReviewMode
from review_orchestrator.core.session_record import compare_sessions
from review_orchestrator.core.session_store import FileSessionStore
from review_orchestrator.core.state_machine import ReviewOrchestrator
from review_orchestrator.human_loop.decision_gates import ConsoleDecisionChannel
from review_orchestrator.workers.command import CommandWorker

DEFAULT_CONFIG_FILE = ".review_orchestrator.yaml"


def setup_logging(verbose: bool = False, debug: bool = False, log_level: str = "WARNING") -> None:
    """Configure logging; --debug and --verbose override the configured level."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.getLevelName(log_level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_focus(value: str) -> list[Category]:
    """Parse a comma-separated category list."""
    try:
        return [Category(item.strip().lower()) for item in value.split(",") if item.strip()]
    except ValueError as e:
        valid = ", ".join(c.value for c in Category)
        raise argparse.ArgumentTypeError(f"{e}; valid categories: {valid}") from e


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="review-orchestrator",
        description="Multi-phase code review and repair orchestration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Review and repair a target")
    run_parser.add_argument("target", help="File, directory or glob pattern (relative to --project)")
    run_parser.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    run_parser.add_argument(
        "--mode",
        choices=[m.value for m in ReviewMode],
        default=ReviewMode.STANDARD.value,
        help="Review depth (default: standard)",
    )
    run_parser.add_argument(
        "--focus",
        type=parse_focus,
        help="Comma-separated categories (e.g. 'simplify,clarity'; default: all)",
    )
    run_parser.add_argument(
        "--sample-count",
        type=int,
        help="Worker instances per category (default: from mode)",
    )
    run_parser.add_argument(
        "--strategy",
        choices=[s.value for s in MergeStrategy],
        help="Ensemble merge strategy (default: from config)",
    )
    run_parser.add_argument(
        "--consensus-threshold",
        type=int,
        help="Minimum agreement kept by the consensus strategy",
    )
    run_parser.add_argument(
        "--worker-command",
        type=str,
        help="Worker command speaking JSON on stdin/stdout (e.g. 'python my_worker.py')",
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        help=f"YAML config file (default: <project>/{DEFAULT_CONFIG_FILE} if present)",
    )
    run_parser.add_argument(
        "--interactive",
        action="store_true",
        help="Prompt on the console at decision points",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve and report without writing to target files",
    )
    run_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    run_parser.add_argument("--debug", action="store_true", help="Debug output")

    history_parser = subparsers.add_parser("history", help="List persisted sessions")
    history_parser.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project directory",
    )
    history_parser.add_argument("--config", type=Path, help="YAML config file")

    compare_parser = subparsers.add_parser("compare", help="Compare two persisted sessions")
    compare_parser.add_argument("session_a", help="Earlier session id")
    compare_parser.add_argument("session_b", help="Later session id")
    compare_parser.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project directory",
    )
    compare_parser.add_argument("--config", type=Path, help="YAML config file")

    init_parser = subparsers.add_parser("init", help=f"Write a default {DEFAULT_CONFIG_FILE}")
    init_parser.add_argument(
        "--project",
        type=Path,
        default=Path.cwd(),
        help="Project directory",
    )

    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Explicit --config, then the project config file, then environment defaults."""
    config_path = getattr(args, "config", None)
    if config_path is None:
        candidate = args.project / DEFAULT_CONFIG_FILE
        config_path = candidate if candidate.exists() else None
    if config_path is not None:
        return load_settings_from_yaml(config_path)
    return get_settings()


async def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run a review session."""
    project_path = args.project.resolve()

    worker_command = shlex.split(args.worker_command) if args.worker_command else settings.worker_command
    if not worker_command:
        print("Error: no worker command configured (use --worker-command or worker_command in config)")
        return 1

    print(f"Review Orchestrator - Project: {project_path}")
    print("=" * 50)

    orchestrator = ReviewOrchestrator(
        project_path,
        CommandWorker(worker_command, working_dir=project_path),
        settings,
        decision_channel=ConsoleDecisionChannel() if args.interactive else None,
        dry_run=args.dry_run,
    )

    try:
        outcome = await orchestrator.run(
            args.target,
            args.mode,
            focus=args.focus,
            sample_count=args.sample_count,
            strategy=args.strategy,
            consensus_threshold=args.consensus_threshold,
        )
    except ReviewOrchestratorError as e:
        print(f"\nError: {e}")
        if args.debug or settings.debug:
            import traceback
            traceback.print_exc()
        return 1

    print()
    print(outcome.record.summary())
    if outcome.record_path is not None:
        print(f"\nSession saved to {outcome.record_path}")
    else:
        print(f"\nSession could not be saved ({outcome.storage_error}); full record follows:")
        print(outcome.inline_report)

    return 0 if outcome.succeeded else 1


async def cmd_history(args: argparse.Namespace, settings: Settings) -> int:
    """List persisted sessions."""
    store = FileSessionStore(args.project, settings.state_dir)
    summaries = await store.list()
    if not summaries:
        print("No sessions recorded.")
        return 0
    for summary in summaries:
        print(summary.format_row())
    return 0


async def cmd_compare(args: argparse.Namespace, settings: Settings) -> int:
    """Compare two persisted sessions."""
    store = FileSessionStore(args.project, settings.state_dir)
    try:
        record_a = await store.load(args.session_a)
        record_b = await store.load(args.session_b)
    except StorageUnavailableError as e:
        print(f"Error: {e}")
        return 1
    print(compare_sessions(record_a, record_b).format())
    return 0


async def cmd_init(args: argparse.Namespace) -> int:
    """Write the default configuration to <project>/.review_orchestrator.yaml."""
    config_path = args.project / DEFAULT_CONFIG_FILE
    if config_path.exists():
        print(f"Config file already exists: {config_path}")
        return 1

    config_path.write_text(yaml.safe_dump(get_default_config(), sort_keys=False), encoding="utf-8")
    print(f"Created config file: {config_path}")
    print("\nSet worker_command and edit the verification commands for this project.")
    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = load_settings(args) if args.command else get_settings()
    setup_logging(
        verbose=getattr(args, "verbose", False) or settings.verbose,
        debug=getattr(args, "debug", False) or settings.debug,
        log_level=settings.log_level,
    )

    if args.command == "run":
        return await cmd_run(args, settings)
    if args.command == "history":
        return await cmd_history(args, settings)
    if args.command == "compare":
        return await cmd_compare(args, settings)
    if args.command == "init":
        return await cmd_init(args)

    print("Usage: review-orchestrator run TARGET [--mode quick|standard|thorough]")
    print("       review-orchestrator history [--project PATH]")
    print("       review-orchestrator compare ID_A ID_B [--project PATH]")
    print("       review-orchestrator init [--project PATH]")
    return 0


def cli_main() -> None:
    """CLI entry point (synchronous wrapper)."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
