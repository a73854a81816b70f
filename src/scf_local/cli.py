"""
Local Invocation Runtime - Command Line Driver

Runs one handler invocation and prints the result as JSON.

Usage Examples:
    # Invoke index.main_handler with an inline event
    scf-local-invoke index.py main_handler --event '{"name": "scf"}'

    # Read the event from a file and allow ten seconds
    scf-local-invoke index.py main_handler --event-file event.json --timeout 10
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from .config import config
from .core import InvocationOutcome, LocalInvoker, SpawnFailure


def _setup_logging(verbose: bool) -> logging.Logger:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.logging.level.upper(),
        format=config.logging.format,
        handlers=[logging.StreamHandler(sys.stderr)]
    )
    return logging.getLogger(__name__)


def _load_event(args: argparse.Namespace) -> Any:
    if args.event_file:
        return json.loads(Path(args.event_file).read_text(encoding="utf-8"))
    return json.loads(args.event)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Invoke a serverless handler locally in an isolated worker process",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument('entry', help='Path to the module holding the handler')
    parser.add_argument('handler', help='Name of the handler function')

    event_group = parser.add_mutually_exclusive_group()
    event_group.add_argument(
        '--event',
        default='{}',
        help='Invocation event as a JSON string (default: {})'
    )
    event_group.add_argument(
        '--event-file',
        help='Path to a JSON file holding the invocation event'
    )

    parser.add_argument(
        '--timeout',
        type=float,
        default=config.invocation.timeout_seconds,
        help=f'Invocation timeout in seconds (default: {config.invocation.timeout_seconds})'
    )

    parser.add_argument(
        '--log-max-bytes',
        type=int,
        default=config.invocation.log_max_bytes,
        help='Cap for captured handler output in bytes'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging(args.verbose)

    try:
        event = _load_event(args)
    except (OSError, ValueError) as e:
        parser.error(f"Invalid event: {e}")

    invoker = LocalInvoker(
        default_timeout_seconds=args.timeout,
        log_max_bytes=args.log_max_bytes,
        raise_on_spawn_failure=True
    )

    try:
        result = invoker.invoke(args.entry, args.handler, event)
    except SpawnFailure as e:
        logger.error(f"Could not start worker: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 130

    print(result.to_json())
    return 0 if result.outcome is InvocationOutcome.RESOLVED else 1


if __name__ == "__main__":
    sys.exit(main())
