#!/usr/bin/env python3
"""SnipSync entry point.

This module provides a unified entry point for the server and the CLI:
- serve: Run the sync server
- cli: Inspect the store and check a running server

Usage:
    python -m snipsync.main serve [--host 0.0.0.0] [--port 8384]
    python -m snipsync.main cli status
    python -m snipsync.main cli changes --since 1700000000000
    python -m snipsync.main -d /srv/snipsync cli --format json tombstones
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(config_dir: Optional[Path]) -> None:
    """Configure logging with the level named in the config.

    Args:
        config_dir: Custom configuration directory or None for default
    """
    from snipsync.core.config import Config
    from snipsync.core.validation import ValidationError

    level = "INFO"
    try:
        level = Config(config_dir=config_dir).get_log_level()
    except ValidationError as e:
        print(f"Warning: Invalid {e.field} - {e.message}; using INFO", file=sys.stderr)

    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT)


def create_parser() -> argparse.ArgumentParser:
    """Create the unified argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="SnipSync - synchronization server for a snippet manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m snipsync.main serve                  Start the sync server
  python -m snipsync.main serve --port 9000      Start on port 9000
  python -m snipsync.main cli status             Show row counts
  python -m snipsync.main cli changes --since 0  Show everything a new client would pull
  python -m snipsync.main cli ping --server http://127.0.0.1:8384
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/snipsync/)"
    )

    subparsers = parser.add_subparsers(dest="interface", help="Interface to use")

    from snipsync.server import add_serve_subparser
    add_serve_subparser(subparsers)

    from snipsync.cli import add_cli_subparser
    add_cli_subparser(subparsers)

    return parser


def main() -> NoReturn:
    """Main entry point for SnipSync.

    Parses arguments and dispatches to the appropriate interface.
    """
    parser = create_parser()
    args = parser.parse_args()

    if not args.interface:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.config_dir)

    if args.interface == "serve":
        from snipsync.server import run as run_server
        exit_code = run_server(args.config_dir, args)
    elif args.interface == "cli":
        from snipsync.cli import run as run_cli
        exit_code = run_cli(args.config_dir, args)
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
