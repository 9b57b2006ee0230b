#!/usr/bin/env python3
"""arkive-sync application entry point.

Usage:
    python -m arkive_sync.main status              # Show sync status
    python -m arkive_sync.main sync                # Drain the queue now
    python -m arkive_sync.main watch receipts      # Follow remote changes
    python -m arkive_sync.main serve --port 8384   # Start the store server
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="arkive-sync",
        description="arkive-sync - offline-first record sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  arkive-sync status                                  Show sync status
  arkive-sync enqueue create receipts --data '{"id": "r1", ...}'
  arkive-sync --format json queue                     List pending operations
  arkive-sync serve --port 8080                       Start the store server
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/arkive-sync/)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    from .cli import add_cli_subparsers
    add_cli_subparsers(subparsers)

    from .server import add_serve_subparser
    add_serve_subparser(subparsers)

    return parser


def main() -> NoReturn:
    """Main entry point for arkive-sync.

    Parses arguments and dispatches to the command.
    """
    parser = create_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        from .server import run as run_server
        exit_code = run_server(args.config_dir, args)
    else:
        from .cli import run as run_cli
        exit_code = run_cli(args.config_dir, args)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
