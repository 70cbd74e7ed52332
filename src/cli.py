#!/usr/bin/env python3
"""CLI entry point for oplat.

Noun-action subcommands:
- resource: Infrastructure lifecycle (create/delete/status/list)
- export-env: Write resource outputs to stdout and .env
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "resource": "Infrastructure lifecycle (create/delete/status/list)",
    "export-env": "Print resource outputs and write them to .env",
}

LEVEL_COLORS = {
    logging.DEBUG: '\033[36m',     # cyan
    logging.INFO: '\033[32m',      # green
    logging.WARNING: '\033[33m',   # yellow
    logging.ERROR: '\033[31m',     # red
    logging.CRITICAL: '\033[1;31m',
}
RESET = '\033[0m'

logger = logging.getLogger(__name__)


class LevelColorFormatter(logging.Formatter):
    """Formatter that colors the level name."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{color}{original}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging; colors only when stderr is a terminal."""
    handler = logging.StreamHandler(sys.stderr)
    formatter_cls = LevelColorFormatter if sys.stderr.isatty() else logging.Formatter
    handler.setFormatter(formatter_cls(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    ))
    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def get_version() -> str:
    try:
        return version('oplat')
    except PackageNotFoundError:
        return 'dev'


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"oplat {get_version()}")
    print()
    print("Usage: oplat <noun> [<action>] [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'oplat <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  oplat resource create -m postgres.yaml")
    print("  oplat resource status -p docker-compose")
    print("  oplat export-env -m postgres.yaml -p docker-compose")


def dispatch_resource(argv: list) -> int:
    """Dispatch 'resource' noun to action-specific handler.

    Args:
        argv: Arguments after 'resource' (e.g., ['create', '-m', 'db.yaml'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        print("Usage: oplat resource <action> [options]")
        print()
        print("Actions:")
        print("  create    Create or update resources from a manifest")
        print("  delete    Delete the stack for this directory")
        print("  status    Show the stack status")
        print("  list      List resource kinds the provider supports")
        print()
        print("Run 'oplat resource <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "create":
        from resource_cli import create_main
        return create_main(rest)
    if action == "delete":
        from resource_cli import delete_main
        return delete_main(rest)
    if action == "status":
        from resource_cli import status_main
        return status_main(rest)
    if action == "list":
        from resource_cli import list_main
        return list_main(rest)

    print(f"Error: Unknown resource action '{action}'")
    print("Available actions: create, delete, status, list")
    return 1


def main(argv=None) -> int:
    """CLI entry point: dispatch to noun-action handlers."""
    argv = sys.argv[1:] if argv is None else list(argv)
    setup_logging()

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('--version', '-V'):
        print(f"oplat {get_version()}")
        return 0
    if first_arg in ('--help', '-h'):
        print_usage()
        return 0

    if first_arg == "resource":
        return dispatch_resource(argv[1:])
    if first_arg == "export-env":
        from resource_cli import export_env_main
        return export_env_main(argv[1:])

    print(f"Error: Unknown command '{first_arg}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
