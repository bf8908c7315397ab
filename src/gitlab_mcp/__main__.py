"""Command line entry point: ``python -m gitlab_mcp`` or the ``gitlab-mcp`` script.

Configuration comes from the environment (``GITLAB_PERSONAL_ACCESS_TOKEN``,
``GITLAB_API_URL``, ...); the only flags control logging and the self-test.
"""

import argparse
import asyncio
import logging
import sys

from gitlab_mcp.errors import SafeError
from gitlab_mcp.server import run_server, self_test


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gitlab-mcp",
        description="MCP server exposing allow-listed GitLab operations over stdio.",
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="List tools and render resources, then exit without serving.",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        help="stderr log level; DEBUG includes per-phase user search logs (default: INFO).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.getLogger().setLevel(args.log_level)

    try:
        asyncio.run(self_test() if args.test else run_server())
    except KeyboardInterrupt:
        print("\nServer stopped by user", file=sys.stderr)
    except SafeError as err:
        print(f"Configuration error: {err.message}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
