"""
Command-line entry point: ``cli-selfupdate [VERSION] [options]``.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from cli_selfupdate.config import add_config_arguments, load_config
from cli_selfupdate.errors import UpdateError
from cli_selfupdate.logging import get_logger, setup_logging
from cli_selfupdate.updates.orchestrator import UpdateOptions, Updater

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cli-selfupdate",
        description="Update the CLI to the latest or a specific version",
    )
    parser.add_argument("version", nargs="?", help="Version to install")
    parser.add_argument("--force", action="store_true", help="Reinstall even if current")
    parser.add_argument("--channel", help="Update channel (e.g. stable, stable-rc)")
    parser.add_argument(
        "--autoupdate",
        action="store_true",
        help="Wait until the CLI has been idle before updating",
    )
    return add_config_arguments(parser)


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)

    config = load_config(cli_args=argv)
    setup_logging(config.logging)

    options = UpdateOptions(
        auto_update=args.autoupdate,
        channel=args.channel,
        force=args.force,
        version=args.version,
    )

    try:
        result = asyncio.run(Updater(config).run_update(options))
    except UpdateError as e:
        logger.error(e.message, extra={"error_code": e.error_code})
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(result.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
