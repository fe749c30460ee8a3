"""Command-line entry point: ``statshttpd -c <config file> -l <log dir>``."""

import argparse
import logging
import sys
from collections.abc import Sequence
from functools import partial
from typing import NoReturn, TextIO

from statshttpd.core.bootstrap import ExitCode, ServiceBootstrap
from statshttpd.core.config import Settings, get_settings
from statshttpd.core.logging import configure_logging, shutdown_logging
from statshttpd.services.statshttpd.server import StatsServer


class UsageError(Exception):
    """Bad or missing command-line arguments."""


class _UsageParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _UsageParser(
        prog="statshttpd",
        add_help=False,
        description="Serve pool statistics with the configured persistence backends.",
    )
    parser.add_argument("-c", "--config", dest="config", metavar="statshttpd.yaml")
    parser.add_argument("-l", "--log-dir", dest="log_dir", metavar="log_dir")
    parser.add_argument("-h", "--help", dest="help", action="store_true")
    return parser


def _print_usage(
    parser: argparse.ArgumentParser,
    settings: Settings,
    message: str | None = None,
    stream: TextIO | None = None,
) -> None:
    out = stream if stream is not None else sys.stderr
    print(settings.version_string(), file=out)
    if message:
        print(f"error: {message}", file=out)
    parser.print_usage(out)


def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, configure logging and run the daemon; returns the exit code."""

    arguments = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()
    parser = build_parser()

    if not arguments:
        _print_usage(parser, settings)
        return int(ExitCode.USAGE)

    try:
        args, unknown = parser.parse_known_args(arguments)
    except UsageError as exc:
        _print_usage(parser, settings, str(exc))
        return int(ExitCode.USAGE)

    # positional arguments are ignored; only unrecognized flags print usage
    unknown_flags = [token for token in unknown if token.startswith("-") and token != "-"]
    if args.help or unknown_flags:
        _print_usage(parser, settings)
        return int(ExitCode.OK)

    missing = [flag for flag, value in (("-c", args.config), ("-l", args.log_dir)) if not value]
    if missing:
        _print_usage(parser, settings, f"missing required argument(s): {', '.join(missing)}")
        return int(ExitCode.USAGE)

    try:
        configure_logging(
            settings.LOG_LEVEL,
            args.log_dir,
            file_name=settings.LOG_FILE_NAME,
            max_bytes=settings.log_max_bytes(),
            backup_count=settings.LOG_BACKUP_COUNT,
            stderr_level=settings.LOG_STDERR_LEVEL,
        )
    except OSError as exc:
        _print_usage(parser, settings, f"cannot open log directory {args.log_dir!r}: {exc}")
        return int(ExitCode.USAGE)

    logger = logging.getLogger(__name__)
    logger.info(
        "statshttpd_startup",
        extra={"version": settings.version_string(), "config": args.config, "log_dir": args.log_dir},
    )

    try:
        bootstrap = ServiceBootstrap(args.config, partial(StatsServer, settings=settings))
        return int(bootstrap.run())
    except KeyboardInterrupt:
        logger.warning("statshttpd_interrupted_during_startup")
        return int(ExitCode.UNEXPECTED)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    raise SystemExit(main())
