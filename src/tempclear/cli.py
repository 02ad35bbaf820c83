"""Command-line interface for tempclear."""

import argparse
import asyncio
import os
import sys
import tempfile

from . import __version__
from .autodetect import logical_cpu_count
from .cleaner import async_main
from .logging import log_with_context, setup_logging, shutdown_logging

EXIT_OK = 0
EXIT_UNEXPECTED = 2
EXIT_INTERRUPTED = 130


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tempclear",
        description="tempclear - delete stale files from a temp directory (dry run unless --run is given)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "-r",
        "--run",
        action="store_true",
        help="Actually delete files (without this flag only a dry run is performed)",
    )

    parser.add_argument(
        "-a",
        "--delete-all",
        action="store_true",
        help="Delete every entry directly under the path regardless of age",
    )

    parser.add_argument(
        "-d",
        "--days",
        type=_non_negative_int,
        default=int(os.getenv("TEMPCLEAR_DAYS", "7")),
        help="Delete files older than this many days",
    )

    parser.add_argument(
        "-p",
        "--path",
        default=os.getenv("TEMPCLEAR_PATH") or tempfile.gettempdir(),
        help="Root directory to clean",
    )

    env_parallel = os.getenv("TEMPCLEAR_PARALLEL")
    parser.add_argument(
        "-P",
        "--parallel",
        type=_positive_int,
        nargs="?",
        const=logical_cpu_count(),
        default=int(env_parallel) if env_parallel else None,
        help="Number of parallel deletion workers; without a value, the logical CPU count "
        "(default: auto-detected, or 1 with --no-auto-detect)",
    )

    parser.add_argument(
        "--no-auto-detect",
        dest="auto_detect",
        action="store_false",
        help="Do not benchmark the filesystem to choose the parallelism",
    )

    parser.add_argument(
        "-t",
        "--throttle",
        type=_non_negative_int,
        default=int(os.getenv("TEMPCLEAR_THROTTLE", "0")),
        help="Limit deletion throughput to this many bytes per second (0 = unlimited)",
    )

    parser.add_argument(
        "-l",
        "--log",
        default=os.getenv("TEMPCLEAR_LOG_FILE"),
        help="Also write log lines, with timestamps, to this file",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Emit verbose trace lines",
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=os.getenv("TEMPCLEAR_LOG_FORMAT", "text"),
        help="Console log format",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"tempclear {__version__}",
    )

    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    args = parse_args(argv)

    try:
        logger = setup_logging(verbose=args.verbose, log_format=args.log_format, log_file=args.log)
    except OSError as e:
        print(f"Cannot open log file {args.log}: {e}", file=sys.stderr)
        return EXIT_UNEXPECTED

    log_with_context(logger, "info", "Mode: dry run" if not args.run else "Mode: execute")

    try:
        asyncio.run(
            async_main(
                path=args.path,
                older_than_days=args.days,
                delete_all=args.delete_all,
                dry_run=not args.run,
                parallelism=args.parallel,
                auto_detect=args.auto_detect,
                throttle_bytes=args.throttle or None,
                logger=logger,
            )
        )
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        log_with_context(
            logger,
            "error",
            f"Unexpected error: {e}",
            {"error_type": type(e).__name__},
        )
        return EXIT_UNEXPECTED
    else:
        log_with_context(logger, "info", "Done")
        return EXIT_OK
    finally:
        shutdown_logging(logger)


def main() -> None:
    """Main entry point for the CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()
