"""
Command line entry point for panic-report.

    panic-report parse crash.txt             # print the normalized event
    panic-report send --dsn DSN crash.txt    # parse and deliver
    panic-report wrap -- ./server --flag     # run a program, report its panic
"""

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional, TextIO

import structlog

from . import __version__
from .client import CrashReportClient
from .config import LOG_FORMATS, LOG_LEVELS, Settings, load_settings
from .handler import ReportStatus, report_crash
from .normalizer import build_event
from .parser import parse_trace
from .wrapper import run_wrapped

logger = structlog.get_logger(__name__)


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_PANIC = 3
EXIT_USAGE = 2


def configure_logging(log_level: str = "INFO", log_format: str = "json"):
    """Configure structlog on top of stdlib logging, writing to stderr."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(message)s",
        stream=sys.stderr
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _tag(value: str):
    key, sep, tag_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Tag must be KEY=VALUE, got '{value}'")
    return key, tag_value


def build_arg_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panic-report",
        description="Parse Go crash dumps and report them to an error tracking service"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        type=str.upper,
        default=settings.log_level,
        help="Log level (default: %(default)s)"
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=settings.log_format,
        help="Log output format (default: %(default)s)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_parser = subparsers.add_parser("parse", help="Print the normalized event for a dump")
    parse_parser.add_argument("file", nargs="?", default="-", help="Dump file, '-' for stdin")

    reporting = argparse.ArgumentParser(add_help=False)
    reporting.add_argument(
        "--dsn",
        default=settings.dsn,
        help="DSN of the ingestion endpoint (default: $PANIC_REPORT_DSN)"
    )
    reporting.add_argument(
        "--no-compression",
        action="store_true",
        default=not settings.use_compression,
        help="Send uncompressed request bodies"
    )
    reporting.add_argument(
        "--tag",
        action="append",
        type=_tag,
        default=[],
        metavar="KEY=VALUE",
        help="Tag to attach to the event, may be repeated"
    )
    reporting.add_argument("--environment", default=settings.environment)
    reporting.add_argument("--release", default=settings.release)

    send_parser = subparsers.add_parser(
        "send",
        parents=[reporting],
        help="Parse a dump and send it"
    )
    send_parser.add_argument("file", nargs="?", default="-", help="Dump file, '-' for stdin")

    wrap_parser = subparsers.add_parser(
        "wrap",
        parents=[reporting],
        help="Run a program and report it if it panics"
    )
    wrap_parser.add_argument(
        "--traceback",
        default=None,
        help="GOTRACEBACK value for the child, e.g. 'all'"
    )
    wrap_parser.add_argument("program", nargs=argparse.REMAINDER, help="Program and arguments")

    return parser


def _read_input(path: str, stdin: TextIO) -> str:
    if path == "-":
        return stdin.read()
    with open(path, encoding="utf-8", errors="replace") as f:
        return f.read()


def _make_client(settings: Settings, args: argparse.Namespace) -> Optional[CrashReportClient]:
    if not args.dsn:
        logger.warning("No DSN configured, crash reporting unavailable")
        return None
    return CrashReportClient.from_dsn(
        args.dsn,
        use_compression=not args.no_compression,
        timeout=settings.timeout_seconds
    )


def _report_kwargs(settings: Settings, args: argparse.Namespace) -> Dict:
    tags = dict(settings.tags)
    tags.update(dict(args.tag))
    return {
        "classifier": settings.build_classifier(),
        "tags": tags,
        "environment": args.environment,
        "release": args.release,
        "server_name": settings.server_name,
    }


def _run_parse(settings: Settings, args: argparse.Namespace, stdin: TextIO) -> int:
    trace = parse_trace(_read_input(args.file, stdin))
    if trace is None:
        print("No panic found in input", file=sys.stderr)
        return EXIT_NO_PANIC

    event = build_event(trace, settings.build_classifier())
    print(json.dumps(event.to_payload(), indent=2))
    return EXIT_OK


def _run_send(settings: Settings, args: argparse.Namespace, stdin: TextIO) -> int:
    dump = _read_input(args.file, stdin)
    client = _make_client(settings, args)
    try:
        outcome = report_crash(dump, client, **_report_kwargs(settings, args))
    finally:
        if client is not None:
            client.close()

    print(json.dumps(outcome.to_dict()))
    if outcome.status == ReportStatus.NO_PANIC:
        return EXIT_NO_PANIC
    return EXIT_OK if outcome.success else EXIT_FAILURE


def _run_wrap(settings: Settings, args: argparse.Namespace) -> int:
    program = list(args.program)
    if program and program[0] == "--":
        program = program[1:]
    if not program:
        print("wrap: no program given", file=sys.stderr)
        return EXIT_USAGE

    client = _make_client(settings, args)
    try:
        return run_wrapped(
            program,
            client,
            go_traceback=args.traceback,
            **_report_kwargs(settings, args)
        )
    finally:
        if client is not None:
            client.close()


def main(argv: Optional[List[str]] = None, stdin: Optional[TextIO] = None) -> int:
    """
    Run the command line interface.

    Returns:
        int: Process exit code
    """
    settings = load_settings()
    args = build_arg_parser(settings).parse_args(argv)

    configure_logging(args.log_level, args.log_format)

    stdin = stdin or sys.stdin
    try:
        if args.command == "parse":
            return _run_parse(settings, args, stdin)
        if args.command == "send":
            return _run_send(settings, args, stdin)
        return _run_wrap(settings, args)
    except OSError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"{args.command}: {e}", file=sys.stderr)
        return EXIT_FAILURE


def cli():
    """Command-line interface entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    cli()
