"""
Run a Go program as a child process and report it if it panics.

The child's stderr is passed through to ours line by line while a copy is
kept. When the child exits with a non-zero status and its output contains a
panic header, the captured text goes to the crash handler.
"""

import os
import subprocess
import sys
from typing import List, Optional, Sequence, TextIO

import structlog

from .client import CrashReportClient
from .handler import report_crash
from .patterns import match_failure_header

logger = structlog.get_logger(__name__)


def contains_panic(lines: Sequence[str]) -> bool:
    """Check if captured output has a panic header."""
    return any(match_failure_header(line.rstrip("\r\n")) for line in lines)


def run_wrapped(
    command: List[str],
    client: Optional[CrashReportClient],
    go_traceback: Optional[str] = None,
    stderr: Optional[TextIO] = None,
    **report_kwargs
) -> int:
    """
    Run a command, forwarding its stderr, and report a panic on exit.

    Args:
        command: Program and arguments
        client: Delivery client, or None when reporting is unavailable
        go_traceback: Value for GOTRACEBACK in the child environment
        stderr: Where to forward the child's stderr, defaults to ours
        **report_kwargs: Passed on to report_crash()

    Returns:
        int: The child's exit code

    Raises:
        ValueError: If the command is empty
    """
    if not command:
        raise ValueError("No command given")

    output = stderr or sys.stderr

    env = None
    if go_traceback:
        env = dict(os.environ, GOTRACEBACK=go_traceback)

    logger.debug("Starting wrapped process", command=command)

    captured = []
    process = subprocess.Popen(
        command,
        stderr=subprocess.PIPE,
        env=env,
        text=True,
        errors="replace"
    )
    with process:
        for line in process.stderr:
            output.write(line)
            output.flush()
            captured.append(line)
        exit_code = process.wait()

    logger.debug("Wrapped process exited", command=command, exit_code=exit_code)

    if exit_code == 0 or not contains_panic(captured):
        return exit_code

    outcome = report_crash(
        "".join(captured),
        client,
        echo=False,
        **report_kwargs
    )
    logger.info(
        "Wrapped process panicked",
        command=command,
        exit_code=exit_code,
        report_status=outcome.status.value,
        event_id=outcome.event_id
    )
    return exit_code
