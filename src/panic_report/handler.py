"""
Crash handler: from raw dump text to a delivered report.

The handler always writes the dump to local diagnostic output before doing
anything over the network, so a crash is never only visible remotely.
"""

import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, TextIO

import structlog

from .client import CrashReportClient
from .event import RAW_DUMP_EXTRA_KEY, Event
from .exceptions import RateLimitedError, ReportError
from .normalizer import InAppClassifier, build_event
from .parser import parse_trace

logger = structlog.get_logger(__name__)


class ReportStatus(str, Enum):
    """Outcome of handling a crash dump."""
    SENT = "sent"
    NO_PANIC = "no_panic"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class ReportOutcome:
    """Result of report_crash()."""
    status: ReportStatus
    event: Optional[Event] = None
    event_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Check if the event reached the ingestion endpoint."""
        return self.status == ReportStatus.SENT

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "success": self.success,
            "event_id": self.event_id,
            "local_event_id": self.event.event_id if self.event else None,
            "error": self.error
        }


def prepare_event(
    dump: str,
    classifier: Optional[InAppClassifier] = None,
    tags: Optional[Dict[str, str]] = None,
    environment: Optional[str] = None,
    release: Optional[str] = None,
    server_name: Optional[str] = None
) -> Optional[Event]:
    """
    Parse a dump and decorate the resulting event for sending.

    Returns:
        Event with the raw dump attached, or None if the dump has no panic
    """
    trace = parse_trace(dump)
    if trace is None:
        return None

    event = build_event(trace, classifier)
    event.timestamp = datetime.now(timezone.utc)
    event.environment = environment
    event.release = release
    event.server_name = server_name
    if tags:
        event.tags.update(tags)
    event.extra[RAW_DUMP_EXTRA_KEY] = dump
    return event


def report_crash(
    dump: str,
    client: Optional[CrashReportClient],
    classifier: Optional[InAppClassifier] = None,
    tags: Optional[Dict[str, str]] = None,
    environment: Optional[str] = None,
    release: Optional[str] = None,
    server_name: Optional[str] = None,
    echo: bool = True,
    stream: Optional[TextIO] = None
) -> ReportOutcome:
    """
    Handle a captured crash dump.

    Args:
        dump: Complete dump text
        client: Delivery client, or None when reporting is unavailable
        classifier: In-app rules for the normalizer
        tags: Tags to attach to the event
        environment: Environment to attach to the event
        release: Release to attach to the event
        server_name: Server name to attach to the event
        echo: Write the dump to the diagnostic stream first
        stream: Diagnostic stream, defaults to stderr

    Returns:
        ReportOutcome describing what happened
    """
    if echo:
        output = stream or sys.stderr
        output.write(dump)
        if not dump.endswith("\n"):
            output.write("\n")
        output.flush()

    event = prepare_event(
        dump,
        classifier=classifier,
        tags=tags,
        environment=environment,
        release=release,
        server_name=server_name
    )
    if event is None:
        logger.info("No panic found in crash output, nothing to report")
        return ReportOutcome(status=ReportStatus.NO_PANIC)

    if client is None:
        logger.warning(
            "Crash reporting unavailable, event not sent",
            local_event_id=event.event_id
        )
        return ReportOutcome(status=ReportStatus.UNAVAILABLE, event=event)

    try:
        event_id = client.capture(event)
    except RateLimitedError as e:
        logger.warning(
            "Crash report dropped due to rate limiting",
            local_event_id=event.event_id,
            retry_after_seconds=round(e.retry_after, 1)
        )
        return ReportOutcome(status=ReportStatus.RATE_LIMITED, event=event, error=str(e))
    except ReportError as e:
        logger.error(
            "Crash report could not be delivered",
            local_event_id=event.event_id,
            error=str(e)
        )
        return ReportOutcome(status=ReportStatus.FAILED, event=event, error=str(e))

    logger.info("Crash report sent", event_id=event_id)
    return ReportOutcome(status=ReportStatus.SENT, event=event, event_id=event_id)
