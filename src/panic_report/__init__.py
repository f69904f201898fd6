"""
panic-report - Go crash dump parsing and reporting

Turns the text a Go program prints when it panics into a structured crash
event and delivers it to a Sentry-compatible ingestion endpoint.
"""

__version__ = "0.1.0"

from .client import CrashReportClient, Dsn, parse_dsn
from .event import Event
from .exceptions import DeliveryError, InvalidDsnError, RateLimitedError, ReportError
from .handler import ReportOutcome, ReportStatus, report_crash
from .models import ExecutionContext, Failure, Frame, ParsedTrace
from .normalizer import InAppClassifier, build_event, parse_event
from .parser import parse_trace

__all__ = [
    "CrashReportClient",
    "DeliveryError",
    "Dsn",
    "Event",
    "ExecutionContext",
    "Failure",
    "Frame",
    "InAppClassifier",
    "InvalidDsnError",
    "ParsedTrace",
    "RateLimitedError",
    "ReportError",
    "ReportOutcome",
    "ReportStatus",
    "build_event",
    "parse_dsn",
    "parse_event",
    "parse_trace",
    "report_crash",
]
