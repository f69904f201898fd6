"""
Exception types raised while delivering crash reports.

Parsing never raises: grammar mismatches and bad numbers are logged and
defaulted. Only the transmission side has failure modes the caller needs to
tell apart.
"""

from typing import Optional


class ReportError(Exception):
    """Base class for crash report delivery problems."""


class InvalidDsnError(ReportError):
    """The DSN connection string could not be turned into an endpoint."""

    def __init__(self, dsn: str, reason: str):
        self.dsn = dsn
        self.reason = reason
        super().__init__(f"Invalid DSN: {reason}")


class DeliveryError(ReportError):
    """The ingestion endpoint could not be reached or rejected the event."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class RateLimitedError(ReportError):
    """The event was dropped because the server asked us to back off."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Dropping event - rate limited for another {retry_after:.1f}s")
