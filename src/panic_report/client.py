"""
HTTP client that delivers crash events to the ingestion endpoint.

The client is built from a DSN connection string of the form

    https://<public_key>[:<secret_key>]@<host>[:<port>][/<path>]/<project>

and posts events to <scheme>://<host>[/<path>]/api/<project>/store/.

Delivery is synchronous. A failed first attempt is retried exactly once
without the raw dump attached, since that text is the part most likely to be
too large or malformed. A 429 response closes a cool-down gate for the
duration the server asks for; sends during the cool-down fail immediately
without touching the network.
"""

import gzip
import json
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import httpx
import structlog

from . import __version__
from .event import RAW_DUMP_EXTRA_KEY, Event
from .exceptions import DeliveryError, InvalidDsnError, RateLimitedError, ReportError

logger = structlog.get_logger(__name__)


SENTRY_PROTOCOL_VERSION = 7
CLIENT_NAME = f"panic-report/{__version__}"
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_RETRY_AFTER_SECONDS = 60.0


@dataclass(frozen=True)
class Dsn:
    """Parsed DSN connection string."""
    base_url: str
    project_id: str
    public_key: str
    secret_key: str = ""

    @property
    def store_endpoint(self) -> str:
        """URL events are posted to."""
        return f"{self.base_url}/api/{self.project_id}/store/"


def parse_dsn(dsn: str) -> Dsn:
    """
    Split a DSN into endpoint base, project id and credentials.

    Args:
        dsn: Connection string

    Returns:
        Dsn: Parsed connection details

    Raises:
        InvalidDsnError: If the string is not a usable http(s) DSN
    """
    if not dsn or not dsn.strip():
        raise InvalidDsnError(dsn, "DSN is empty")

    try:
        url = httpx.URL(dsn.strip())
    except httpx.InvalidURL as e:
        raise InvalidDsnError(dsn, str(e)) from e

    if url.scheme not in ("http", "https"):
        raise InvalidDsnError(dsn, f"unsupported scheme '{url.scheme}'")

    if not url.host:
        raise InvalidDsnError(dsn, "missing host")

    if not url.username:
        raise InvalidDsnError(dsn, "missing public key")

    path_elements = url.path.rstrip("/").split("/")
    project_id = path_elements[-1]
    if not project_id:
        raise InvalidDsnError(dsn, "missing project id")

    host = f"[{url.host}]" if ":" in url.host else url.host
    if url.port is not None:
        host = f"{host}:{url.port}"

    base_path = "/".join(path_elements[:-1])

    return Dsn(
        base_url=f"{url.scheme}://{host}{base_path}",
        project_id=project_id,
        public_key=url.username,
        secret_key=url.password
    )


class CrashReportClient:
    """Sends crash events to a single ingestion endpoint."""

    def __init__(
        self,
        endpoint: str,
        public_key: str,
        secret_key: str = "",
        use_compression: bool = True,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the client.

        Args:
            endpoint: Full store endpoint URL
            public_key: Public key sent in the auth header
            secret_key: Optional secret key sent in the auth header
            use_compression: Gzip request bodies
            timeout: Request timeout in seconds, None to wait indefinitely
            http_client: Client to send requests with; it is not closed by us
            clock: Monotonic time source in seconds
        """
        self.endpoint = endpoint
        self.public_key = public_key
        self.secret_key = secret_key
        self.use_compression = use_compression

        self._clock = clock
        self._drop_until = 0.0
        self._lock = threading.Lock()

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> Optional["CrashReportClient"]:
        """
        Create a client from a DSN.

        A malformed DSN is logged and yields None, so callers can treat
        reporting as unavailable instead of crashing.
        """
        try:
            parsed = parse_dsn(dsn)
        except InvalidDsnError as e:
            logger.error("Failed to parse DSN", reason=e.reason)
            return None

        logger.debug(
            "Crash report client configured",
            endpoint=parsed.store_endpoint,
            has_secret_key=bool(parsed.secret_key)
        )

        return cls(
            endpoint=parsed.store_endpoint,
            public_key=parsed.public_key,
            secret_key=parsed.secret_key,
            **kwargs
        )

    @property
    def drop_until(self) -> float:
        """Clock value until which sends are suppressed."""
        with self._lock:
            return self._drop_until

    def rate_limit_remaining(self) -> float:
        """Seconds left in the current cool-down, 0 if none."""
        with self._lock:
            return max(0.0, self._drop_until - self._clock())

    def capture(self, event: Event) -> str:
        """
        Deliver an event, retrying once without the raw dump.

        Args:
            event: Event to send; the raw dump is removed from its extra data
                if the first attempt fails

        Returns:
            str: Event id assigned by the server

        Raises:
            RateLimitedError: If the cool-down gate is closed
            ReportError: If the retry fails as well
        """
        self._check_cool_down()

        try:
            return self.send(event)
        except ReportError as e:
            logger.error(
                "Failed to send crash report",
                event_id=event.event_id,
                error=str(e)
            )

        logger.warning("Retrying crash report without panic log", event_id=event.event_id)
        event.extra.pop(RAW_DUMP_EXTRA_KEY, None)

        return self.send(event)

    def send(self, event: Event) -> str:
        """
        Make a single delivery attempt.

        Returns:
            str: Event id assigned by the server

        Raises:
            RateLimitedError: If the cool-down gate is closed or the server
                answered 429
            DeliveryError: On transport errors or any other non-200 answer
        """
        self._check_cool_down()

        body, headers = self._encode(event)

        logger.debug(
            "Sending crash report",
            url=self.endpoint,
            event_id=event.event_id,
            payload_size=len(body),
            compressed=self.use_compression
        )

        try:
            response = self._http_client.post(self.endpoint, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"HTTP request failed: {e}") from e

        return self._handle_response(response)

    def auth_header(self) -> str:
        """Value of the X-Sentry-Auth header."""
        parts = [
            f"sentry_version={SENTRY_PROTOCOL_VERSION}",
            f"sentry_client={CLIENT_NAME}",
            f"sentry_key={self.public_key}",
        ]
        if self.secret_key:
            parts.append(f"sentry_secret={self.secret_key}")
        return "Sentry " + ", ".join(parts)

    def close(self):
        """Close the underlying HTTP client if we created it."""
        if self._owns_http_client:
            self._http_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _check_cool_down(self):
        remaining = self.rate_limit_remaining()
        if remaining > 0:
            raise RateLimitedError(remaining)

    def _encode(self, event: Event) -> Tuple[bytes, Dict[str, str]]:
        body = json.dumps(event.to_payload(), separators=(",", ":")).encode("utf-8")

        headers = {
            "Content-Type": "application/json",
            "X-Sentry-Auth": self.auth_header(),
        }

        if self.use_compression:
            body = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"

        headers["Content-Length"] = str(len(body))
        return body, headers

    def _handle_response(self, response: httpx.Response) -> str:
        if response.status_code == 200:
            try:
                return str(response.json()["id"])
            except (ValueError, KeyError, TypeError) as e:
                raise DeliveryError(
                    f"Unexpected response body: {response.text!r}",
                    status_code=response.status_code,
                    body=response.text
                ) from e

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            with self._lock:
                self._drop_until = max(self._drop_until, self._clock() + retry_after)

            logger.warning(
                "Crash report rate limited",
                retry_after_seconds=retry_after
            )
            raise RateLimitedError(retry_after)

        raise DeliveryError(
            f"HTTP request failed with status: {response.status_code} body: {response.text}",
            status_code=response.status_code,
            body=response.text
        )


def _parse_retry_after(value: Optional[str]) -> float:
    """Parse a Retry-After header given in seconds."""
    if value is not None:
        try:
            seconds = float(value.strip())
            if math.isfinite(seconds) and seconds >= 0:
                return seconds
        except ValueError:
            pass

    logger.warning(
        "Failed to parse Retry-After header, using default",
        retry_after=value,
        default=DEFAULT_RETRY_AFTER_SECONDS
    )
    return DEFAULT_RETRY_AFTER_SECONDS
