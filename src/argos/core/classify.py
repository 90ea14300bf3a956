"""Error taxonomy and shutdown-reason inference."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

from argos.core.errors import ConfigError, DeliveryError
from argos.core.journal import CRITICAL_PREFIX, dated_path, last_entry
from argos.core.status_file import try_read_status_file
from argos.models.enums import ErrorKind, ReasonCategory
from argos.models.runtime import ShutdownReason, parse_iso

logger = logging.getLogger("argos.classify")

# A critical error this recent is taken as the cause of an outage
RECENT_ERROR_WINDOW = timedelta(minutes=15)

# Status files older than this point at an unexpected stop
STOPPED_THRESHOLD = timedelta(minutes=5)

_RETRYABLE_MARKERS = ("timeout", "timed out", "rate limit", "429", "connection", "temporarily")
_PERMANENT_MARKERS = ("unauthorized", "401", "403", "jwt", "permission", "invalid api key")

# Ordered: first match wins
_REASON_PATTERNS: tuple[tuple[tuple[str, ...], str, ReasonCategory], ...] = (
    (("ENOTFOUND", "ECONNREFUSED", "DNS", "Name or service not known", "ConnectError"),
     "Network connectivity issues", ReasonCategory.ERROR),
    (("TOKEN", "Unauthorized", "401", "LoginFailure"),
     "Authentication failure", ReasonCategory.ERROR),
    (("Memory", "heap", "OOM"),
     "Out of memory", ReasonCategory.ERROR),
    (("SIGTERM", "SIGKILL"),
     "Process terminated by system", ReasonCategory.SYSTEM),
    (("TEST:",),
     "Testing/debugging command", ReasonCategory.MANUAL),
    (("RATE_LIMIT", "429"),
     "Rate limiting", ReasonCategory.ERROR),
    (("WebSocket", "Gateway"),
     "Gateway connection issue", ReasonCategory.ERROR),
)


def classify_error(exc: BaseException) -> ErrorKind:
    """Place an exception in the retry taxonomy.

    Timeouts, connection failures, HTTP 429 and 5xx are retryable. Config,
    permission and validation failures (and other 4xx) are permanent.
    Anything unrecognised is treated as retryable.
    """
    if isinstance(exc, (ConfigError, PermissionError)):
        return ErrorKind.PERMANENT
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.RETRYABLE
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.RETRYABLE

    status = _status_code(exc)
    if status is not None:
        if status == 429 or status >= 500:
            return ErrorKind.RETRYABLE
        if 400 <= status < 500:
            return ErrorKind.PERMANENT

    message = str(exc).lower()
    if any(marker in message for marker in _PERMANENT_MARKERS):
        return ErrorKind.PERMANENT
    if any(marker in message for marker in _RETRYABLE_MARKERS):
        return ErrorKind.RETRYABLE
    if isinstance(exc, (ValueError, TypeError)):
        return ErrorKind.PERMANENT
    return ErrorKind.RETRYABLE


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.RETRYABLE


def _status_code(exc: BaseException) -> int | None:
    if isinstance(exc, DeliveryError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def reason_from_error(message: str, stack: str = "") -> ShutdownReason:
    """Map an error message/stack to a human-readable outage reason."""
    text = f"{message} {stack}"
    for markers, reason, category in _REASON_PATTERNS:
        if any(marker in text for marker in markers):
            return ShutdownReason(reason, category)
    snippet = message[:80]
    suffix = "..." if len(message) > 80 else ""
    return ShutdownReason(f"Application error: {snippet}{suffix}", ReasonCategory.ERROR)


def infer_reason(
    logs_dir: Path,
    status_file: Path,
    now: datetime | None = None,
) -> ShutdownReason:
    """Best guess at why the service is down.

    Looks at today's critical log first (entries within 15 minutes count),
    then at the age of the status file.
    """
    now = now or datetime.now(timezone.utc)

    entry = last_entry(dated_path(logs_dir, CRITICAL_PREFIX, now))
    if entry is not None:
        try:
            when = parse_iso(entry.get("timestamp"))
        except ValueError:
            when = None
        if when is not None and now - when < RECENT_ERROR_WINDOW:
            message = str(entry.get("message") or entry.get("error") or "")
            return reason_from_error(message, str(entry.get("stack") or ""))

    record = try_read_status_file(status_file)
    if record is None:
        if Path(status_file).exists():
            return ShutdownReason("Unable to determine shutdown reason")
        return ShutdownReason("No status information available")

    if now - record.last_updated > STOPPED_THRESHOLD:
        return ShutdownReason(
            "Process appears to have stopped unexpectedly", ReasonCategory.ERROR
        )
    return ShutdownReason("Recent shutdown (reason not logged)")
