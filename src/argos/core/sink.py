"""Central error intake: rate tracking, critical log, retry and safe-call helpers."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import random
import threading
import time
import traceback
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

import psutil

from argos.config import ArgosConfig
from argos.core.classify import is_retryable
from argos.core.journal import CRITICAL_PREFIX, append_line, dated_path
from argos.models.runtime import ErrorRecord, HealthSnapshot

logger = logging.getLogger("argos.sink")

T = TypeVar("T")

HOUR_SECONDS = 3600

# Rate buckets older than this many hours are dropped on every write
BUCKET_RETENTION_HOURS = 2

MemoryReader = Callable[[], "tuple[int, int]"]


def _process_memory() -> tuple[int, int]:
    """(resident bytes of this process, total system memory bytes)."""
    try:
        rss = psutil.Process(os.getpid()).memory_info().rss
        total = psutil.virtual_memory().total
        return rss, total
    except (psutil.Error, OSError):
        logger.debug("Memory sample unavailable", exc_info=True)
        return 0, 0


def _hour_bucket(when: datetime) -> int:
    return int(when.timestamp() // HOUR_SECONDS)


class ErrorSink:
    """Records failures, tracks per-context hourly rates and critical events.

    One instance is constructed by the owning service and passed to every
    component that reports or reads health. All public methods are safe to
    call from any thread, and ``report``/``report_critical``/``snapshot``
    never raise.
    """

    def __init__(
        self,
        logs_dir: Path | None = None,
        max_errors_per_hour: int = 50,
        max_records: int = 1000,
        max_critical: int = 100,
        retention: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] | None = None,
        memory_reader: MemoryReader | None = None,
    ) -> None:
        self.logs_dir = Path(logs_dir) if logs_dir is not None else None
        self.max_errors_per_hour = max_errors_per_hour
        self.retention = retention
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._memory_reader = memory_reader or _process_memory
        self._started = time.monotonic()

        self._lock = threading.RLock()
        self._records: deque[ErrorRecord] = deque(maxlen=max_records)
        self._critical: deque[ErrorRecord] = deque(maxlen=max_critical)
        self._counts: dict[tuple[str, int], int] = {}

    @classmethod
    def from_config(cls, config: ArgosConfig, **kwargs: Any) -> ErrorSink:
        return cls(
            logs_dir=config.logs_dir,
            max_errors_per_hour=config.errors.max_errors_per_hour,
            max_records=config.errors.max_records,
            max_critical=config.errors.max_critical,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def report(self, error: BaseException | str, context: str = "unknown") -> bool:
        """Record a failure. Returns True when ``context`` is over its hourly limit."""
        try:
            record = self._make_record(error, context)
            with self._lock:
                self._records.append(record)
                self._prune_records(record.timestamp)
                return self._track(context, record.timestamp)
        except Exception:
            logger.error("Failed to record error for %s", context, exc_info=True)
            return False

    def report_critical(self, kind: str, error: BaseException | str) -> bool:
        """Record a critical failure and append it to today's critical log.

        Critical records are kept (up to the cap) regardless of age and make
        the process unhealthy.
        """
        try:
            record = self._make_record(error, kind, kind=kind)
            with self._lock:
                self._critical.append(record)
                self._records.append(record)
                self._prune_records(record.timestamp)
                high_rate = self._track(kind, record.timestamp)
        except Exception:
            logger.error("Failed to record critical error %s", kind, exc_info=True)
            return False

        logger.critical("%s: %s", kind, record.message)
        self._write_critical(record)
        return high_rate

    def _make_record(
        self, error: BaseException | str, context: str, kind: str | None = None
    ) -> ErrorRecord:
        if isinstance(error, BaseException):
            message = str(error) or type(error).__name__
            detail = None
            if error.__traceback__ is not None:
                detail = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
        else:
            message = str(error)
            detail = None
        return ErrorRecord(
            message=message,
            context=context,
            timestamp=self._clock(),
            detail=detail,
            kind=kind,
        )

    def _track(self, context: str, when: datetime) -> bool:
        """Bump the (context, hour) bucket; caller holds the lock."""
        hour = _hour_bucket(when)
        recent = self._counts.get((context, hour), 0) + self._counts.get(
            (context, hour - 1), 0
        )
        self._counts[(context, hour)] = self._counts.get((context, hour), 0) + 1

        for key in list(self._counts):
            if key[1] < hour - BUCKET_RETENTION_HOURS:
                del self._counts[key]

        if recent >= self.max_errors_per_hour:
            logger.warning(
                "High error rate for %s: %d errors in the last hour", context, recent + 1
            )
            return True
        return False

    def _prune_records(self, now: datetime) -> None:
        cutoff = now - self.retention
        while self._records and self._records[0].timestamp < cutoff:
            self._records.popleft()

    def _write_critical(self, record: ErrorRecord) -> None:
        if self.logs_dir is None:
            return
        used, total = self._memory_reader()
        payload = record.to_dict()
        payload["process"] = {
            "pid": os.getpid(),
            "uptime": round(time.monotonic() - self._started, 3),
            "memoryUsage": {"used": used, "total": total},
            "platform": platform.system().lower(),
            "pythonVersion": platform.python_version(),
        }
        path = dated_path(self.logs_dir, CRITICAL_PREFIX, record.timestamp)
        try:
            append_line(path, payload)
        except OSError:
            logger.error("Failed to write critical log %s", path, exc_info=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> HealthSnapshot:
        """Current health. Pure read."""
        hour = _hour_bucket(self._clock())
        with self._lock:
            error_count = sum(
                count for (_, bucket), count in self._counts.items() if bucket >= hour - 1
            )
            critical = list(self._critical)

        used, total = self._memory_reader()
        return HealthSnapshot(
            healthy=error_count < self.max_errors_per_hour and not critical,
            error_count=error_count,
            critical_error_count=len(critical),
            last_critical_error=critical[-1] if critical else None,
            uptime_ms=round((time.monotonic() - self._started) * 1000, 3),
            memory_used=used,
            memory_total=total,
        )

    def error_rate(self, context: str) -> int:
        """Errors reported for ``context`` in the current and previous hour."""
        hour = _hour_bucket(self._clock())
        with self._lock:
            return self._counts.get((context, hour), 0) + self._counts.get(
                (context, hour - 1), 0
            )

    def rate_buckets(self) -> dict[tuple[str, int], int]:
        with self._lock:
            return dict(self._counts)

    def recent_errors(self, limit: int = 50) -> list[ErrorRecord]:
        with self._lock:
            records = list(self._records)
        return records[-limit:] if limit else records

    def critical_errors(self) -> list[ErrorRecord]:
        with self._lock:
            return list(self._critical)

    # ------------------------------------------------------------------
    # Call wrappers
    # ------------------------------------------------------------------

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: str = "operation",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        jitter: float = 1.0,
        retry_if: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        """Await ``operation`` with exponential backoff plus jitter.

        Each failed attempt is reported. Non-retryable errors and the error
        from the final attempt propagate to the caller.
        """
        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                self.report(exc, context)
                if attempt >= max_attempts or not retry_if(exc):
                    logger.error(
                        "%s failed after %d attempt(s): %s", context, attempt, exc
                    )
                    raise
                delay = _backoff(attempt, base_delay, jitter)
                logger.warning(
                    "Attempt %d/%d failed for %s: %s (retrying in %.2fs)",
                    attempt, max_attempts, context, exc, delay,
                )
                await asyncio.sleep(delay)
        raise ValueError("max_attempts must be >= 1")

    def retry_sync(
        self,
        operation: Callable[[], T],
        context: str = "operation",
        max_attempts: int = 3,
        base_delay: float = 1.0,
        jitter: float = 1.0,
        retry_if: Callable[[BaseException], bool] = is_retryable,
    ) -> T:
        """Blocking twin of :meth:`retry`."""
        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                self.report(exc, context)
                if attempt >= max_attempts or not retry_if(exc):
                    logger.error(
                        "%s failed after %d attempt(s): %s", context, attempt, exc
                    )
                    raise
                delay = _backoff(attempt, base_delay, jitter)
                logger.warning(
                    "Attempt %d/%d failed for %s: %s (retrying in %.2fs)",
                    attempt, max_attempts, context, exc, delay,
                )
                time.sleep(delay)
        raise ValueError("max_attempts must be >= 1")

    def safe(
        self,
        operation: Callable[[], T],
        fallback: Any = None,
        context: str = "unknown",
    ) -> Any:
        """Call ``operation``; on failure report it and return the fallback.

        A callable fallback is invoked with the exception. If it fails too,
        that failure is reported and None is returned.
        """
        try:
            return operation()
        except Exception as exc:
            logger.error("Safe operation failed in %s: %s", context, exc)
            self.report(exc, context)
            if callable(fallback):
                try:
                    return fallback(exc)
                except Exception as fallback_exc:
                    logger.error("Fallback also failed in %s: %s", context, fallback_exc)
                    self.report(fallback_exc, context)
                    return None
            return fallback

    async def safe_async(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Any = None,
        context: str = "unknown",
    ) -> Any:
        """Awaitable twin of :meth:`safe`; async fallbacks are awaited."""
        try:
            return await operation()
        except Exception as exc:
            logger.error("Safe operation failed in %s: %s", context, exc)
            self.report(exc, context)
            if callable(fallback):
                try:
                    result = fallback(exc)
                    if asyncio.iscoroutine(result):
                        result = await result
                    return result
                except Exception as fallback_exc:
                    logger.error("Fallback also failed in %s: %s", context, fallback_exc)
                    self.report(fallback_exc, context)
                    return None
            return fallback


def _backoff(attempt: int, base_delay: float, jitter: float) -> float:
    """``base_delay * 2**(attempt-1)`` plus up to ``jitter`` seconds."""
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)
