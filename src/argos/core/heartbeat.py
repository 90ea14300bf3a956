"""Self-reported heartbeat written by the monitored process."""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import threading
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path

from argos.config import ArgosConfig
from argos.core.journal import (
    HEALTH_ALERTS_FILE,
    HEALTH_PREFIX,
    append_line,
    dated_path,
)
from argos.core.scheduler import PeriodicTask
from argos.core.sink import ErrorSink
from argos.core.status_file import write_status_file
from argos.models.runtime import ConnectionInfo, HealthSnapshot, StatusRecord, to_iso

logger = logging.getLogger("argos.heartbeat")


def _in_thread(func: Callable[[], object]) -> Callable[[], Awaitable[object]]:
    # file writes and psutil sampling stay off the event loop
    return lambda: asyncio.to_thread(func)


class HeartbeatRecorder:
    """Keeps the status file current while the process is alive.

    This is the only writer of the status file. It rewrites the file on a
    fixed interval, immediately on connect/disconnect, and after every health
    check or health-log write. When the process dies the file simply stops
    changing, which is what the verifier's freshness check looks for.
    """

    def __init__(
        self,
        status_file: Path,
        sink: ErrorSink,
        logs_dir: Path | None = None,
        interval: float = 30.0,
        health_check_interval: float = 300.0,
        health_log_interval: float = 1800.0,
        initial_check_delay: float = 30.0,
        memory_warn_mb: float = 500.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.status_file = Path(status_file)
        self.logs_dir = Path(logs_dir) if logs_dir is not None else None
        self.sink = sink
        self.interval = interval
        self.health_check_interval = health_check_interval
        self.health_log_interval = health_log_interval
        self.initial_check_delay = initial_check_delay
        self.memory_warn_mb = memory_warn_mb
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.is_online = False
        self.connection = ConnectionInfo()
        self.start_time = self._clock()
        self.last_seen: datetime | None = None
        self.last_health_check: datetime | None = None
        self._started = time.monotonic()
        self._last_written: datetime | None = None
        self._write_lock = threading.Lock()
        self._tasks: list[PeriodicTask] = []

    @classmethod
    def from_config(cls, config: ArgosConfig, sink: ErrorSink, **kwargs) -> HeartbeatRecorder:
        hb = config.heartbeat
        return cls(
            status_file=config.status_file,
            sink=sink,
            logs_dir=config.logs_dir,
            interval=hb.interval,
            health_check_interval=hb.health_check_interval,
            health_log_interval=hb.health_log_interval,
            initial_check_delay=hb.initial_check_delay,
            memory_warn_mb=hb.memory_warn_mb,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Connection events
    # ------------------------------------------------------------------

    def record_connect(
        self, ping: float | None = None, guild_count: int | None = None
    ) -> StatusRecord:
        """The platform connection came up."""
        logger.info("Platform connected")
        self.is_online = True
        self.connection = ConnectionInfo(
            connected=True,
            ping=ping if ping is not None else self.connection.ping,
            guild_count=guild_count if guild_count is not None else self.connection.guild_count,
        )
        return self.write_status()

    def record_disconnect(self) -> StatusRecord:
        """The platform connection dropped."""
        logger.warning("Platform disconnected")
        self.is_online = False
        self.connection = ConnectionInfo(
            connected=False, ping=None, guild_count=self.connection.guild_count
        )
        return self.write_status()

    def update_connection(
        self, ping: float | None = None, guild_count: int | None = None
    ) -> None:
        """Refresh connection metadata for the next write without flipping state."""
        self.connection = ConnectionInfo(
            connected=self.connection.connected,
            ping=ping if ping is not None else self.connection.ping,
            guild_count=guild_count if guild_count is not None else self.connection.guild_count,
        )

    def mark_offline(self, reason: str | None = None) -> StatusRecord:
        """Final write during a graceful shutdown."""
        logger.info("Marking offline%s", f": {reason}" if reason else "")
        self.is_online = False
        self.connection = ConnectionInfo(connected=False, guild_count=self.connection.guild_count)
        return self.write_status()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_status(self) -> StatusRecord:
        """Atomically replace the status file with the current state.

        ``lastUpdated`` never moves backwards, even if the wall clock does.
        Write failures are reported to the sink, not raised.
        """
        with self._write_lock:
            now = self._clock()
            if self._last_written is not None and now < self._last_written:
                now = self._last_written
            if self.is_online:
                self.last_seen = now

            record = StatusRecord(
                is_online=self.is_online,
                last_updated=now,
                health=self.sink.snapshot(),
                connection=self.connection,
                last_seen=self.last_seen,
                start_time=self.start_time,
                uptime_seconds=round(time.monotonic() - self._started, 3),
                last_health_check=self.last_health_check,
                pid=os.getpid(),
                platform=platform.system().lower(),
                python_version=platform.python_version(),
            )
            try:
                write_status_file(self.status_file, record)
            except OSError as exc:
                logger.error("Failed to write status file %s: %s", self.status_file, exc)
                self.sink.report(exc, "status_write")
                return record
            self._last_written = now
            return record

    def perform_health_check(self) -> HealthSnapshot:
        """Check ErrorSink health, warn on trouble, then rewrite the status file."""
        health = self.sink.snapshot()
        logger.info(
            "Health check: healthy=%s errors(1h)=%d critical=%d uptime=%dm memory=%.0fMB",
            health.healthy,
            health.error_count,
            health.critical_error_count,
            int(health.uptime_ms // 60000),
            health.memory_used_mb,
        )

        if not health.healthy:
            logger.warning("HEALTH ALERT: process is in an unhealthy state")
            self._append_health_alert(health)

        if health.memory_used_mb > self.memory_warn_mb:
            logger.warning("MEMORY ALERT: high memory usage: %.0f MB", health.memory_used_mb)

        self.last_health_check = self._clock()
        self.write_status()
        return health

    def log_health_status(self) -> HealthSnapshot:
        """Append the current health to today's health log, then rewrite the status file."""
        health = self.sink.snapshot()
        if self.logs_dir is not None:
            entry = {"timestamp": to_iso(self._clock()), **health.to_dict()}
            path = dated_path(self.logs_dir, HEALTH_PREFIX, self._clock())
            try:
                append_line(path, entry)
            except OSError as exc:
                logger.error("Failed to write health log %s: %s", path, exc)
                self.sink.report(exc, "health_log")
        self.write_status()
        return health

    def _append_health_alert(self, health: HealthSnapshot) -> None:
        if self.logs_dir is None:
            return
        entry = {
            "timestamp": to_iso(self._clock()),
            "type": "HEALTH_ALERT",
            **health.to_dict(),
        }
        try:
            append_line(self.logs_dir / HEALTH_ALERTS_FILE, entry)
        except OSError as exc:
            logger.error("Failed to write health alert: %s", exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Schedule heartbeat, health-check and health-log timers on the running loop."""
        if self._tasks:
            return
        self._tasks = [
            PeriodicTask(
                "heartbeat", self.interval, _in_thread(self.write_status), initial_delay=0.0
            ),
            PeriodicTask(
                "health_check",
                self.health_check_interval,
                _in_thread(self.perform_health_check),
                initial_delay=self.initial_check_delay,
            ),
            PeriodicTask(
                "health_log", self.health_log_interval, _in_thread(self.log_health_status)
            ),
        ]
        for task in self._tasks:
            task.start()
        logger.info(
            "Heartbeat started (every %ss, status file %s)", self.interval, self.status_file
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            await task.stop()
