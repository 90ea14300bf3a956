"""Independent liveness probes.

Each probe answers "is the service alive?" from one vantage point and says
how much it trusts its own answer. None of them asks the service itself.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

import psutil

from argos.core.errors import ProbeError
from argos.core.status_file import read_status_file
from argos.models.runtime import ProbeResult

logger = logging.getLogger("argos.probes")

PROCESS_CHECK = "process_check"
FILE_CHECK = "file_check"
API_CHECK = "api_check"

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """Run `func(*args)` on a daemon thread and await its result.

    The thread lives outside the loop's default executor, so a call stuck in
    the OS never holds up `asyncio.run` shutdown or later probes. Cancelling
    the await abandons the thread.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def settle(result: Any, exc: Exception | None) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def worker() -> None:
        result, error = None, None
        try:
            result = func(*args)
        except Exception as exc:
            error = exc
        try:
            loop.call_soon_threadsafe(settle, result, error)
        except RuntimeError:
            logger.debug("Loop closed before %s returned", getattr(func, "__name__", func))

    threading.Thread(target=worker, name="argos-probe", daemon=True).start()
    return await future


@runtime_checkable
class Probe(Protocol):
    """One way of estimating liveness."""

    name: str
    weight: float
    timeout: float
    description: str

    async def run(self) -> ProbeResult: ...


# ----------------------------------------------------------------------
# Process table
# ----------------------------------------------------------------------


class ProcessTable(Protocol):
    """OS process-table lookup. Raises ProbeError if the table can't be read."""

    def find(self, pattern: str) -> list[int]: ...


class PsutilProcessTable:
    """Match a regex against every process's command line via psutil."""

    def __init__(self, exclude_self: bool = True) -> None:
        self.exclude_self = exclude_self

    def find(self, pattern: str) -> list[int]:
        regex = re.compile(pattern)
        own_pid = os.getpid()
        pids: list[int] = []
        try:
            for proc in psutil.process_iter(["pid", "cmdline", "name"]):
                info = proc.info
                if self.exclude_self and info["pid"] == own_pid:
                    continue
                cmdline = info.get("cmdline") or [info.get("name") or ""]
                if regex.search(" ".join(cmdline)):
                    pids.append(info["pid"])
        except (psutil.Error, OSError) as exc:
            raise ProbeError(f"Cannot read process table: {exc}") from exc
        return pids


class ProcessProbe:
    """Is a process matching the service's command line running?"""

    name = PROCESS_CHECK
    description = "Direct process detection"

    def __init__(
        self,
        pattern: str,
        table: ProcessTable | None = None,
        weight: float = 0.4,
        timeout: float = 2.0,
    ) -> None:
        self.pattern = pattern
        self.table = table or PsutilProcessTable()
        self.weight = weight
        self.timeout = timeout

    async def run(self) -> ProbeResult:
        try:
            pids = await run_blocking(self.table.find, self.pattern)
        except (ProbeError, OSError, re.error) as exc:
            logger.warning("Process check error: %s", exc)
            return ProbeResult(
                method=self.name,
                online=False,
                confidence=0.5,
                weight=self.weight,
                detail=f"Process check error: {exc}",
                error=str(exc),
            )

        if pids:
            detail = f"Running PIDs: {', '.join(str(p) for p in pids)}"
        else:
            detail = "No matching process detected"
        return ProbeResult(
            method=self.name,
            online=bool(pids),
            confidence=0.9,
            weight=self.weight,
            detail=detail,
        )


# ----------------------------------------------------------------------
# Status file
# ----------------------------------------------------------------------


class FileProbe:
    """Read the heartbeat's status file and judge how far to believe it.

    A fresh file is trusted for its reported flag. A stale file is evidence
    the writer stopped, whatever it last claimed.
    """

    name = FILE_CHECK
    description = "Status file verification"

    def __init__(
        self,
        path: Path,
        staleness_seconds: float = 120.0,
        weight: float = 0.3,
        timeout: float = 1.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.staleness = timedelta(seconds=staleness_seconds)
        self.weight = weight
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _result(self, online: bool, confidence: float, detail: str, **kwargs) -> ProbeResult:
        return ProbeResult(
            method=self.name,
            online=online,
            confidence=confidence,
            weight=self.weight,
            detail=detail,
            **kwargs,
        )

    async def run(self) -> ProbeResult:
        try:
            record = await run_blocking(read_status_file, self.path)
        except FileNotFoundError:
            return self._result(False, 0.8, "Status file not found")
        except (OSError, ValueError) as exc:
            return self._result(
                False, 0.3, f"Status file read error: {exc}", error=str(exc)
            )

        age = self._clock() - record.last_updated
        if age > self.staleness:
            minutes = round(age.total_seconds() / 60)
            return self._result(
                False,
                0.2,
                f"Status file is stale ({minutes} minutes old)",
                status_record=record,
            )

        reported = "online" if record.is_online else "offline"
        return self._result(
            record.is_online,
            0.7,
            f"Status current, reports: {reported}",
            status_record=record,
        )


# ----------------------------------------------------------------------
# Presence (extension point)
# ----------------------------------------------------------------------

PresenceCheck = Callable[[], Awaitable["bool | None"]]


class PresenceProbe:
    """External presence signal, e.g. the chat platform's presence API.

    Without a ``check`` this probe has no opinion (``online=None``) and is
    left out of the vote. Supplying a coroutine function that returns
    True/False/None turns it into a real vote without touching the verifier.
    """

    name = API_CHECK
    description = "Platform presence verification"

    def __init__(
        self,
        check: PresenceCheck | None = None,
        weight: float = 0.3,
        timeout: float = 5.0,
        confidence: float = 0.8,
    ) -> None:
        self.check = check
        self.weight = weight
        self.timeout = timeout
        self.confidence = confidence

    async def run(self) -> ProbeResult:
        if self.check is None:
            return ProbeResult(
                method=self.name,
                online=None,
                confidence=0.0,
                weight=self.weight,
                detail="Presence verification not configured",
            )

        online = await self.check()
        if online is None:
            return ProbeResult(
                method=self.name,
                online=None,
                confidence=0.0,
                weight=self.weight,
                detail="Presence source gave no answer",
            )
        return ProbeResult(
            method=self.name,
            online=bool(online),
            confidence=self.confidence,
            weight=self.weight,
            detail=f"Presence reports {'online' if online else 'offline'}",
        )
