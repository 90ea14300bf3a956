"""Operator status summaries built from a verdict plus self-reported health."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

from argos.core.classify import infer_reason
from argos.core.journal import HEALTH_PREFIX, dated_path, last_entry
from argos.core.probes import FILE_CHECK
from argos.core.status_file import try_read_status_file
from argos.models.enums import OverallStatus
from argos.models.runtime import (
    ConsensusVerdict,
    HealthSnapshot,
    StatusRecord,
    StatusReport,
    parse_iso,
)

logger = logging.getLogger("argos.report")


def format_uptime(seconds: float) -> str:
    """``3725`` -> ``1h 2m 5s``; leading zero units are dropped."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def read_latest_health(
    logs_dir: Path, now: datetime | None = None
) -> tuple[datetime | None, HealthSnapshot | None]:
    """Last entry of today's health log as ``(timestamp, snapshot)``."""
    entry = last_entry(dated_path(logs_dir, HEALTH_PREFIX, now))
    if entry is None:
        return None, None
    try:
        return parse_iso(entry.get("timestamp")), HealthSnapshot.from_dict(entry)
    except (ValueError, TypeError) as exc:
        logger.debug("Unreadable health log entry: %s", exc)
        return None, None


def _offline_reason(record: StatusRecord | None, stale_after: timedelta, now: datetime) -> str:
    if record is None:
        return "Status file not found"
    if now - record.last_updated > stale_after:
        return "Status updates stopped"
    if not record.is_online:
        return "Service marked offline"
    return "Not detected by independent checks"


def build_report(
    verdict: ConsensusVerdict,
    logs_dir: Path,
    status_file: Path,
    staleness_seconds: float = 120.0,
    now: datetime | None = None,
) -> StatusReport:
    """Summarise a verdict for operators.

    OPERATIONAL when the verdict is online and the latest known health is
    fine, DEGRADED when online but unhealthy, OFFLINE otherwise.
    """
    now = now or datetime.now(timezone.utc)

    file_result = verdict.result_for(FILE_CHECK)
    record = file_result.status_record if file_result else None
    if record is None:
        record = try_read_status_file(status_file)

    health_at, health = read_latest_health(logs_dir, now)
    if health is None and record is not None and record.health is not None:
        health, health_at = record.health, record.last_health_check or record.last_updated

    if not verdict.online:
        summary = OverallStatus.OFFLINE
    elif health is not None and not health.healthy:
        summary = OverallStatus.DEGRADED
    else:
        summary = OverallStatus.OPERATIONAL

    if verdict.online:
        reason, shutdown = "Online", None
    else:
        reason = _offline_reason(record, timedelta(seconds=staleness_seconds), now)
        shutdown = infer_reason(logs_dir, status_file, now)

    return StatusReport(
        verdict=verdict,
        summary_status=summary,
        reason=reason,
        shutdown_reason=shutdown,
        last_seen=record.last_seen if record else None,
        seconds_since_update=round(record.age_seconds(now), 1) if record else None,
        health=health,
        health_checked_at=health_at,
        generated_at=now,
    )
