"""Frozen dataclass models for liveness and health observation data."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from argos.models.enums import Classification, OverallStatus, ReasonCategory


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Render a timestamp as ISO-8601 UTC, ``None`` passes through."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed). Naive values are UTC."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected ISO timestamp string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """One reported failure."""

    message: str
    context: str
    timestamp: datetime = field(default_factory=_now)
    detail: str | None = None  # stack trace or extra context
    kind: str | None = None  # set for critical records, e.g. "UNCAUGHT_EXCEPTION"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "message": self.message,
            "context": self.context,
            "stack": self.detail,
            "timestamp": to_iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorRecord:
        return cls(
            message=str(data.get("message") or data.get("error") or ""),
            context=str(data.get("context") or data.get("type") or "unknown"),
            timestamp=parse_iso(data.get("timestamp")) or _now(),
            detail=data.get("stack"),
            kind=data.get("type"),
        )


@dataclass(frozen=True, slots=True)
class HealthSnapshot:
    """Health of the monitored process, derived from ErrorSink state."""

    healthy: bool
    error_count: int
    critical_error_count: int
    uptime_ms: float
    memory_used: int
    memory_total: int
    last_critical_error: ErrorRecord | None = None

    @property
    def memory_used_mb(self) -> float:
        return round(self.memory_used / (1024 * 1024), 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "errorCount": self.error_count,
            "criticalErrorCount": self.critical_error_count,
            "lastCriticalError": (
                self.last_critical_error.to_dict() if self.last_critical_error else None
            ),
            "uptimeMs": self.uptime_ms,
            "memoryUsage": {"used": self.memory_used, "total": self.memory_total},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HealthSnapshot:
        memory = data.get("memoryUsage") or {}
        last = data.get("lastCriticalError")
        return cls(
            healthy=bool(data.get("healthy", False)),
            error_count=int(data.get("errorCount", 0)),
            critical_error_count=int(data.get("criticalErrorCount", 0)),
            uptime_ms=float(data.get("uptimeMs", data.get("uptime", 0.0)) or 0.0),
            memory_used=int(memory.get("used", 0) or 0),
            memory_total=int(memory.get("total", 0) or 0),
            last_critical_error=ErrorRecord.from_dict(last) if last else None,
        )


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    """Chat-platform connection metadata reported by the monitored process."""

    connected: bool = False
    ping: float | None = None
    guild_count: int = 0


@dataclass(frozen=True, slots=True)
class StatusRecord:
    """The shared status file: a single current value written by the heartbeat."""

    is_online: bool
    last_updated: datetime
    health: HealthSnapshot | None = None
    connection: ConnectionInfo = field(default_factory=ConnectionInfo)
    last_seen: datetime | None = None
    start_time: datetime | None = None
    uptime_seconds: float = 0.0
    last_health_check: datetime | None = None
    pid: int | None = None
    platform: str | None = None
    python_version: str | None = None

    @property
    def status(self) -> str:
        return "ONLINE" if self.is_online else "OFFLINE"

    def age_seconds(self, now: datetime | None = None) -> float:
        now = now or _now()
        return (now - self.last_updated).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        health = self.health.to_dict() if self.health else {}
        health["lastHealthCheck"] = to_iso(self.last_health_check)
        return {
            "botStatus": {
                "isOnline": self.is_online,
                "status": self.status,
                "lastSeen": to_iso(self.last_seen),
                "startTime": to_iso(self.start_time),
                "uptime": self.uptime_seconds,
            },
            "health": health,
            "discordConn": {
                "connected": self.connection.connected,
                "ping": self.connection.ping,
                "guildCount": self.connection.guild_count,
            },
            "system": {
                "pid": self.pid,
                "platform": self.platform,
                "pythonVersion": self.python_version,
            },
            "lastUpdated": to_iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusRecord:
        """Parse a status document. Raises ValueError when it is malformed."""
        if not isinstance(data, dict):
            raise ValueError("Status document must be a JSON object")
        last_updated = parse_iso(data.get("lastUpdated"))
        if last_updated is None:
            raise ValueError("Status document has no lastUpdated")

        bot = data.get("botStatus") or {}
        health_data = data.get("health") or {}
        # older writers used "discord" with "guilds"
        conn = data.get("discordConn") or data.get("discord") or {}
        system = data.get("system") or {}
        ping = conn.get("ping")

        try:
            return cls(
                is_online=bot.get("isOnline") is True,
                last_updated=last_updated,
                health=HealthSnapshot.from_dict(health_data) if "healthy" in health_data else None,
                connection=ConnectionInfo(
                    connected=bool(conn.get("connected", False)),
                    ping=float(ping) if ping is not None else None,
                    guild_count=int(conn.get("guildCount", conn.get("guilds", 0)) or 0),
                ),
                last_seen=parse_iso(bot.get("lastSeen")),
                start_time=parse_iso(bot.get("startTime")),
                uptime_seconds=float(bot.get("uptime") or 0.0),
                last_health_check=parse_iso(health_data.get("lastHealthCheck")),
                pid=system.get("pid"),
                platform=system.get("platform"),
                python_version=system.get("pythonVersion"),
            )
        except (TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed status document: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one liveness probe."""

    method: str
    online: bool | None  # None: no opinion, excluded from the vote
    confidence: float
    weight: float
    detail: str = ""
    succeeded: bool = True
    error: str | None = None
    timestamp: datetime = field(default_factory=_now)
    status_record: StatusRecord | None = None  # set by the file probe

    def to_dict(self) -> dict[str, Any]:
        data = {
            "method": self.method,
            "online": self.online,
            "confidence": self.confidence,
            "weight": self.weight,
            "detail": self.detail,
            "succeeded": self.succeeded,
            "error": self.error,
            "timestamp": to_iso(self.timestamp),
        }
        if self.status_record is not None:
            data["lastFileUpdate"] = to_iso(self.status_record.last_updated)
        return data


@dataclass(frozen=True, slots=True)
class ConsensusVerdict:
    """Weighted-vote outcome over all probe results."""

    online: bool
    confidence: float
    classification: Classification
    online_score: float | None
    results: tuple[ProbeResult, ...] = ()
    detail: str = ""
    checked_at: datetime = field(default_factory=_now)

    @property
    def successful(self) -> tuple[ProbeResult, ...]:
        return tuple(r for r in self.results if r.succeeded)

    @property
    def failed(self) -> tuple[ProbeResult, ...]:
        return tuple(r for r in self.results if not r.succeeded)

    def result_for(self, method: str) -> ProbeResult | None:
        for result in self.results:
            if result.method == method:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "online": self.online,
            "confidence": self.confidence,
            "classification": self.classification.value,
            "onlineScore": self.online_score,
            "detail": self.detail,
            "checkedAt": to_iso(self.checked_at),
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(slots=True)
class AlertState:
    """Bookkeeping for alert deduplication. Mutated only by the dispatcher."""

    last_notification_at: datetime | None = None
    last_classification: Classification | None = None
    last_message_id: str | None = None
    offline_alert_active: bool = False


@dataclass(frozen=True, slots=True)
class ShutdownReason:
    """Best guess at why the service stopped."""

    reason: str
    category: ReasonCategory = ReasonCategory.UNKNOWN


@dataclass(frozen=True, slots=True)
class StatusReport:
    """Operator-facing summary combining a verdict with self-reported health."""

    verdict: ConsensusVerdict
    summary_status: OverallStatus
    reason: str
    shutdown_reason: ShutdownReason | None = None
    last_seen: datetime | None = None
    seconds_since_update: float | None = None
    health: HealthSnapshot | None = None
    health_checked_at: datetime | None = None
    generated_at: datetime = field(default_factory=_now)

    @property
    def operational(self) -> bool:
        return self.summary_status is OverallStatus.OPERATIONAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": to_iso(self.generated_at),
            "summary": {
                "status": self.summary_status.value,
                "operational": self.operational,
            },
            "bot": {
                "online": self.verdict.online,
                "reason": self.reason,
                "shutdownReason": (
                    self.shutdown_reason.reason if self.shutdown_reason else None
                ),
                "lastSeen": to_iso(self.last_seen),
                "timeSinceUpdate": self.seconds_since_update,
            },
            "health": self.health.to_dict() if self.health else None,
            "healthCheckedAt": to_iso(self.health_checked_at),
            "verdict": self.verdict.to_dict(),
        }
