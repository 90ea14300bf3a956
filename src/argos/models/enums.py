"""Enumerations for Argos liveness models."""

from enum import Enum


class Classification(str, Enum):
    """Consensus classification of a weighted liveness vote."""

    STRONGLY_ONLINE = "strongly_online"
    LIKELY_ONLINE = "likely_online"
    UNCERTAIN = "uncertain"
    LIKELY_OFFLINE = "likely_offline"
    STRONGLY_OFFLINE = "strongly_offline"
    NO_DECISIVE_RESULTS = "no_decisive_results"

    @property
    def severity(self) -> int:
        """Rank for "strictly worse" comparisons; higher is worse."""
        return _SEVERITY[self]

    def is_worse_than(self, other: "Classification | None") -> bool:
        if other is None:
            return True
        return self.severity > other.severity


_SEVERITY: dict[Classification, int] = {
    Classification.STRONGLY_ONLINE: 0,
    Classification.LIKELY_ONLINE: 1,
    Classification.UNCERTAIN: 2,
    Classification.LIKELY_OFFLINE: 3,
    Classification.STRONGLY_OFFLINE: 4,
    Classification.NO_DECISIVE_RESULTS: 4,
}


class ErrorKind(str, Enum):
    """Error taxonomy used to decide retry and escalation."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    CRITICAL = "critical"


class ReasonCategory(str, Enum):
    """Why the service most likely went down."""

    ERROR = "error"
    PLANNED = "planned"
    MANUAL = "manual"
    SYSTEM = "system"
    UNKNOWN = "unknown"


class OverallStatus(str, Enum):
    """One-word status for operator summaries."""

    OPERATIONAL = "OPERATIONAL"
    DEGRADED = "DEGRADED"
    OFFLINE = "OFFLINE"
