"""Argos data models."""

from argos.models.enums import Classification, ErrorKind, OverallStatus, ReasonCategory
from argos.models.runtime import (
    AlertState,
    ConnectionInfo,
    ConsensusVerdict,
    ErrorRecord,
    HealthSnapshot,
    ProbeResult,
    ShutdownReason,
    StatusRecord,
    StatusReport,
)

__all__ = [
    "Classification",
    "ErrorKind",
    "OverallStatus",
    "ReasonCategory",
    "ErrorRecord",
    "HealthSnapshot",
    "ConnectionInfo",
    "StatusRecord",
    "ProbeResult",
    "ConsensusVerdict",
    "AlertState",
    "ShutdownReason",
    "StatusReport",
]
