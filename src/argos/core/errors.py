"""Exception types raised across Argos."""

from __future__ import annotations


class ArgosError(Exception):
    """Base class for Argos errors."""


class ConfigError(ArgosError):
    """Malformed or missing configuration. Never retried."""


class ProbeError(ArgosError):
    """A liveness probe could not produce a result."""


class DeliveryError(ArgosError):
    """An outbound notification could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
