"""Layered configuration: .argos/config.toml -> ARGOS_* env vars -> defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from argos.core.errors import ConfigError


@dataclass(frozen=True, slots=True)
class PathsConfig:
    """Shared file locations (relative paths resolve against the project)."""

    status_file: str = "logs/bot-status.json"
    logs_dir: str = "logs"


@dataclass(frozen=True, slots=True)
class HeartbeatConfig:
    """Self-report timers owned by the monitored process."""

    interval: float = 30.0
    health_check_interval: float = 300.0
    health_log_interval: float = 1800.0
    initial_check_delay: float = 30.0
    memory_warn_mb: float = 500.0


@dataclass(frozen=True, slots=True)
class ErrorsConfig:
    """ErrorSink limits."""

    max_errors_per_hour: int = 50
    max_records: int = 1000
    max_critical: int = 100
    shutdown_timeout: float = 10.0


@dataclass(frozen=True, slots=True)
class VerifierConfig:
    """Probe weights, timeouts and freshness rules."""

    staleness_seconds: float = 120.0
    process_pattern: str = r"python.*bot"
    process_weight: float = 0.4
    process_timeout: float = 2.0
    file_weight: float = 0.3
    file_timeout: float = 1.0
    api_weight: float = 0.3
    api_timeout: float = 5.0
    poll_interval: float = 30.0


@dataclass(frozen=True, slots=True)
class AlertsConfig:
    """Outbound webhook delivery."""

    webhook_urls: tuple[str, ...] = ()
    cooldown_seconds: float = 600.0
    request_timeout: float = 10.0
    username: str = "Argos Monitor"


@dataclass(frozen=True, slots=True)
class ArgosConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    paths: PathsConfig = field(default_factory=PathsConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    errors: ErrorsConfig = field(default_factory=ErrorsConfig)
    verifier: VerifierConfig = field(default_factory=VerifierConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    @property
    def argos_dir(self) -> Path:
        return self.project_path / ".argos"

    @property
    def status_file(self) -> Path:
        return self.project_path / self.paths.status_file

    @property
    def logs_dir(self) -> Path:
        return self.project_path / self.paths.logs_dir

    @classmethod
    def load(cls, project_path: Path | None = None) -> ArgosConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".argos" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            try:
                with open(toml_path, "rb") as f:
                    toml_data = tomllib.load(f)
            except tomllib.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid {toml_path}: {exc}") from exc

        paths_data = toml_data.get("paths", {})
        hb_data = toml_data.get("heartbeat", {})
        err_data = toml_data.get("errors", {})
        ver_data = toml_data.get("verifier", {})
        alert_data = toml_data.get("alerts", {})

        # Use literal defaults (slots=True prevents class-level attribute access)
        _paths = PathsConfig()
        _hb = HeartbeatConfig()
        _err = ErrorsConfig()
        _ver = VerifierConfig()
        _alerts = AlertsConfig()

        paths = PathsConfig(
            status_file=os.environ.get(
                "ARGOS_STATUS_FILE",
                paths_data.get("status_file", _paths.status_file),
            ),
            logs_dir=os.environ.get(
                "ARGOS_LOGS_DIR",
                paths_data.get("logs_dir", _paths.logs_dir),
            ),
        )

        heartbeat = HeartbeatConfig(
            interval=_positive(
                "ARGOS_HEARTBEAT_INTERVAL", hb_data.get("interval", _hb.interval)
            ),
            health_check_interval=_positive(
                "ARGOS_HEALTH_CHECK_INTERVAL",
                hb_data.get("health_check_interval", _hb.health_check_interval),
            ),
            health_log_interval=_positive(
                "ARGOS_HEALTH_LOG_INTERVAL",
                hb_data.get("health_log_interval", _hb.health_log_interval),
            ),
            initial_check_delay=_number(
                "ARGOS_INITIAL_CHECK_DELAY",
                hb_data.get("initial_check_delay", _hb.initial_check_delay),
                minimum=0.0,
            ),
            memory_warn_mb=_positive(
                "ARGOS_MEMORY_WARN_MB",
                hb_data.get("memory_warn_mb", _hb.memory_warn_mb),
            ),
        )

        errors = ErrorsConfig(
            max_errors_per_hour=int(
                _positive(
                    "ARGOS_MAX_ERRORS_PER_HOUR",
                    err_data.get("max_errors_per_hour", _err.max_errors_per_hour),
                )
            ),
            max_records=int(
                _positive(
                    "ARGOS_MAX_RECORDS",
                    err_data.get("max_records", _err.max_records),
                )
            ),
            max_critical=int(
                _positive(
                    "ARGOS_MAX_CRITICAL",
                    err_data.get("max_critical", _err.max_critical),
                )
            ),
            shutdown_timeout=_positive(
                "ARGOS_SHUTDOWN_TIMEOUT",
                err_data.get("shutdown_timeout", _err.shutdown_timeout),
            ),
        )

        verifier = VerifierConfig(
            staleness_seconds=_positive(
                "ARGOS_STALENESS_SECONDS",
                ver_data.get("staleness_seconds", _ver.staleness_seconds),
            ),
            process_pattern=os.environ.get(
                "ARGOS_PROCESS_PATTERN",
                ver_data.get("process_pattern", _ver.process_pattern),
            ),
            process_weight=_weight(
                "ARGOS_PROCESS_WEIGHT",
                ver_data.get("process_weight", _ver.process_weight),
            ),
            process_timeout=_positive(
                "ARGOS_PROCESS_TIMEOUT",
                ver_data.get("process_timeout", _ver.process_timeout),
            ),
            file_weight=_weight(
                "ARGOS_FILE_WEIGHT", ver_data.get("file_weight", _ver.file_weight)
            ),
            file_timeout=_positive(
                "ARGOS_FILE_TIMEOUT", ver_data.get("file_timeout", _ver.file_timeout)
            ),
            api_weight=_weight(
                "ARGOS_API_WEIGHT", ver_data.get("api_weight", _ver.api_weight)
            ),
            api_timeout=_positive(
                "ARGOS_API_TIMEOUT", ver_data.get("api_timeout", _ver.api_timeout)
            ),
            poll_interval=_positive(
                "ARGOS_POLL_INTERVAL",
                ver_data.get("poll_interval", _ver.poll_interval),
            ),
        )

        raw_urls = os.environ.get("ARGOS_WEBHOOK_URLS")
        if raw_urls is not None:
            webhook_urls = tuple(u.strip() for u in raw_urls.split(",") if u.strip())
        else:
            webhook_urls = tuple(alert_data.get("webhook_urls", _alerts.webhook_urls))

        alerts = AlertsConfig(
            webhook_urls=webhook_urls,
            cooldown_seconds=_number(
                "ARGOS_ALERT_COOLDOWN",
                alert_data.get("cooldown_seconds", _alerts.cooldown_seconds),
                minimum=0.0,
            ),
            request_timeout=_positive(
                "ARGOS_WEBHOOK_TIMEOUT",
                alert_data.get("request_timeout", _alerts.request_timeout),
            ),
            username=os.environ.get(
                "ARGOS_WEBHOOK_USERNAME",
                alert_data.get("username", _alerts.username),
            ),
        )

        return cls(
            project_path=project,
            paths=paths,
            heartbeat=heartbeat,
            errors=errors,
            verifier=verifier,
            alerts=alerts,
        )


def _number(env_name: str, fallback, minimum: float | None = None) -> float:
    """Read a float from the environment, falling back to the TOML/default value."""
    raw = os.environ.get(env_name, fallback)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{env_name}: expected a number, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ConfigError(f"{env_name}: must be >= {minimum}, got {value}")
    return value


def _positive(env_name: str, fallback) -> float:
    value = _number(env_name, fallback)
    if value <= 0:
        raise ConfigError(f"{env_name}: must be > 0, got {value}")
    return value


def _weight(env_name: str, fallback) -> float:
    value = _number(env_name, fallback, minimum=0.0)
    if value > 1.0:
        raise ConfigError(f"{env_name}: weight must be within [0, 1], got {value}")
    return value
