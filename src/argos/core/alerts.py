"""Deduplicated offline/recovery alerts delivered over webhooks."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx

from argos.config import ArgosConfig
from argos.core.classify import infer_reason, reason_from_error
from argos.core.errors import DeliveryError
from argos.core.journal import ALERTS_FILE, append_line
from argos.core.probes import FILE_CHECK
from argos.core.report import format_uptime
from argos.core.sink import ErrorSink
from argos.models.runtime import AlertState, ConsensusVerdict, HealthSnapshot, to_iso

logger = logging.getLogger("argos.alerts")

OFFLINE_COLOR = 0xFF0000
ONLINE_COLOR = 0x00FF00


class NotificationChannel(Protocol):
    """Outbound delivery. Returns a message id, raises on failure."""

    async def send(self, payload: dict[str, Any]) -> str: ...


class WebhookChannel:
    """POST JSON payloads to one or more webhook URLs.

    ``?wait=true`` asks the receiver to echo the created message so its id
    can be returned. Delivery succeeds if at least one URL accepted it.
    """

    def __init__(
        self,
        urls: Sequence[str],
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.urls = tuple(urls)
        self.timeout = timeout
        self._transport = transport

    async def send(self, payload: dict[str, Any]) -> str:
        if not self.urls:
            raise DeliveryError("No webhook URLs configured")

        message_ids: list[str] = []
        errors: list[DeliveryError] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for url in self.urls:
                try:
                    message_ids.append(await self._post(client, url, payload))
                except DeliveryError as exc:
                    logger.warning("Webhook delivery failed: %s", exc)
                    errors.append(exc)

        if message_ids:
            return message_ids[0]
        raise errors[-1]

    async def _post(self, client: httpx.AsyncClient, url: str, payload: dict[str, Any]) -> str:
        try:
            response = await client.post(url, params={"wait": "true"}, json=payload)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Webhook request failed: {exc}") from exc

        if response.is_error:
            raise DeliveryError(
                f"Webhook request failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("id"):
            return str(body["id"])
        return uuid.uuid4().hex


class LogChannel:
    """Fallback channel when no webhook is configured: alerts go to the log."""

    async def send(self, payload: dict[str, Any]) -> str:
        for embed in payload.get("embeds", []):
            fields = ", ".join(f"{f['name']}={f['value']}" for f in embed.get("fields", []))
            logger.warning("ALERT %s: %s", embed.get("title"), fields)
        return f"log-{uuid.uuid4().hex[:12]}"


class AlertDispatcher:
    """Turns verdicts into at most one offline alert per cooldown window.

    A repeat alert for a sustained outage waits for the cooldown, unless the
    classification gets strictly worse. Failed deliveries leave the state
    untouched so the next check tries again. Once an alert went out, the
    first online verdict afterwards sends a single recovery notice.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        sink: ErrorSink,
        cooldown_seconds: float = 600.0,
        logs_dir: Path | None = None,
        status_file: Path | None = None,
        username: str = "Argos Monitor",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.channel = channel
        self.sink = sink
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.logs_dir = Path(logs_dir) if logs_dir is not None else None
        self.status_file = Path(status_file) if status_file is not None else None
        self.username = username
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = AlertState()

    @classmethod
    def from_config(
        cls,
        config: ArgosConfig,
        sink: ErrorSink,
        channel: NotificationChannel | None = None,
        **kwargs,
    ) -> AlertDispatcher:
        a = config.alerts
        if channel is None:
            if a.webhook_urls:
                channel = WebhookChannel(a.webhook_urls, timeout=a.request_timeout)
            else:
                logger.info("No webhook URLs configured, alerts will be logged only")
                channel = LogChannel()
        return cls(
            channel,
            sink,
            cooldown_seconds=a.cooldown_seconds,
            logs_dir=config.logs_dir,
            status_file=config.status_file,
            username=a.username,
            **kwargs,
        )

    def should_notify(self, verdict: ConsensusVerdict, now: datetime | None = None) -> bool:
        if verdict.online:
            return False
        state = self.state
        if state.last_notification_at is None:
            return True
        now = now or self._clock()
        if now - state.last_notification_at >= self.cooldown:
            return True
        return verdict.classification.is_worse_than(state.last_classification)

    async def maybe_notify(
        self, verdict: ConsensusVerdict, snapshot: HealthSnapshot | None = None
    ) -> str | None:
        """Send an offline alert if warranted. Returns the message id or None."""
        now = self._clock()
        if not self.should_notify(verdict, now):
            return None

        reason = self._reason(snapshot)
        alert = {
            "type": "OFFLINE",
            "timestamp": to_iso(now),
            "status": verdict.classification.value,
            "confidence": round(verdict.confidence, 3),
            "onlineScore": verdict.online_score,
            "lastSeen": to_iso(self._last_seen(verdict)),
            "reason": reason,
        }
        message_id = await self._deliver(alert, self._offline_payload(verdict, alert))
        if message_id is None:
            return None

        self.state.last_notification_at = now
        self.state.last_classification = verdict.classification
        self.state.last_message_id = message_id
        self.state.offline_alert_active = True
        logger.warning("Offline alert sent (%s, reason: %s)", verdict.classification.value, reason)
        return message_id

    async def maybe_notify_recovery(
        self, verdict: ConsensusVerdict, snapshot: HealthSnapshot | None = None
    ) -> str | None:
        """Send one recovery notice after an outage alert, once the verdict is online."""
        if not verdict.online or not self.state.offline_alert_active:
            return None

        now = self._clock()
        uptime = snapshot.uptime_ms / 1000 if snapshot else self._uptime_from_file(verdict)
        alert = {
            "type": "RECOVERY",
            "timestamp": to_iso(now),
            "status": verdict.classification.value,
            "uptime": uptime,
        }
        message_id = await self._deliver(alert, self._recovery_payload(verdict, alert))
        if message_id is None:
            return None

        self.state = AlertState(last_message_id=message_id)
        logger.info("Recovery notice sent")
        return message_id

    async def _deliver(self, alert: dict[str, Any], payload: dict[str, Any]) -> str | None:
        try:
            message_id = await self.channel.send(payload)
        except Exception as exc:
            logger.error("Failed to deliver %s alert: %s", alert["type"], exc)
            self.sink.report(exc, "alert_delivery")
            self._log_alert({**alert, "delivered": False, "error": str(exc)})
            return None
        self._log_alert({**alert, "delivered": True, "messageId": message_id})
        return message_id

    def _reason(self, snapshot: HealthSnapshot | None) -> str:
        if snapshot is not None and snapshot.last_critical_error is not None:
            err = snapshot.last_critical_error
            return reason_from_error(err.message, err.detail or "").reason
        if self.logs_dir is not None and self.status_file is not None:
            return infer_reason(self.logs_dir, self.status_file, self._clock()).reason
        return "Unknown"

    @staticmethod
    def _last_seen(verdict: ConsensusVerdict) -> datetime | None:
        result = verdict.result_for(FILE_CHECK)
        if result is None or result.status_record is None:
            return None
        record = result.status_record
        return record.last_seen or record.last_updated

    @staticmethod
    def _uptime_from_file(verdict: ConsensusVerdict) -> float:
        result = verdict.result_for(FILE_CHECK)
        if result is None or result.status_record is None:
            return 0.0
        return result.status_record.uptime_seconds

    def _offline_payload(self, verdict: ConsensusVerdict, alert: dict[str, Any]) -> dict[str, Any]:
        probes = "\n".join(
            f"{r.method}: {r.detail}" for r in verdict.results
        ) or "No probes ran"
        embed = {
            "title": "Service Offline Alert",
            "description": "**The monitored service is down**",
            "color": OFFLINE_COLOR,
            "fields": [
                {"name": "Status", "value": alert["status"], "inline": True},
                {"name": "Confidence", "value": f"{alert['confidence']:.0%}", "inline": True},
                {"name": "Last Seen", "value": alert["lastSeen"] or "Unknown", "inline": True},
                {"name": "Reason", "value": alert["reason"], "inline": False},
                {"name": "Checks", "value": probes, "inline": False},
            ],
            "timestamp": alert["timestamp"],
            "footer": {"text": self.username},
        }
        return {"username": self.username, "embeds": [embed]}

    def _recovery_payload(self, verdict: ConsensusVerdict, alert: dict[str, Any]) -> dict[str, Any]:
        embed = {
            "title": "Service Back Online",
            "description": "**The monitored service has recovered**",
            "color": ONLINE_COLOR,
            "fields": [
                {"name": "Status", "value": alert["status"], "inline": True},
                {"name": "Uptime", "value": format_uptime(alert["uptime"]), "inline": True},
            ],
            "timestamp": alert["timestamp"],
            "footer": {"text": self.username},
        }
        return {"username": self.username, "embeds": [embed]}

    def _log_alert(self, entry: dict[str, Any]) -> None:
        if self.logs_dir is None:
            return
        try:
            append_line(self.logs_dir / ALERTS_FILE, entry)
        except OSError as exc:
            logger.error("Failed to log alert: %s", exc)
