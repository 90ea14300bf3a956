"""External verification poll: verify, summarise, alert."""

from __future__ import annotations

import asyncio
import logging

from argos.config import ArgosConfig
from argos.core.alerts import AlertDispatcher
from argos.core.report import build_report
from argos.core.scheduler import PeriodicTask
from argos.core.sink import ErrorSink
from argos.core.verifier import StatusVerifier
from argos.models.runtime import StatusReport

logger = logging.getLogger("argos.watch")


class MonitorService:
    """Runs the verifier on a fixed period and feeds verdicts to the dispatcher.

    Runs outside the monitored process. The health passed to the dispatcher
    is the process's last self-report (health log or status file), never a
    live query of the process.
    """

    def __init__(
        self,
        config: ArgosConfig,
        verifier: StatusVerifier,
        dispatcher: AlertDispatcher,
        sink: ErrorSink,
    ) -> None:
        self.config = config
        self.verifier = verifier
        self.dispatcher = dispatcher
        self.sink = sink
        self.last_report: StatusReport | None = None
        self._task: PeriodicTask | None = None

    @classmethod
    def from_config(cls, config: ArgosConfig, **kwargs) -> MonitorService:
        sink = kwargs.pop("sink", None) or ErrorSink.from_config(config)
        verifier = kwargs.pop("verifier", None) or StatusVerifier.from_config(config)
        dispatcher = kwargs.pop("dispatcher", None) or AlertDispatcher.from_config(config, sink)
        return cls(config, verifier, dispatcher, sink)

    async def check_once(self) -> StatusReport:
        """One verification round. Never raises for probe or delivery trouble."""
        verdict = await self.verifier.verify()
        report = build_report(
            verdict,
            self.config.logs_dir,
            self.config.status_file,
            staleness_seconds=self.config.verifier.staleness_seconds,
        )

        previous = self.last_report
        if previous is None or previous.summary_status != report.summary_status:
            logger.info(
                "Status %s -> %s (%s)",
                previous.summary_status.value if previous else "UNKNOWN",
                report.summary_status.value,
                verdict.detail,
            )
        else:
            logger.debug("Status unchanged: %s", report.summary_status.value)

        if verdict.online:
            await self.dispatcher.maybe_notify_recovery(verdict, report.health)
        else:
            await self.dispatcher.maybe_notify(verdict, report.health)

        self.last_report = report
        return report

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask(
            "verification_poll",
            self.config.verifier.poll_interval,
            self.check_once,
            initial_delay=0.0,
        )
        self._task.start()
        logger.info(
            "Monitoring started with %ss interval", self.config.verifier.poll_interval
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            await task.stop()
            logger.info("Monitoring stopped")

    async def run_forever(self) -> None:
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
