"""
Alert Sweeper — periodic auto-resolve and escalation.

Runs inside the API process on the FastAPI event loop via APScheduler's
AsyncIOScheduler. One job, never overlapping with itself.
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from carewatch.alerting.escalation import EscalationController
from carewatch.alerting.schemas import SweepReport
from carewatch.config import settings

logger = structlog.get_logger(__name__)


class AlertSweeper:
    def __init__(
        self,
        controller: EscalationController,
        interval_seconds: Optional[int] = None,
    ):
        self.controller = controller
        self.interval_seconds = interval_seconds or settings.sweep_interval_seconds
        self.scheduler = AsyncIOScheduler()

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_once,
            IntervalTrigger(seconds=self.interval_seconds),
            id="alert_sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("alert_sweeper_started", interval_seconds=self.interval_seconds)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("alert_sweeper_stopped")

    async def run_once(self) -> SweepReport:
        try:
            return await self.controller.sweep()
        except Exception as e:
            # The scheduler must keep running; the next tick retries.
            logger.error("sweep_failed", error=str(e), exc_info=True)
            return SweepReport()
