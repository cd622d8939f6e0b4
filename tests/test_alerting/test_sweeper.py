"""
Tests for the Alert Sweeper.

Covers:
- run_once delegates to the controller
- Failures are contained
- Job registration on start, scheduler shut down on stop
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from carewatch.alerting.schemas import SweepReport
from carewatch.alerting.sweeper import AlertSweeper


class TestAlertSweeper:
    @pytest.mark.asyncio
    async def test_run_once_returns_report(self):
        controller = MagicMock()
        controller.sweep = AsyncMock(return_value=SweepReport(escalated=["alert_1"]))
        report = await AlertSweeper(controller, interval_seconds=5).run_once()
        assert report.escalated == ["alert_1"]

    @pytest.mark.asyncio
    async def test_run_once_contains_failures(self):
        controller = MagicMock()
        controller.sweep = AsyncMock(side_effect=RuntimeError("db down"))
        report = await AlertSweeper(controller, interval_seconds=5).run_once()
        assert report == SweepReport()

    @pytest.mark.asyncio
    async def test_start_registers_single_job(self):
        sweeper = AlertSweeper(MagicMock(), interval_seconds=30)
        sweeper.start()
        try:
            job = sweeper.scheduler.get_job("alert_sweep")
            assert job is not None
            assert job.max_instances == 1
            assert job.trigger.interval.total_seconds() == 30
        finally:
            sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_shuts_scheduler_down(self):
        sweeper = AlertSweeper(MagicMock(), interval_seconds=30)
        sweeper.start()
        sweeper.stop()
        # Shutdown may be scheduled on the loop rather than applied inline.
        for _ in range(10):
            if not sweeper.scheduler.running:
                break
            await asyncio.sleep(0)
        assert not sweeper.scheduler.running
