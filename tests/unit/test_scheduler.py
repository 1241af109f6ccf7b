"""Tests for APScheduler job configuration and nightly sync job body."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from invoice_mirror.scheduler.jobs import _nightly_sync, build_scheduler
from invoice_mirror.sync.service import SyncAlreadyRunningError, SyncResult


class TestBuildScheduler:
    def test_returns_scheduler(self):
        scheduler = build_scheduler(MagicMock())
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_nightly_sync_job_registered(self):
        scheduler = build_scheduler(MagicMock())
        job_ids = [job.id for job in scheduler.get_jobs()]
        assert "nightly_sync" in job_ids

    def test_nightly_sync_is_cron(self):
        scheduler = build_scheduler(MagicMock())
        job = next(j for j in scheduler.get_jobs() if j.id == "nightly_sync")
        assert job.trigger.__class__.__name__ == "CronTrigger"

    def test_sync_hour_from_settings(self):
        """Scheduler respects the SYNC_HOUR setting."""
        with patch("invoice_mirror.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.sync_hour = 4
            scheduler = build_scheduler(MagicMock())

        job = next(j for j in scheduler.get_jobs() if j.id == "nightly_sync")
        fields = {f.name: f for f in job.trigger.fields}
        assert str(fields["hour"]) == "4"

    def test_scheduler_not_running_on_creation(self):
        scheduler = build_scheduler(MagicMock())
        assert not scheduler.running


class TestNightlySyncJob:
    @pytest.mark.asyncio
    async def test_runs_full_sync(self):
        service = MagicMock()
        service.run_full_sync = AsyncMock(return_value=SyncResult(processed_invoices=3))
        await _nightly_sync(service=service)
        service.run_full_sync.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_does_not_propagate(self):
        service = MagicMock()
        service.run_full_sync = AsyncMock(side_effect=RuntimeError("ERP down"))
        await _nightly_sync(service=service)

    @pytest.mark.asyncio
    async def test_skips_when_already_running(self):
        service = MagicMock()
        service.run_full_sync = AsyncMock(side_effect=SyncAlreadyRunningError("busy"))
        await _nightly_sync(service=service)
        service.run_full_sync.assert_awaited_once()
