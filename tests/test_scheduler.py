"""Tests for the daily report scheduler."""

import pytest

from wa_archiver.config import DailyReportConfig
from wa_archiver.services.reports import ReportService
from wa_archiver.services.scheduler import (
    DAILY_REPORT_JOB_ID,
    PURGE_ERRORS_JOB_ID,
    SchedulerService,
)


@pytest.mark.asyncio
async def test_daily_job_uses_configured_time(reports, errors):
    config = DailyReportConfig(enabled=True, hour=7, minute=45)
    scheduler = SchedulerService(config, "America/Bogota", reports, errors)
    await scheduler.start()
    try:
        assert await scheduler.health_check()
        next_run = scheduler.next_daily_report()
        assert (next_run.hour, next_run.minute) == (7, 45)
        assert str(next_run.tzinfo) == "America/Bogota"
        assert scheduler._scheduler.get_job(PURGE_ERRORS_JOB_ID) is not None
    finally:
        await scheduler.stop()
    assert not await scheduler.health_check()


@pytest.mark.asyncio
async def test_no_daily_job_without_email(
    email_config, daily_config, commands_config, export, messages, errors
):
    reports = ReportService(None, email_config, daily_config, commands_config, export, messages)
    scheduler = SchedulerService(daily_config, "UTC", reports, errors)
    await scheduler.start()
    try:
        assert scheduler.next_daily_report() is None
        assert scheduler._scheduler.get_job(DAILY_REPORT_JOB_ID) is None
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_failed_report_is_recorded_not_raised(reports, errors, daily_config, email_sender):
    async def broken(message):
        raise RuntimeError("provider down")

    email_sender.send = broken
    scheduler = SchedulerService(daily_config, "UTC", reports, errors)

    assert await scheduler.run_daily_report() is False
    logged, total = await errors.list_errors()
    assert total == 1
    assert logged[0].location == "scheduler.daily_report"


@pytest.mark.asyncio
async def test_successful_report(reports, errors, daily_config, email_sender):
    scheduler = SchedulerService(daily_config, "UTC", reports, errors)
    assert await scheduler.run_daily_report() is True
    assert len(email_sender.sent) == 1
