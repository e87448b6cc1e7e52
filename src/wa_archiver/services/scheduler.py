"""APScheduler-based daily report and housekeeping jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from wa_archiver.config import DailyReportConfig
from wa_archiver.log import get_logger
from wa_archiver.services.base import Service
from wa_archiver.services.error_log import ErrorLog
from wa_archiver.services.reports import ReportService

logger = get_logger(__name__)

DAILY_REPORT_JOB_ID = "daily_report"
PURGE_ERRORS_JOB_ID = "purge_errors"


class SchedulerService(Service):
    """Sends the daily report at a fixed wall-clock time.

    A failed report is logged and recorded in the error log; it is not
    retried until the next day.
    """

    def __init__(
        self,
        config: DailyReportConfig,
        timezone: str,
        reports: ReportService,
        errors: ErrorLog,
        error_retention_days: int = 30,
    ):
        self._config = config
        self._timezone = timezone
        self._reports = reports
        self._errors = errors
        self._error_retention_days = error_retention_days
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        if self._config.enabled and self._reports.email_enabled:
            self._scheduler.add_job(
                self.run_daily_report,
                CronTrigger(hour=self._config.hour, minute=self._config.minute, timezone=self._timezone),
                id=DAILY_REPORT_JOB_ID,
                replace_existing=True,
                coalesce=True,
                misfire_grace_time=300,
            )
            logger.info(
                "daily_report_scheduled",
                time=f"{self._config.hour:02d}:{self._config.minute:02d}",
                timezone=self._timezone,
                filter_numbers=self._config.filter_numbers or None,
            )
        elif self._config.enabled:
            logger.warning("daily_report_not_scheduled", reason="email not configured")

        self._scheduler.add_job(
            self.purge_old_errors,
            CronTrigger(hour=3, minute=30, timezone=self._timezone),
            id=PURGE_ERRORS_JOB_ID,
            replace_existing=True,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("scheduler_started", timezone=self._timezone)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def next_daily_report(self) -> Optional[datetime]:
        job = self._scheduler.get_job(DAILY_REPORT_JOB_ID)
        return job.next_run_time if job else None

    async def run_daily_report(self) -> bool:
        logger.info("daily_report_started")
        try:
            await self._reports.send_daily_report()
        except Exception as e:
            logger.error("daily_report_failed", error=str(e))
            await self._errors.record_exception(e, location="scheduler.daily_report")
            return False
        return True

    async def purge_old_errors(self) -> int:
        return await self._errors.purge_older_than(self._error_retention_days)
