"""
Job scheduling with APScheduler.

The archival job fires on a cron expression (default: every day at 04:00
local time) on a BackgroundScheduler thread. Overlapping runs are
impossible: the cron job has max_instances=1 and coalesces missed fires,
and ArchivalJob itself refuses to start while a run is in progress.

run_now() queues one immediate extra run, used right after the first
successful login so the user does not wait until the next fire time.
"""

from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from spot_archiver.core.exceptions import ConfigError
from spot_archiver.core.logger import get_logger

logger = get_logger(__name__)


ARCHIVE_JOB_ID = "archive"
RUN_NOW_JOB_ID = "archive_now"

# A fire missed by less than this (e.g. laptop asleep) still runs
MISFIRE_GRACE_TIME = 3600


def build_trigger(expression: str, timezone=None) -> CronTrigger:
    """
    Build a CronTrigger from a 5-field or 6-field cron expression.

    Args:
        expression: "minute hour day month day_of_week", or the same with a
                    leading seconds field ("0 0 4 * * *").
        timezone: Optional timezone; defaults to the local timezone.

    Raises:
        ConfigError: If the expression is malformed.
    """
    fields = expression.split()
    try:
        if len(fields) == 5:
            return CronTrigger.from_crontab(expression, timezone=timezone)
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                timezone=timezone
            )
    except ValueError as e:
        raise ConfigError(
            f"Invalid schedule '{expression}': {e}",
            details={"field": "schedule", "value": expression}
        ) from e

    raise ConfigError(
        f"Invalid schedule '{expression}': expected 5 or 6 fields",
        details={"field": "schedule", "value": expression}
    )


class JobScheduler:
    """
    Fires ArchivalJob.run on a cron schedule.

    Args:
        job: Object with a run() method (ArchivalJob).
        schedule: Cron expression, see build_trigger().
        scheduler: APScheduler scheduler to use. A BackgroundScheduler is
                   created when omitted.

    Example:
        scheduler = JobScheduler(job, "0 4 * * *")
        scheduler.start()
        ...
        scheduler.shutdown()
    """

    def __init__(self, job, schedule: str, scheduler: BackgroundScheduler | None = None) -> None:
        self.job = job
        self.schedule = schedule
        self.trigger = build_trigger(schedule)
        self._scheduler = scheduler or BackgroundScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Register the cron job and start the scheduler thread."""
        self._scheduler.add_job(
            self.job.run,
            trigger=self.trigger,
            id=ARCHIVE_JOB_ID,
            name="archival run",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_TIME,
        )
        self._scheduler.start()
        logger.info(f"Scheduler started ('{self.schedule}'), next run at {self.next_run_time}")

    def run_now(self) -> None:
        """Queue one immediate archival run next to the cron schedule."""
        self._scheduler.add_job(
            self.job.run,
            trigger=DateTrigger(),
            id=RUN_NOW_JOB_ID,
            name="immediate archival run",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=MISFIRE_GRACE_TIME,
        )
        logger.info("Immediate archival run queued")

    @property
    def next_run_time(self) -> datetime | None:
        """Next cron fire time, computed from the trigger if the job is not scheduled yet."""
        job = self._scheduler.get_job(ARCHIVE_JOB_ID)
        next_run = getattr(job, "next_run_time", None) if job is not None else None
        if next_run is not None:
            return next_run
        return self.trigger.get_next_fire_time(None, datetime.now(self.trigger.timezone))

    def shutdown(self, wait: bool = True) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.debug("Scheduler stopped")
