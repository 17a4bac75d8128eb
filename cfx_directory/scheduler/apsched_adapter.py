"""APScheduler wrapper exposing the periodic refresh job."""

from __future__ import annotations

from typing import Callable

import structlog
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

REFRESH_JOB_ID = "directory::refresh"


class APSchedulerAdapter:
    """Own a background scheduler running interval jobs."""

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self.scheduler = BackgroundScheduler()
        self.logger = (logger or structlog.get_logger("cfx_directory.scheduler")).bind(
            component="scheduler"
        )
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_refresh(
        self,
        callback: Callable[[], None],
        interval: float,
        job_id: str = REFRESH_JOB_ID,
    ) -> None:
        """Run ``callback`` every ``interval`` seconds; overlapping runs are skipped."""

        self.scheduler.add_job(
            callback,
            trigger=self._build_trigger(interval),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job_id=job_id, interval=interval)

    def cancel(self, job_id: str = REFRESH_JOB_ID) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            self.logger.debug("job_remove_missing", job_id=job_id)
            return False
        self.logger.info("job_cancelled", job_id=job_id)
        return True

    def _build_trigger(self, interval: float) -> IntervalTrigger:
        if interval <= 0:
            raise ValueError("Refresh interval must be > 0 seconds")
        return IntervalTrigger(seconds=float(interval))

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "REFRESH_JOB_ID"]
