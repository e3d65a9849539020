"""Background maintenance jobs built on APScheduler."""

import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

STALE_SWEEP_JOB_ID = "sweep_stale_clustering"


class MaintenanceScheduler:
    """Runs periodic housekeeping beside the application.

    Usage::

        sched = MaintenanceScheduler()
        sched.schedule_stale_sweep(orchestrator, stale_after_minutes=30)
        sched.start()
        ...
        sched.stop()
    """

    def __init__(self, timezone: str = "UTC", max_workers: int = 1):
        self._scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone=timezone,
        )
        self._running = False
        logger.info("MaintenanceScheduler initialized (tz=%s, workers=%d)", timezone, max_workers)

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running.")
            return
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started.")

    def stop(self, wait: bool = True) -> None:
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("Scheduler stopped.")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        minutes: float,
        kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        """Add or replace a job that runs every *minutes*."""
        if minutes <= 0:
            raise ValueError(f"Interval must be positive, got {minutes!r}")
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            kwargs=kwargs or {},
            replace_existing=True,
        )
        logger.info("Job added: %s (every %s min)", job_id, minutes)

    def schedule_stale_sweep(
        self,
        orchestrator,
        stale_after_minutes: float = 30,
        interval_minutes: float = 5,
    ) -> None:
        """Periodically fail clustering runs stuck in ``processing``."""
        self.add_interval_job(
            STALE_SWEEP_JOB_ID,
            orchestrator.sweep_stale,
            minutes=interval_minutes,
            kwargs={"stale_after": timedelta(minutes=stale_after_minutes)},
        )

    def remove_job(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except Exception:
            logger.warning("Job not found: %s", job_id)
            return False
        logger.info("Job removed: %s", job_id)
        return True

    def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "id": job.id,
                "trigger": str(job.trigger),
                "next_run_time": (
                    job.next_run_time.isoformat()
                    if getattr(job, "next_run_time", None) else None
                ),
            }
            for job in self._scheduler.get_jobs()
        ]
