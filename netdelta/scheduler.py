"""
Background scheduling loop.

APScheduler runs a single interval job that calls ScanScheduler.tick(), so
every firing decision happens on one thread at a time (max_instances=1).
Scan work itself runs on the dispatch queue's worker threads.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MISSED,
    EVENT_JOB_ADDED,
    EVENT_JOB_REMOVED,
)

from netdelta.logging_config import get_logger

logger = get_logger(__name__)

TICK_JOB_ID = "scheduler_tick"


class SchedulerService:
    """Drives a ScanScheduler from an APScheduler background thread"""

    def __init__(self, scan_scheduler=None, tick_seconds: float = 1):
        self.scheduler = None
        self.scan_scheduler = scan_scheduler
        self.tick_seconds = tick_seconds
        if scan_scheduler is not None:
            self.init_scheduler(scan_scheduler, tick_seconds)

    def init_scheduler(self, scan_scheduler, tick_seconds: float = 1):
        """Create the APScheduler instance for a ScanScheduler"""
        self.scan_scheduler = scan_scheduler
        self.tick_seconds = tick_seconds

        logger.info("Initializing SchedulerService")

        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed_listener, EVENT_JOB_MISSED)
        self.scheduler.add_listener(self._job_added_listener, EVENT_JOB_ADDED)
        self.scheduler.add_listener(self._job_removed_listener, EVENT_JOB_REMOVED)

        logger.info("SchedulerService initialised successfully")

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def start(self):
        """Start the background tick loop"""
        if self.scheduler is None:
            raise RuntimeError("SchedulerService has no scan scheduler")

        if not self.scheduler.running:
            self.scheduler.add_job(
                func=self._tick,
                trigger="interval",
                seconds=self.tick_seconds,
                id=TICK_JOB_ID,
                name="Scan scheduler tick",
                replace_existing=True,
            )
            self.scheduler.start()
            logger.info("=" * 60)
            logger.info(f"Scheduler started (tick every {self.tick_seconds}s)")
            logger.info("=" * 60)

    def shutdown(self, wait=True):
        """Stop the tick loop and cancel all pending scheduled runs"""
        if self.scheduler and self.scheduler.running:
            logger.info("Shutting down scheduler...")
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown complete")
        if self.scan_scheduler is not None:
            self.scan_scheduler.shutdown()

    def _tick(self):
        fired = self.scan_scheduler.tick()
        if fired:
            logger.debug(f"Tick fired {len(fired)} scheduled scans: {', '.join(fired)}")

    # Event Listeners

    def _job_error_listener(self, event):
        logger.error(
            f"Job '{event.job_id}' crashed with exception: {event.exception}",
            exc_info=event.exception,
        )

    def _job_missed_listener(self, event):
        logger.warning(f"Job '{event.job_id}' missed scheduled run time")

    def _job_added_listener(self, event):
        logger.debug(f"Job '{event.job_id}' added to scheduler")

    def _job_removed_listener(self, event):
        logger.debug(f"Job '{event.job_id}' removed from scheduler")

    def get_all_jobs(self):
        """Get information about the scheduler's own jobs"""
        if self.scheduler is None:
            return []

        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": (
                        job.next_run_time.isoformat()
                        if getattr(job, "next_run_time", None)
                        else None
                    ),
                    "trigger": str(job.trigger),
                }
            )
        return jobs
