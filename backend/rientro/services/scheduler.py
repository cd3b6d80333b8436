"""
Background Job Scheduler for Rientro.

Handles scheduled tasks using APScheduler:
- Escalation sweep (every `sweep_interval_minutes`)
- Retention cleanup (daily at `retention_hour_utc`)

Job failures are counted per job and a job that keeps failing is logged at
CRITICAL level. The escalation sweep is never paused: its next interval is
the retry. Other jobs are paused at the threshold and resumed by the next
successful run or through the jobs API.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from rientro.core.config import settings
from rientro.core.results import HandlerResult

from .engine import get_engine


# Configure logging
logger = logging.getLogger(__name__)


SWEEP_JOB_ID = "escalation_sweep"
RETENTION_JOB_ID = "retention_cleanup"


# ==========================================
# Job Failure Monitor
# ==========================================

class JobFailureMonitor:
    """
    Count job failures over the last 24 hours and flag jobs for pausing.

    A stalled sweep means late travelers are never escalated, so repeated
    failures are logged at CRITICAL level.
    """

    def __init__(self, failure_threshold: int = 2, never_pause: Iterable[str] = ()):
        self.failure_threshold = failure_threshold
        self.never_pause = frozenset(never_pause)
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.last_errors: Dict[str, str] = {}
        self.paused_jobs: set = set()

    def record_success(self, job_id: str) -> None:
        """Record job success - reset failure count."""
        self.failed_jobs[job_id] = []
        self.last_errors.pop(job_id, None)
        self.paused_jobs.discard(job_id)

    def record_failure(self, job_id: str, error: str) -> bool:
        """
        Record job failure.

        Returns True if the job should be paused.
        """
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(hours=24)

        self.failed_jobs[job_id].append(now)
        self.failed_jobs[job_id] = [t for t in self.failed_jobs[job_id] if t > cutoff]
        self.last_errors[job_id] = error

        failure_count = len(self.failed_jobs[job_id])
        if failure_count < self.failure_threshold:
            return False

        if job_id in self.never_pause:
            logger.critical(
                f"CRITICAL: Job {job_id} failed {failure_count} times. "
                f"Last error: {error}. Retrying on the next interval."
            )
            return False

        logger.critical(
            f"CRITICAL: Job {job_id} failed {failure_count} times. "
            f"Last error: {error}. Job paused."
        )
        self.paused_jobs.add(job_id)
        return True

    def get_status(self) -> Dict[str, Any]:
        """Get current failure status for all jobs."""
        return {
            job_id: {
                "failure_count": len(failures),
                "last_failure": failures[-1].isoformat() if failures else None,
                "last_error": self.last_errors.get(job_id),
                "is_paused": job_id in self.paused_jobs
            }
            for job_id, failures in self.failed_jobs.items()
        }


class RientroScheduler:
    """
    Background job scheduler for Rientro.

    Runs the shared-cadence escalation sweep and the daily retention purge.
    Only one process should run it; see `run_scheduler` in settings.
    """

    def __init__(self, failure_threshold: Optional[int] = None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.job_monitor = JobFailureMonitor(
            failure_threshold=failure_threshold or settings.job_failure_alert_threshold,
            never_pause=(SWEEP_JOB_ID,)
        )

        self.jobs_config = {
            SWEEP_JOB_ID: {
                "func": escalation_sweep_job,
                "trigger": IntervalTrigger(minutes=settings.sweep_interval_minutes),
                "name": "Escalation Sweep",
            },
            RETENTION_JOB_ID: {
                "func": retention_cleanup_job,
                "trigger": CronTrigger(
                    hour=settings.retention_hour_utc, minute=0, timezone="UTC"
                ),
                "name": "Retention Cleanup",
            },
        }

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        return AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # A sweep never overlaps the previous one
                'misfire_grace_time': 300
            },
            timezone=settings.scheduler_timezone
        )

    def start(self):
        """Start the scheduler with all jobs."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()

        for job_id, config in self.jobs_config.items():
            self.scheduler.add_job(
                config["func"],
                config["trigger"],
                id=job_id,
                name=config["name"],
                replace_existing=True
            )

        self.scheduler.start()
        self.is_running = True
        logger.info("🚀 Rientro Scheduler started successfully")

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: Next run at {job.next_run_time}")

    def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("🛑 Rientro Scheduler stopped")

    def get_jobs_status(self) -> list:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def pause_job(self, job_id: str) -> bool:
        """Pause a specific job."""
        if not self.scheduler:
            return False
        self.scheduler.pause_job(job_id)
        logger.info(f"Paused job: {job_id}")
        return True

    def resume_job(self, job_id: str) -> bool:
        """Resume a paused job."""
        if not self.scheduler:
            return False
        self.scheduler.resume_job(job_id)
        self.job_monitor.paused_jobs.discard(job_id)
        logger.info(f"Resumed job: {job_id}")
        return True

    def get_health_status(self) -> Dict[str, Any]:
        """Scheduler status and job failure information for monitoring."""
        failed_jobs = self.job_monitor.get_status()
        has_failures = any(info["failure_count"] > 0 for info in failed_jobs.values())

        return {
            "status": "degraded" if has_failures else "healthy",
            "is_running": self.is_running,
            "jobs": self.get_jobs_status(),
            "failures": failed_jobs,
            "paused_jobs": sorted(self.job_monitor.paused_jobs)
        }


# ==========================================
# JOB IMPLEMENTATIONS
# ==========================================

async def run_monitored_job(
    job_id: str,
    run: Callable[[], Awaitable[HandlerResult]]
) -> Dict[str, Any]:
    """
    Run one job and feed its outcome to the failure monitor.

    A run that could not do its work at all (an exception, or a report with
    `error` set) counts as a failure. Per-trip failures inside a completed
    run are reported but do not count against the job.
    """
    monitor = get_scheduler().job_monitor
    start_time = datetime.now(timezone.utc)

    try:
        report = await run()
    except Exception as e:
        logger.error(f"❌ Job {job_id} failed: {e}", exc_info=True)
        _handle_job_failure(job_id, str(e))
        raise

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    result = report.to_dict()

    if report.error is not None:
        logger.error(f"❌ Job {job_id} failed after {elapsed:.2f}s: {report.error.message}")
        _handle_job_failure(job_id, report.error.message)
        return result

    was_paused = job_id in monitor.paused_jobs
    monitor.record_success(job_id)
    if was_paused:
        get_scheduler().resume_job(job_id)
    logger.info(f"✅ Job {job_id} completed in {elapsed:.2f}s: {report.details}")
    return result


def _handle_job_failure(job_id: str, error: str) -> None:
    scheduler = get_scheduler()
    should_pause = scheduler.job_monitor.record_failure(job_id, error)
    if should_pause and scheduler.scheduler:
        scheduler.pause_job(job_id)


async def escalation_sweep_job():
    """Evaluate every in-progress trip once."""
    logger.info("⏰ Running escalation sweep...")
    return await run_monitored_job(SWEEP_JOB_ID, lambda: get_engine().sweeper.run())


async def retention_cleanup_job():
    """Purge old terminal trips and notification records."""
    logger.info("🧹 Running retention cleanup...")
    return await run_monitored_job(RETENTION_JOB_ID, lambda: get_engine().retention.run())


# ==========================================
# GLOBAL SCHEDULER INSTANCE
# ==========================================

scheduler = RientroScheduler()


def get_scheduler() -> RientroScheduler:
    """Get the global scheduler instance."""
    return scheduler
