"""
Background Job Scheduler for the SLA engine.

Runs the SLA sweep with APScheduler:
- SLA sweep (every `sla_sweep_interval_seconds`, default 60s)

The sweep is the single authoritative periodic re-classification of
open tickets; reads recompute the live status on demand.

Failure handling:
- Job failure monitoring within a 24 hour window
- Automatic job pausing after repeated failures, resumed after a cooldown
  (`job_pause_cooldown_minutes`) or manually via the API
- Health check endpoint support
"""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from sla_engine.core.config import settings
from sla_engine.core.exceptions import SchedulerJobError


logger = logging.getLogger(__name__)

SLA_SWEEP_JOB_ID = "sla_sweep"
RESUME_JOB_SUFFIX = "_resume"


# ==========================================
# Job Failure Monitor
# ==========================================

class JobFailureMonitor:
    """
    Count job failures and flag a job for pausing when they repeat.

    A failing sweep means statuses and escalations silently go stale,
    so reaching the threshold is logged at CRITICAL.
    """

    def __init__(self, failure_threshold: int = 2):
        self.failure_threshold = failure_threshold
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.last_errors: Dict[str, str] = {}
        self.paused_jobs: set = set()

    async def record_success(self, job_id: str) -> None:
        """Record job success - reset failure count."""
        self.failed_jobs[job_id] = []
        self.last_errors.pop(job_id, None)
        self.paused_jobs.discard(job_id)

    async def record_failure(self, job_id: str, error: str) -> bool:
        """
        Record a job failure.

        Returns True if the job should be paused.
        """
        now = datetime.now(timezone.utc)
        self.failed_jobs[job_id].append(now)
        self.last_errors[job_id] = error

        # Keep only failures from last 24 hours
        cutoff = now - timedelta(hours=24)
        self.failed_jobs[job_id] = [
            t for t in self.failed_jobs[job_id] if t > cutoff
        ]

        failure_count = len(self.failed_jobs[job_id])

        if failure_count >= self.failure_threshold:
            self._alert(job_id, failure_count, error)
            self.paused_jobs.add(job_id)
            return True

        return False

    def _alert(self, job_id: str, failure_count: int, error: str) -> None:
        logger.critical(
            f"CRITICAL: Job {job_id} failed {failure_count} times in 24h. "
            f"Last error: {error}. Job paused."
        )

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


# Global job monitor
job_monitor = JobFailureMonitor(
    failure_threshold=settings.job_failure_alert_threshold
)


class SLAScheduler:
    """
    Background job scheduler for the SLA engine.

    Wraps an AsyncIOScheduler with an in-memory job store; only one
    instance of the sweep runs at a time and missed runs are coalesced.
    """

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self.job_monitor = job_monitor

        self.jobs_config = {
            SLA_SWEEP_JOB_ID: {
                "trigger": IntervalTrigger(seconds=settings.sla_sweep_interval_seconds),
                "name": "SLA Sweep",
                "description": "Re-classify open tickets and escalate threshold crossings"
            },
        }

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,  # Never overlap two sweeps
            'misfire_grace_time': settings.sla_sweep_interval_seconds
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=settings.scheduler_timezone
        )

    def start(self):
        """Start the scheduler with all jobs."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()

        config = self.jobs_config[SLA_SWEEP_JOB_ID]
        self.scheduler.add_job(
            sla_sweep_job,
            config["trigger"],
            id=SLA_SWEEP_JOB_ID,
            name=config["name"],
            replace_existing=True
        )

        self.scheduler.start()
        self.is_running = True
        logger.info("🚀 SLA Scheduler started successfully")

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: Next run at {job.next_run_time}")

    def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("🛑 SLA Scheduler stopped")

    def trigger_job(self, job_id: str) -> bool:
        """Manually trigger a job to run immediately."""
        if not self.scheduler:
            logger.error("Scheduler not initialized")
            return False

        job = self.scheduler.get_job(job_id)
        if job:
            job.modify(next_run_time=datetime.now(timezone.utc))
            logger.info(f"Manually triggered job: {job_id}")
            return True

        logger.error(f"Job not found: {job_id}")
        return False

    def get_jobs_status(self) -> list:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "pending": job.pending
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
        """Resume a paused job. Returns False if there is no such job."""
        if not self.scheduler:
            return False
        try:
            self.scheduler.resume_job(job_id)
        except JobLookupError:
            logger.error(f"Job not found: {job_id}")
            return False

        # A manual resume supersedes any pending cooldown resume
        if self.scheduler.get_job(f"{job_id}{RESUME_JOB_SUFFIX}"):
            self.scheduler.remove_job(f"{job_id}{RESUME_JOB_SUFFIX}")

        self.job_monitor.paused_jobs.discard(job_id)
        logger.info(f"Resumed job: {job_id}")
        return True

    def schedule_resume(self, job_id: str, delay_minutes: int) -> bool:
        """
        Resume a paused job automatically after `delay_minutes`.

        Failures stay in the monitor's window, so a job that keeps
        failing after the cooldown is paused again on its next failure.
        """
        if not self.scheduler or delay_minutes <= 0:
            return False

        run_at = datetime.now(timezone.utc) + timedelta(minutes=delay_minutes)
        self.scheduler.add_job(
            resume_paused_job,
            DateTrigger(run_date=run_at),
            args=[job_id],
            id=f"{job_id}{RESUME_JOB_SUFFIX}",
            name=f"Resume {job_id}",
            replace_existing=True
        )
        logger.warning(f"Job {job_id} will be resumed at {run_at.isoformat()}")
        return True

    def get_health_status(self) -> Dict[str, Any]:
        """
        Scheduler health for the /health endpoint.

        Degraded while any job has failures in the current window.
        """
        failed_jobs = self.job_monitor.get_status()
        has_failures = any(
            info["failure_count"] > 0
            for info in failed_jobs.values()
        )

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

async def sla_sweep_job() -> Dict[str, Any]:
    """
    Periodic SLA sweep.

    Per-ticket failures are part of a successful run (reported as
    partial_failure). Failing to load tickets or rules is a job failure:
    it is counted by the monitor and may pause the job.
    """
    from sla_engine.services.sweep import run_sla_sweep

    job_id = SLA_SWEEP_JOB_ID
    logger.debug("🔍 Starting SLA sweep...")
    start_time = datetime.now(timezone.utc)

    try:
        summary = await asyncio.to_thread(run_sla_sweep)
    except Exception as e:
        logger.error(f"❌ SLA sweep failed: {e}", exc_info=True)

        should_pause = await job_monitor.record_failure(job_id, str(e))
        if should_pause:
            scheduler = get_scheduler()
            if scheduler.scheduler:
                scheduler.pause_job(job_id)
                scheduler.schedule_resume(job_id, settings.job_pause_cooldown_minutes)

        raise SchedulerJobError(
            "SLA sweep failed",
            job_id=job_id,
            failure_count=len(job_monitor.failed_jobs[job_id]),
            last_error=str(e)
        ) from e

    elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
    if summary.escalated or summary.failed:
        logger.info(
            f"✅ SLA sweep completed in {elapsed:.2f}s: "
            f"{summary.escalated} escalations, {summary.failed} ticket failures"
        )

    await job_monitor.record_success(job_id)
    return summary.to_dict()


async def resume_paused_job(job_id: str) -> bool:
    """Cooldown job: put a job paused by the failure monitor back on schedule."""
    resumed = get_scheduler().resume_job(job_id)
    if resumed:
        logger.info(f"▶️ Job {job_id} resumed after cooldown")
    return resumed


# ==========================================
# GLOBAL SCHEDULER INSTANCE
# ==========================================

scheduler = SLAScheduler()


def get_scheduler() -> SLAScheduler:
    """Get the global scheduler instance."""
    return scheduler
