"""
Background Job Scheduler

Provides scheduled task execution using APScheduler with AsyncIO support.
Handles job registration, execution, and graceful shutdown.

Overlap protection:
- In-process: every job runs with max_instances=1 and coalesce=True
- Across processes: each run holds a Redis lock (SET NX EX) named after
  the job; a run that cannot take the lock is skipped

Usage:
    from kinderhub.core.scheduler import register_job, start_scheduler, stop_scheduler

    register_job(
        job_id="billing_process_renewals",
        func=process_renewals,
        trigger=cron_trigger("0 2 * * *"),
    )

    async def lifespan(app):
        await start_scheduler()
        yield
        await stop_scheduler()
"""

import functools
import logging
import secrets
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger

from kinderhub.core import redis as redis_module
from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]

LOCK_KEY_PREFIX = "lock:job:"

# Delete the lock only if it still holds our token
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_scheduler: AsyncIOScheduler | None = None


@dataclass
class RegisteredJob:
    job_id: str
    func: JobFunc
    trigger: BaseTrigger
    replace_existing: bool = True


_job_registry: dict[str, RegisteredJob] = {}


class SchedulerConfig:
    """Configuration for the background scheduler."""

    TIMEZONE = settings.timezone

    JOB_COALESCE = True  # Combine multiple missed executions into one
    JOB_MAX_INSTANCES = 1  # Only one instance of each job can run at a time
    JOB_MISFIRE_GRACE_TIME = 60 * 5

    EXECUTORS = {
        "default": {"type": "asyncio"},
    }

    JOB_DEFAULTS = {
        "coalesce": JOB_COALESCE,
        "max_instances": JOB_MAX_INSTANCES,
        "misfire_grace_time": JOB_MISFIRE_GRACE_TIME,
    }


def cron_trigger(expression: str, timezone: str | None = None) -> CronTrigger:
    """Build a CronTrigger from a five-field crontab expression."""
    return CronTrigger.from_crontab(expression, timezone=timezone or SchedulerConfig.TIMEZONE)


# ============================================
# Run locks
# ============================================


async def acquire_job_lock(job_id: str, ttl_seconds: int | None = None) -> str | None:
    """
    Try to take the run lock for a job.

    Returns:
        The lock token to pass to ``release_job_lock``, an empty string when
        Redis is unavailable (the run proceeds unguarded), or None when
        another run holds the lock.
    """
    client = redis_module.redis_client
    if client is None:
        logger.warning(f"Redis unavailable, running job {job_id} without a distributed lock")
        return ""

    token = secrets.token_hex(16)
    acquired = await client.set(
        f"{LOCK_KEY_PREFIX}{job_id}",
        token,
        nx=True,
        ex=ttl_seconds or settings.job_lock_ttl_seconds,
    )
    return token if acquired else None


async def release_job_lock(job_id: str, token: str) -> None:
    """Release a run lock if it is still held by ``token``."""
    client = redis_module.redis_client
    if client is None or not token:
        return

    await client.eval(RELEASE_LOCK_SCRIPT, 1, f"{LOCK_KEY_PREFIX}{job_id}", token)


def exclusive(job_id: str, func: JobFunc) -> JobFunc:
    """Wrap a job so that overlapping runs across processes are skipped."""

    @functools.wraps(func)
    async def wrapper() -> Any:
        token = await acquire_job_lock(job_id)
        if token is None:
            logger.warning(f"Job {job_id} is already running elsewhere, skipping this run")
            return {"job_id": job_id, "status": "skipped", "reason": "locked"}
        try:
            return await func()
        finally:
            await release_job_lock(job_id, token)

    return wrapper


# ============================================
# Lifecycle
# ============================================


def _job_listener(event: JobExecutionEvent) -> None:
    """Log job execution results."""
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now(UTC).isoformat()}")


def _schedule(job: RegisteredJob) -> None:
    assert _scheduler is not None
    _scheduler.add_job(
        exclusive(job.job_id, job.func),
        trigger=job.trigger,
        id=job.job_id,
        replace_existing=job.replace_existing,
    )
    logger.info(f"Scheduled job: {job.job_id} ({job.trigger})")


async def start_scheduler() -> AsyncIOScheduler:
    """
    Initialize and start the background scheduler.

    Jobs registered before this call are added to the new scheduler.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running, returning existing instance")
        return _scheduler

    logger.info("Initializing background job scheduler...")

    _scheduler = AsyncIOScheduler(
        timezone=SchedulerConfig.TIMEZONE,
        executors=SchedulerConfig.EXECUTORS,
        job_defaults=SchedulerConfig.JOB_DEFAULTS,
    )
    _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    register_jobs_from_registry()

    _scheduler.start()

    logger.info("Background job scheduler started successfully")
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the scheduler, waiting for running jobs to finish."""
    global _scheduler

    if _scheduler is None or not _scheduler.running:
        logger.debug("Scheduler not running, nothing to stop")
        return

    logger.info("Stopping background job scheduler...")
    _scheduler.shutdown(wait=True)
    logger.info("Background job scheduler stopped")
    _scheduler = None


def register_job(
    job_id: str,
    func: JobFunc,
    trigger: BaseTrigger,
    replace_existing: bool = True,
) -> None:
    """
    Register a job.

    The job is stored in the registry (for manual triggering) and, if the
    scheduler is already running, scheduled immediately.

    Args:
        job_id: Unique identifier for the job
        func: Async function to execute
        trigger: APScheduler trigger (usually from ``cron_trigger``)
        replace_existing: Whether to replace an existing job with the same ID
    """
    job = RegisteredJob(job_id=job_id, func=func, trigger=trigger, replace_existing=replace_existing)
    _job_registry[job_id] = job

    if _scheduler is None:
        logger.debug(f"Scheduler not initialized, job {job_id} will be scheduled on start")
        return

    _schedule(job)


def register_jobs_from_registry() -> None:
    """Add every registered job to the scheduler."""
    if _scheduler is None:
        logger.warning("Cannot register jobs: scheduler not initialized")
        return

    logger.info(f"Registering {len(_job_registry)} jobs from registry...")
    for job in _job_registry.values():
        _schedule(job)


async def trigger_job_manually(job_id: str) -> dict[str, Any]:
    """
    Run a registered job now, outside its schedule.

    The run still takes the job's lock, so it cannot overlap a scheduled run.

    Raises:
        ValueError: If job_id is not registered
    """
    if job_id not in _job_registry:
        raise ValueError(
            f"Job {job_id} not found in registry. Available jobs: {list(_job_registry.keys())}"
        )

    job = _job_registry[job_id]
    executed_at = datetime.now(UTC)

    logger.info(f"Manually triggering job: {job_id}")

    try:
        result = await exclusive(job_id, job.func)()
        logger.info(f"Manual execution of job {job_id} completed")
        return {
            "job_id": job_id,
            "status": "success",
            "executed_at": executed_at.isoformat(),
            "result": result,
        }
    except Exception as e:
        logger.error(f"Manual execution of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "executed_at": executed_at.isoformat(),
            "error": str(e),
        }


def list_registered_jobs() -> list[dict[str, Any]]:
    """List registered jobs with their next run time and pause state."""
    jobs = []

    for job_id, job in _job_registry.items():
        job_info: dict[str, Any] = {
            "job_id": job_id,
            "registered": True,
            "trigger": str(job.trigger),
        }

        if _scheduler is not None:
            scheduled_job = _scheduler.get_job(job_id)
            if scheduled_job:
                job_info["next_run_time"] = (
                    scheduled_job.next_run_time.isoformat() if scheduled_job.next_run_time else None
                )
                job_info["is_paused"] = scheduled_job.next_run_time is None
            else:
                job_info["next_run_time"] = None
                job_info["is_paused"] = True

        jobs.append(job_info)

    return jobs


def pause_job(job_id: str) -> bool:
    if _scheduler is None:
        logger.warning("Cannot pause job: scheduler not initialized")
        return False

    if _scheduler.get_job(job_id):
        _scheduler.pause_job(job_id)
        logger.info(f"Paused job: {job_id}")
        return True

    logger.warning(f"Job not found for pausing: {job_id}")
    return False


def resume_job(job_id: str) -> bool:
    if _scheduler is None:
        logger.warning("Cannot resume job: scheduler not initialized")
        return False

    if _scheduler.get_job(job_id):
        _scheduler.resume_job(job_id)
        logger.info(f"Resumed job: {job_id}")
        return True

    logger.warning(f"Job not found for resuming: {job_id}")
    return False
