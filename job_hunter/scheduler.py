"""APScheduler setup — fires the pipeline on the configured cron expression."""

import logging
import traceback

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from job_hunter.errors import PipelineBusyError

logger = logging.getLogger("job_hunter.scheduler")

DEFAULT_CRON = "0 7 * * *"
JOB_ID = "pipeline_run"

_scheduler: BackgroundScheduler | None = None


def _job_listener(event):
    """Log scheduler job events for debugging."""
    if event.exception:
        logger.error("Scheduled job %s FAILED: %s", event.job_id, event.exception)
        logger.error("Traceback: %s", event.traceback)
    elif hasattr(event, "job_id"):
        if event.code == EVENT_JOB_MISSED:
            logger.warning("Scheduled job %s MISSED its fire time", event.job_id)
        else:
            logger.info("Scheduled job %s executed successfully", event.job_id)


def build_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """Parse a 5-field cron expression, falling back to the daily default when invalid."""
    try:
        return CronTrigger.from_crontab(expression or DEFAULT_CRON, timezone=timezone or "UTC")
    except ValueError as e:
        logger.warning("Invalid cron expression %r (%s); using %r", expression, e, DEFAULT_CRON)
        return CronTrigger.from_crontab(DEFAULT_CRON, timezone=timezone or "UTC")


def _run_pipeline_wrapper(runner) -> None:
    """Wrapper for scheduled execution — adds entry/exit logging."""
    logger.info("=== SCHEDULER FIRING pipeline ===")
    try:
        result = runner.run(trigger="scheduled")
    except PipelineBusyError:
        logger.info("Pipeline already running; scheduled trigger dropped")
        return
    except Exception:
        logger.error("=== SCHEDULER FAILED pipeline ===\n%s", traceback.format_exc())
        raise
    logger.info("=== SCHEDULER COMPLETED pipeline: %s ===", result.status)


def start_schedule(runner, expression: str = DEFAULT_CRON, timezone: str = "UTC") -> BackgroundScheduler:
    """Start the background scheduler (if needed) and install the pipeline job."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler()
        _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        _scheduler.start()
        logger.info("APScheduler started")

    trigger = build_trigger(expression, timezone)
    _scheduler.add_job(
        _run_pipeline_wrapper,
        trigger=trigger,
        args=[runner],
        id=JOB_ID,
        name="Job Hunter pipeline",
        misfire_grace_time=3600,
        coalesce=True,
        max_instances=1,
        replace_existing=True,
    )
    logger.info("Scheduled pipeline: %s", trigger)
    return _scheduler


def stop_schedule() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler stopped")


def get_next_run_time():
    """Return the next scheduled fire time, or None."""
    if _scheduler is None:
        return None
    job = _scheduler.get_job(JOB_ID)
    return job.next_run_time if job else None


def get_scheduler_info() -> dict:
    """Return diagnostic info about the scheduler state."""
    if _scheduler is None:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        })
    return {
        "running": _scheduler.running,
        "jobs": jobs,
    }
