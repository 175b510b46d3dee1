"""
APScheduler Background Jobs

Scheduled sweep of the pattern-learning queues.
Jobs run via BackgroundScheduler in FastAPI process.
"""

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

logger = structlog.get_logger(__name__)


def run_learning_sweep():
    """
    Wrapper function for the scheduled learning-queue sweep.

    Called by APScheduler every learning_sweep_interval_minutes to process
    every queue whose debounce deadline has passed. Never raises.
    """
    try:
        from app.database import SessionLocal
        from app.services.learning_queue import process_due_queues

        if SessionLocal is None:
            logger.warning("learning_sweep_skipped", reason="database_not_configured")
            return

        db = SessionLocal()
        try:
            process_due_queues(db)
        finally:
            db.close()

    except Exception as e:
        from app.services.monitoring.error_tracking import capture_exception

        logger.error("learning_sweep_crashed", error=str(e), exc_info=True)
        capture_exception(e)


def start_scheduler(environment: str = "production") -> BackgroundScheduler:
    """
    Start background scheduler with all jobs.

    Args:
        environment: Current environment (skip scheduler in testing)

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone="Europe/Berlin")

    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return scheduler

    scheduler.add_job(
        run_learning_sweep,
        trigger=IntervalTrigger(minutes=settings.learning_sweep_interval_minutes),
        id="learning_queue_sweep",
        name="Pattern Learning Queue Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    logger.info("job_registered", job="learning_queue_sweep", interval_minutes=settings.learning_sweep_interval_minutes)

    scheduler.start()
    logger.info("scheduler_started", jobs=["learning_queue_sweep"])

    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "start_scheduler",
    "stop_scheduler",
    "run_learning_sweep",
]
