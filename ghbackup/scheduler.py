"""
APScheduler configuration for the ghbackup web process.

Runs discovery jobs in the background so that the OAuth callback can return
immediately while the user's repositories are listed.
"""

import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.executors.pool import ThreadPoolExecutor

from ghbackup.discovery import discover, github_client


logger = logging.getLogger(__name__)

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    executors = {
        'default': ThreadPoolExecutor(max_workers=2)
    }

    job_defaults = {
        'coalesce': False,
        'max_instances': 4,
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC')
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_discovery_wrapper(token: str, want_owned: bool, want_starred: bool):
    """
    Wrapper function for running discovery in scheduler context.

    Args:
        token: GitHub OAuth access token
        want_owned: Import repositories owned by the user
        want_starred: Import repositories starred by the user
    """
    global flask_app

    from ghbackup import get_registry

    with flask_app.app_context():
        try:
            logger.info(f"Discovery started (owned={want_owned}, starred={want_starred})")
            with github_client(token) as client:
                added = discover(client, get_registry(), want_owned, want_starred)
            logger.info(f"Discovery completed: {added} repositories recorded")
        except Exception as e:
            logger.error(f"Discovery failed: {e}")


def trigger_discovery_now(token: str, want_owned: bool, want_starred: bool) -> str:
    """
    Queue a discovery run to start immediately.

    Args:
        token: GitHub OAuth access token
        want_owned: Import repositories owned by the user
        want_starred: Import repositories starred by the user

    Returns:
        ID of the scheduled job

    Raises:
        RuntimeError: If the scheduler is not initialized
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(timezone.utc)
    job_id = f"discovery_{uuid4().hex}"

    scheduler.add_job(
        func=_execute_discovery_wrapper,
        args=[token, want_owned, want_starred],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name="Discovery",
        replace_existing=False
    )

    logger.info(f"Scheduled discovery job {job_id} (owned={want_owned}, starred={want_starred})")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all pending jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    return scheduler is not None and scheduler.running
