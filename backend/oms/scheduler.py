"""
APScheduler configuration for the daily inventory jobs

Two cron jobs in the business timezone:
- day open (00:00): create the day's inventory snapshots
- reconciliation (00:05): apply deferred orders whose invoice date has arrived

Jobs run on the scheduler's worker threads, each inside its own app context.
"""

from __future__ import annotations

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from .extensions import db
from .services import reconciliation_service
from .time_utils import business_timezone


DAY_OPEN_JOB_ID = "open_business_day"
RECONCILIATION_JOB_ID = "reconcile_deferred_orders"

job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}


def _run_day_open(app):
    with app.app_context():
        try:
            reconciliation_service.open_business_day()
        except Exception:
            app.logger.exception("[DAY OPEN] Job failed")
        finally:
            db.session.remove()


def _run_reconciliation(app):
    with app.app_context():
        try:
            reconciliation_service.run_reconciliation()
        except Exception:
            app.logger.exception("[RECONCILIATION] Job failed")
        finally:
            db.session.remove()


def build_scheduler(app) -> BackgroundScheduler:
    """Create (but do not start) the scheduler with both daily jobs registered."""
    tz = business_timezone(app.config["BUSINESS_UTC_OFFSET_HOURS"])
    scheduler = BackgroundScheduler(
        jobstores={'default': MemoryJobStore()},
        executors={'default': ThreadPoolExecutor(2)},
        job_defaults=job_defaults,
        timezone=tz,
    )

    scheduler.add_job(
        _run_day_open,
        CronTrigger(
            hour=app.config["DAY_OPEN_HOUR"],
            minute=app.config["DAY_OPEN_MINUTE"],
            timezone=tz,
        ),
        args=[app],
        id=DAY_OPEN_JOB_ID,
        name="Open business day (inventory snapshots)",
        replace_existing=True,
    )

    # After the day's snapshots exist
    scheduler.add_job(
        _run_reconciliation,
        CronTrigger(
            hour=app.config["RECONCILIATION_HOUR"],
            minute=app.config["RECONCILIATION_MINUTE"],
            timezone=tz,
        ),
        args=[app],
        id=RECONCILIATION_JOB_ID,
        name="Reconcile deferred orders",
        replace_existing=True,
    )
    return scheduler


def init_scheduler(app, start: bool = True) -> BackgroundScheduler:
    """Build the scheduler, attach it to the app and optionally start it."""
    scheduler = build_scheduler(app)
    app.extensions["scheduler"] = scheduler
    if start:
        scheduler.start()
        app.logger.info("Background job scheduler started")
        for job in scheduler.get_jobs():
            app.logger.info("Scheduled job: %s - Next run: %s", job.name, job.next_run_time)
    return scheduler


def shutdown_scheduler(app) -> None:
    scheduler = app.extensions.get("scheduler")
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
        app.logger.info("Background job scheduler stopped")


def get_job_status(app) -> list[dict]:
    scheduler = app.extensions.get("scheduler")
    if scheduler is None:
        return []
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
