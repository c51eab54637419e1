import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.db import SessionLocal
from lingowow.metrics import run_timed_job
from lingowow.services.booking_service import complete_elapsed_bookings
from lingowow.services.enrollment_service import activate_started_enrollments


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def _with_db(task):
    db: Session = SessionLocal()
    try:
        return task(db)
    finally:
        db.close()


def _run_job(label: str, task) -> None:
    run_timed_job(label, lambda: _with_db(task))


def complete_elapsed_bookings_job():
    _run_job('complete_elapsed_bookings', lambda db: complete_elapsed_bookings(db))


def activate_started_enrollments_job():
    _run_job('activate_started_enrollments', lambda db: activate_started_enrollments(db))


def start_scheduler():
    if not settings.enable_scheduler:
        logger.info('scheduler_disabled')
        return
    scheduler.add_job(complete_elapsed_bookings_job, 'interval', minutes=5, id='complete_elapsed_bookings', replace_existing=True)
    scheduler.add_job(
        activate_started_enrollments_job,
        'cron',
        hour=0,
        minute=5,
        id='activate_started_enrollments',
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
