import logging

from apscheduler.schedulers.background import BackgroundScheduler

from database import SessionLocal
from modules.documents.services.reminders import send_signature_reminders
from settings import Settings

logger = logging.getLogger(__name__)

def run_reminder_sweep(after_hours: int) -> int:
    with SessionLocal() as session:
        return send_signature_reminders(session, after_hours)

def start_reminder_job(settings: Settings) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        run_reminder_sweep,
        'interval',
        hours=settings.reminder_interval_hours,
        args=[settings.reminder_after_hours],
        id="signature_reminders",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Signature reminder job scheduled every %d hour(s)", settings.reminder_interval_hours)
    return scheduler
