import logging

from apscheduler.schedulers.background import BackgroundScheduler

from signflow.database import SessionLocal
from signflow.modules.envelopes.services.cleanup import expire_stale_credentials

logger = logging.getLogger(__name__)


def start_credential_expiry_job(interval_minutes: int = 15) -> BackgroundScheduler:
    scheduler = BackgroundScheduler()

    def job():
        with SessionLocal() as session:
            try:
                expire_stale_credentials(session)
            except Exception:
                session.rollback()
                logger.exception("Credential expiry sweep failed")

    scheduler.add_job(job, 'interval', minutes=interval_minutes, id="credential-expiry")
    scheduler.start()
    return scheduler
