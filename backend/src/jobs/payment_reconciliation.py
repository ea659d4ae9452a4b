"""
Abandoned payment sweep.

Registrations left in pending_payment longer than the abandonment timeout
become abandoned and give their seats back.
"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.jobs.base import Job, JobSummary
from backend.src.services.registration_service import RegistrationService
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class PaymentReconciliationJob(Job):
    """Abandons stale unconfirmed payments."""

    name = "payment_reconciliation"

    def __init__(self, settings: AppSettings):
        self.settings = settings
        self.older_than = timedelta(minutes=settings.payment_abandon_minutes)

    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        summary = JobSummary(job_name=self.name, dry_run=dry_run)
        service = RegistrationService(db, settings=self.settings)

        for registration in service.find_stale_payments(now, self.older_than):
            summary.processed += 1
            guid = registration.guid
            summary.add_action(f"abandon {guid} ({registration.quantity} seat(s))")
            if dry_run:
                summary.succeeded += 1
                continue
            try:
                if service.abandon(registration, now):
                    summary.succeeded += 1
            except Exception as e:
                db.rollback()
                summary.add_error(guid, e)
                logger.error(f"Failed to abandon registration {guid}: {e}", extra={"registration_guid": guid})

        return summary
