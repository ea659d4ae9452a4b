"""
Rolling materialization.

Re-materializes every active recurring template so the lookahead window
keeps moving forward. Templates whose reconciliation would drop registered
instances are reported and left alone; those edits go through the organizer.
"""

from datetime import datetime

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.jobs.base import Job, JobSummary
from backend.src.services.event_service import EventService
from backend.src.utils.instants import as_aware_utc
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class MaterializationJob(Job):
    """Materializes all recurring templates."""

    name = "materialization"

    def __init__(self, settings: AppSettings):
        self.settings = settings

    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        summary = JobSummary(job_name=self.name, dry_run=dry_run)
        events = EventService(db, self.settings)

        for template in events.list_recurring_templates(today=as_aware_utc(now).date()):
            summary.processed += 1
            guid = template.guid
            try:
                if dry_run:
                    plan = events.instances.plan(template, now=now)
                    summary.add_action(
                        f"{guid}: {len(plan.occurrences)} occurrence(s) in window, "
                        f"{len(plan.to_remove)} stale, {len(plan.conflicts)} conflict(s)"
                    )
                    summary.succeeded += 1
                    continue

                result = events.instances.materialize(template, now=now)
                summary.add_action(
                    f"{guid}: created={result.created} updated={result.updated} "
                    f"unchanged={result.unchanged} removed={result.removed}"
                )
                for error in result.errors:
                    summary.add_error(guid, error)
                if not result.errors:
                    summary.succeeded += 1
            except Exception as e:
                db.rollback()
                summary.add_error(guid, e)
                logger.error(f"Materialization failed for {guid}: {e}", extra={"template_guid": guid})

        return summary
