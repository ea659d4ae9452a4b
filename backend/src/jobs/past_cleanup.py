"""
Past meeting and past instance cleanup.

Runs daily at midnight (Africa/Johannesburg by default) and deletes, in a
single transaction:
- meetings whose time has passed, whatever shape the time was stored in
  (resolved through Meeting.occurs_at)
- event instances that ended more than the retention grace ago and hold no
  active registrations

Instances with pending or confirmed registrations are kept as attendance
history. Meetings whose date cannot be parsed are reported and kept.
"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from backend.src.jobs.base import Job, JobSummary
from backend.src.models import (
    EventInstance,
    Meeting,
    Registration,
    ACTIVE_REGISTRATION_STATUSES,
)
from backend.src.utils.instants import as_aware_utc
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class PastCleanupJob(Job):
    """Deletes meetings and instances that are in the past."""

    name = "past_cleanup"

    def __init__(self, grace_days: int = 0):
        self.grace = timedelta(days=grace_days)

    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        summary = JobSummary(job_name=self.name, dry_run=dry_run)
        now_aware = as_aware_utc(now)

        past_meetings = []
        for meeting in db.query(Meeting).order_by(Meeting.id).all():
            summary.processed += 1
            try:
                occurs_at = meeting.occurs_at
            except ValueError as e:
                summary.add_error(f"meeting:{meeting.id}", e)
                continue
            if occurs_at is None:
                logger.info(f"No valid date found for meeting {meeting.id}")
                continue
            if occurs_at < now_aware:
                past_meetings.append(meeting)
                summary.add_action(f"delete meeting {meeting.id} ({occurs_at.isoformat()})")

        cutoff = now - self.grace
        past_instances = (
            db.query(EventInstance)
            .filter(EventInstance.event_date < cutoff)
            .order_by(EventInstance.event_date)
            .all()
        )
        retained = {
            row.instance_pk for row in
            db.query(Registration.instance_pk)
            .join(EventInstance, Registration.instance_pk == EventInstance.id)
            .filter(
                EventInstance.event_date < cutoff,
                Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
            .distinct()
            .all()
        }

        doomed_instances = []
        for instance in past_instances:
            summary.processed += 1
            if instance.id in retained:
                continue
            doomed_instances.append(instance)
            summary.add_action(f"delete instance {instance.instance_id}")

        total = len(past_meetings) + len(doomed_instances)
        if dry_run or total == 0:
            summary.succeeded = total
            logger.info(
                f"Past cleanup found {len(past_meetings)} meeting(s) and "
                f"{len(doomed_instances)} instance(s)",
                extra={"dry_run": dry_run, "retained_instances": len(retained)}
            )
            return summary

        try:
            for row in past_meetings + doomed_instances:
                db.delete(row)
            db.commit()
            summary.succeeded = total
        except Exception as e:
            db.rollback()
            summary.add_error(None, e)
            logger.error(f"Past cleanup batch delete failed: {e}", extra={"rows": total})
            return summary

        logger.info(
            f"Deleted {len(past_meetings)} past meeting(s) and {len(doomed_instances)} past instance(s)",
            extra={"retained_instances": len(retained)}
        )
        return summary
