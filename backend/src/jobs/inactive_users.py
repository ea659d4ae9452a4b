"""
Inactive user archival.

Lists accounts flagged inactive (active=False) for longer than the
threshold and, when archival is enabled, moves each one out of the users
table:

1. write and commit an ArchivedUser snapshot
2. optionally delete the external auth identity (failure is recorded on the
   archive row and in the summary; the archive is kept)
3. delete the live users row

The archive commit always precedes any deletion, so a failure at any step
never loses the account data. With archival disabled, or in dry-run, the
job only lists the candidates.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from backend.src.jobs.base import Job, JobSummary
from backend.src.models import ARCHIVE_VERSION, ArchivedUser, SubscriptionStatus, User, UserPlan
from backend.src.services.exceptions import ConflictError, NotFoundError
from backend.src.services.identity_provider import IdentityProvider
from backend.src.utils.instants import utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class InactiveUserArchivalJob(Job):
    """Archives long-inactive accounts."""

    name = "inactive_user_archival"

    def __init__(
        self,
        identity_provider: Optional[IdentityProvider] = None,
        threshold_days: int = 180,
        archive_enabled: bool = False,
        delete_auth: bool = False,
    ):
        self.identity_provider = identity_provider
        self.threshold = timedelta(days=threshold_days)
        self.archive_enabled = archive_enabled
        self.delete_auth = delete_auth

    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        summary = JobSummary(job_name=self.name, dry_run=dry_run)
        cutoff = now - self.threshold

        users = (
            db.query(User)
            .filter(
                User.active.is_(False),
                (User.inactive_since.is_(None)) | (User.inactive_since <= cutoff),
            )
            .order_by(User.id)
            .all()
        )
        if not users:
            logger.info("No inactive users found")
            return summary

        logger.info(
            f"Found {len(users)} inactive user(s)",
            extra={"user_ids": [u.user_id for u in users]}
        )

        listing_only = dry_run or not self.archive_enabled
        for user in users:
            summary.processed += 1
            if listing_only:
                summary.add_action(
                    f"archive {user.user_id} (email={user.email}, inactive_since={user.inactive_since})"
                )
                summary.succeeded += 1
                continue

            await self._archive(db, user, now, summary)

        return summary

    async def _archive(self, db: Session, user: User, now: datetime, summary: JobSummary) -> None:
        user_id = user.user_id

        # 1. Archive copy, committed before anything is deleted
        try:
            archive = ArchivedUser(
                original_user_id=user_id,
                snapshot=user.to_snapshot(),
                archived_at=now,
                archived_by="system",
                archive_reason="inactive_user",
                archive_version=ARCHIVE_VERSION,
            )
            db.add(archive)
            db.commit()
        except Exception as e:
            db.rollback()
            summary.add_error(user_id, e)
            logger.error(
                f"Failed to archive user {user_id}: {e}",
                extra={"user_id": user_id}
            )
            return

        # 2. Optional auth identity deletion
        if self.delete_auth and self.identity_provider is not None:
            try:
                await self.identity_provider.delete_identity(user_id)
                archive.auth_deleted = "deleted"
                summary.add_action(f"delete auth identity {user_id}")
            except Exception as e:
                archive.auth_deleted = "failed"
                archive.auth_deletion_error = str(e)[:500]
                summary.add_error(user_id, e)
                logger.error(
                    f"Failed to delete auth identity for {user_id}: {e}",
                    extra={"user_id": user_id}
                )
            db.commit()

        # 3. Live row
        try:
            db.delete(user)
            db.commit()
            summary.add_action(f"archive {user_id}")
            summary.succeeded += 1
        except Exception as e:
            db.rollback()
            summary.add_error(user_id, e)
            logger.error(
                f"Archived {user_id} but failed to delete live record: {e}",
                extra={"user_id": user_id}
            )


def restore_archived_user(db: Session, archive_guid: str, now: Optional[datetime] = None) -> User:
    """
    Re-create a live user row from its archive snapshot.

    The account comes back active with inactive_since cleared; the archive
    row is kept and stamped with restored_at.

    Raises:
        NotFoundError: If the archive does not exist
        ConflictError: If it was already restored or the user_id is live again
    """
    try:
        uuid_value = ArchivedUser.parse_guid(archive_guid)
    except ValueError:
        raise NotFoundError("ArchivedUser", archive_guid)

    archive = db.query(ArchivedUser).filter(ArchivedUser.uuid == uuid_value).first()
    if archive is None:
        raise NotFoundError("ArchivedUser", archive_guid)
    if archive.restored_at is not None:
        raise ConflictError(f"Archive {archive_guid} was already restored")
    if db.query(User).filter(User.user_id == archive.original_user_id).first() is not None:
        raise ConflictError(f"User {archive.original_user_id} already exists")

    snapshot = archive.snapshot or {}
    user = User(user_id=archive.original_user_id)
    user.email = snapshot.get("email")
    user.name = snapshot.get("name")
    user.subscription_code = snapshot.get("subscription_code")
    if snapshot.get("plan"):
        user.plan = UserPlan(snapshot["plan"])
    if snapshot.get("subscription_status"):
        user.subscription_status = SubscriptionStatus(snapshot["subscription_status"])
    for name in ("trial_end_date", "first_billing_date", "cancellation_date", "last_login_at"):
        if snapshot.get(name):
            setattr(user, name, datetime.fromisoformat(snapshot[name]))
    user.active = True
    user.inactive_since = None

    archive.restored_at = now or utc_now()
    db.add(user)
    db.commit()

    logger.info(
        f"Restored archived user {archive.original_user_id}",
        extra={"archive_guid": archive_guid, "user_id": archive.original_user_id}
    )
    return user
