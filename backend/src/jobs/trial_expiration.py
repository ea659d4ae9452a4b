"""
Trial expiration sweep.

Finds users whose trial has ended and settles their subscription:
- gateway reports the subscription "active" -> subscription_status active
- anything else -> subscription_status cancelled and plan downgraded to free
- no subscription code on file -> treated as active

A verification error leaves that user in trial (the next run retries) and
is recorded in the summary; the other users are still processed.
"""

from datetime import datetime

from sqlalchemy.orm import Session

from backend.src.jobs.base import Job, JobSummary
from backend.src.models import SubscriptionStatus, User, UserPlan
from backend.src.services.payment_gateway import PaymentGateway
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


class TrialExpirationJob(Job):
    """Converts or cancels expired trials."""

    name = "trial_expiration"

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def run(self, db: Session, now: datetime, dry_run: bool) -> JobSummary:
        summary = JobSummary(job_name=self.name, dry_run=dry_run)

        users = (
            db.query(User)
            .filter(
                User.subscription_status == SubscriptionStatus.TRIAL,
                User.trial_end_date.isnot(None),
                User.trial_end_date <= now,
            )
            .order_by(User.trial_end_date.asc())
            .all()
        )
        if not users:
            logger.info("No expired trials found")
            return summary

        logger.info(f"Found {len(users)} expired trial(s) to process")

        for user in users:
            summary.processed += 1
            user_id = user.user_id
            try:
                is_active = True
                if user.subscription_code:
                    status = await self.gateway.verify_subscription(user.subscription_code)
                    is_active = status == "active"

                if is_active:
                    summary.add_action(f"activate {user_id}")
                    if not dry_run:
                        user.subscription_status = SubscriptionStatus.ACTIVE
                        user.trial_end_date = now
                        user.first_billing_date = now
                else:
                    summary.add_action(f"cancel {user_id} and downgrade to free")
                    if not dry_run:
                        user.subscription_status = SubscriptionStatus.CANCELLED
                        user.plan = UserPlan.FREE
                        user.trial_end_date = now
                        user.cancellation_date = now

                if not dry_run:
                    db.commit()
                summary.succeeded += 1

            except Exception as e:
                db.rollback()
                summary.add_error(user_id, e)
                logger.error(
                    f"Error processing expired trial for {user_id}: {e}",
                    extra={"user_id": user_id, "error_type": type(e).__name__}
                )

        return summary
