"""
Background reconciliation jobs.

Jobs:
- trial_expiration: settle expired trials against the payment gateway (every 12 h)
- inactive_user_archival: archive long-inactive accounts (default every ~6 months)
- past_cleanup: delete past meetings and instances (daily at midnight SAST)
- payment_reconciliation: abandon stale unconfirmed payments
- materialization: roll the instance lookahead window forward

build_registry wires each job to a JobScheduler with the configured trigger
and min-interval guard.
"""

from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings
from backend.src.jobs.base import Job, JobSummary
from backend.src.jobs.inactive_users import InactiveUserArchivalJob, restore_archived_user
from backend.src.jobs.materialization import MaterializationJob
from backend.src.jobs.past_cleanup import PastCleanupJob
from backend.src.jobs.payment_reconciliation import PaymentReconciliationJob
from backend.src.jobs.scheduler import (
    DailyTrigger,
    IntervalTrigger,
    JobRegistry,
    JobScheduler,
    JobState,
    Trigger,
)
from backend.src.jobs.trial_expiration import TrialExpirationJob
from backend.src.services.identity_provider import IdentityProvider
from backend.src.services.payment_gateway import PaymentGateway
from backend.src.utils.logging_config import get_logger


logger = get_logger("jobs")


def _guard_for(min_interval: timedelta, trigger_seconds: int) -> timedelta:
    """Min-interval guard for a job that ticks more often than the global guard allows."""
    # Half the period, so a slightly early tick is not skipped
    return min(min_interval, timedelta(seconds=trigger_seconds / 2))


def build_registry(
    settings: AppSettings,
    session_factory: Callable[[], Session],
    gateway: Optional[PaymentGateway] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> JobRegistry:
    """
    Create the schedulers for every job.

    The trial expiration job is only registered when a payment gateway is
    available, and the inactive user job only when its interval is at least
    one hour.
    """
    registry = JobRegistry()
    min_interval = timedelta(minutes=settings.job_min_interval_minutes)

    if gateway is not None:
        registry.register(JobScheduler(
            TrialExpirationJob(gateway),
            session_factory,
            IntervalTrigger(settings.trial_job_interval_hours * 3600),
            min_interval=min_interval,
        ))
    else:
        logger.warning("Payment gateway not configured, trial expiration job disabled")

    if settings.inactive_job_enabled:
        registry.register(JobScheduler(
            InactiveUserArchivalJob(
                identity_provider=identity_provider,
                threshold_days=settings.inactive_threshold_days,
                archive_enabled=settings.archive_inactive_users,
                delete_auth=settings.delete_auth_users,
            ),
            session_factory,
            IntervalTrigger(settings.inactive_job_interval_minutes * 60),
            min_interval=min_interval,
        ))
    else:
        logger.warning(
            "Inactive user job disabled: interval below 60 minutes",
            extra={"interval_minutes": settings.inactive_job_interval_minutes}
        )

    registry.register(JobScheduler(
        PastCleanupJob(grace_days=settings.cleanup_grace_days),
        session_factory,
        DailyTrigger(0, 0, settings.cleanup_timezone),
        min_interval=min_interval,
        dry_run=settings.cleanup_dry_run,
        run_immediately=False,
    ))

    registry.register(JobScheduler(
        PaymentReconciliationJob(settings),
        session_factory,
        IntervalTrigger(settings.payment_sweep_interval_minutes * 60),
        min_interval=_guard_for(min_interval, settings.payment_sweep_interval_minutes * 60),
    ))

    registry.register(JobScheduler(
        MaterializationJob(settings),
        session_factory,
        IntervalTrigger(settings.materialization_interval_hours * 3600),
        min_interval=_guard_for(min_interval, settings.materialization_interval_hours * 3600),
    ))

    return registry


__all__ = [
    "Job",
    "JobSummary",
    "JobScheduler",
    "JobRegistry",
    "JobState",
    "Trigger",
    "IntervalTrigger",
    "DailyTrigger",
    "TrialExpirationJob",
    "InactiveUserArchivalJob",
    "PastCleanupJob",
    "PaymentReconciliationJob",
    "MaterializationJob",
    "restore_archived_user",
    "build_registry",
]
