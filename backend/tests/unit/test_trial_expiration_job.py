"""
Unit tests for TrialExpirationJob.
"""

import pytest
from datetime import datetime

from backend.src.jobs.trial_expiration import TrialExpirationJob
from backend.src.models import SubscriptionStatus, User, UserPlan
from backend.src.services.exceptions import ExternalVerificationError


NOW = datetime(2026, 3, 2, 6, 0)


@pytest.fixture
def job(fake_gateway):
    return TrialExpirationJob(fake_gateway)


def reload(db, user_id):
    db.expire_all()
    return db.query(User).filter(User.user_id == user_id).one()


class TestTrialExpiration:
    """Tests for settling expired trials."""

    @pytest.mark.asyncio
    async def test_active_subscription_converts(self, job, sample_user, test_db_session):
        sample_user('user-1', subscription_code='SUB_1')

        summary = await job.run(test_db_session, NOW, dry_run=False)

        user = reload(test_db_session, 'user-1')
        assert user.subscription_status == SubscriptionStatus.ACTIVE
        assert user.plan == UserPlan.PREMIUM
        assert user.trial_end_date == NOW
        assert user.first_billing_date == NOW
        assert summary.processed == 1
        assert summary.succeeded == 1

    @pytest.mark.asyncio
    async def test_inactive_subscription_downgrades(self, job, sample_user, fake_gateway, test_db_session):
        sample_user('user-1', subscription_code='SUB_1')
        fake_gateway.subscription_statuses['SUB_1'] = 'non-renewing'

        await job.run(test_db_session, NOW, dry_run=False)

        user = reload(test_db_session, 'user-1')
        assert user.subscription_status == SubscriptionStatus.CANCELLED
        assert user.plan == UserPlan.FREE
        assert user.cancellation_date == NOW

    @pytest.mark.asyncio
    async def test_missing_code_treated_as_active(self, job, sample_user, test_db_session):
        sample_user('user-1', subscription_code=None)

        await job.run(test_db_session, NOW, dry_run=False)

        assert reload(test_db_session, 'user-1').subscription_status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(self, job, sample_user, fake_gateway, test_db_session):
        sample_user('user-a', subscription_code='SUB_A', trial_end_date=datetime(2026, 2, 27))
        sample_user('user-b', subscription_code='SUB_B', trial_end_date=datetime(2026, 2, 28))
        fake_gateway.subscription_statuses['SUB_A'] = ExternalVerificationError('fake', 'network timeout')

        summary = await job.run(test_db_session, NOW, dry_run=False)

        assert summary.processed == 2
        assert summary.succeeded == 1
        assert summary.errors == [
            {'item': 'user-a', 'type': 'ExternalVerificationError', 'error': 'fake: network timeout'}
        ]
        assert reload(test_db_session, 'user-a').subscription_status == SubscriptionStatus.TRIAL
        assert reload(test_db_session, 'user-b').subscription_status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_only_expired_trials(self, job, sample_user, test_db_session):
        sample_user('future', trial_end_date=datetime(2026, 3, 10))
        sample_user('paying', subscription_status=SubscriptionStatus.ACTIVE)
        sample_user('no-trial', trial_end_date=None)

        summary = await job.run(test_db_session, NOW, dry_run=False)

        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, job, sample_user, fake_gateway, test_db_session):
        sample_user('user-1', subscription_code='SUB_1')
        fake_gateway.subscription_statuses['SUB_1'] = 'cancelled'

        summary = await job.run(test_db_session, NOW, dry_run=True)

        assert summary.actions == ['[dry-run] cancel user-1 and downgrade to free']
        user = reload(test_db_session, 'user-1')
        assert user.subscription_status == SubscriptionStatus.TRIAL
        assert user.plan == UserPlan.PREMIUM
