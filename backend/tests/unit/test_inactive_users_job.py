"""
Unit tests for InactiveUserArchivalJob and restore_archived_user.
"""

import pytest
from datetime import datetime

from backend.src.jobs.inactive_users import InactiveUserArchivalJob, restore_archived_user
from backend.src.models import ArchivedUser, SubscriptionStatus, User, UserPlan
from backend.src.services.exceptions import ConflictError, NotFoundError


NOW = datetime(2026, 3, 2, 6, 0)
LONG_AGO = datetime(2025, 6, 1)


@pytest.fixture
def inactive_user(sample_user):
    return sample_user(
        'sleepy',
        email='sleepy@example.com',
        subscription_status=SubscriptionStatus.ACTIVE,
        active=False,
        inactive_since=LONG_AGO,
        first_billing_date=datetime(2025, 1, 1),
    )


def user_ids(db):
    db.expire_all()
    return [u.user_id for u in db.query(User).order_by(User.id)]


class TestListing:
    """Tests for candidate selection without archival."""

    @pytest.mark.asyncio
    async def test_lists_only_when_archival_disabled(self, inactive_user, sample_user, test_db_session):
        sample_user('recent', active=False, inactive_since=datetime(2026, 2, 1))
        sample_user('awake', active=True)
        job = InactiveUserArchivalJob(threshold_days=180, archive_enabled=False)

        summary = await job.run(test_db_session, NOW, dry_run=False)

        assert summary.processed == 1
        assert summary.actions[0].startswith('archive sleepy (email=sleepy@example.com')
        assert user_ids(test_db_session) == ['sleepy', 'recent', 'awake']
        assert test_db_session.query(ArchivedUser).count() == 0

    @pytest.mark.asyncio
    async def test_missing_inactive_since_counts(self, sample_user, test_db_session):
        sample_user('unknown', active=False, inactive_since=None)
        job = InactiveUserArchivalJob(archive_enabled=True)

        summary = await job.run(test_db_session, NOW, dry_run=True)

        assert summary.processed == 1
        assert user_ids(test_db_session) == ['unknown']


class TestArchival:
    """Tests for moving users into the archive."""

    @pytest.mark.asyncio
    async def test_archive_and_delete(self, inactive_user, fake_identity_provider, test_db_session):
        job = InactiveUserArchivalJob(fake_identity_provider, archive_enabled=True, delete_auth=True)

        summary = await job.run(test_db_session, NOW, dry_run=False)

        assert summary.succeeded == 1
        assert user_ids(test_db_session) == []
        archive = test_db_session.query(ArchivedUser).one()
        assert archive.original_user_id == 'sleepy'
        assert archive.snapshot['email'] == 'sleepy@example.com'
        assert archive.snapshot['subscription_status'] == 'active'
        assert archive.archived_at == NOW
        assert archive.auth_deleted == 'deleted'
        assert fake_identity_provider.deleted == ['sleepy']

    @pytest.mark.asyncio
    async def test_auth_failure_keeps_archive(self, inactive_user, fake_identity_provider, test_db_session):
        fake_identity_provider.fail_for.add('sleepy')
        job = InactiveUserArchivalJob(fake_identity_provider, archive_enabled=True, delete_auth=True)

        summary = await job.run(test_db_session, NOW, dry_run=False)

        archive = test_db_session.query(ArchivedUser).one()
        assert archive.auth_deleted == 'failed'
        assert 'cannot delete sleepy' in archive.auth_deletion_error
        assert summary.errors[0]['item'] == 'sleepy'
        # The live row is still removed once the archive is safe
        assert user_ids(test_db_session) == []

    @pytest.mark.asyncio
    async def test_auth_deletion_skipped_by_default(self, inactive_user, fake_identity_provider, test_db_session):
        job = InactiveUserArchivalJob(fake_identity_provider, archive_enabled=True)

        await job.run(test_db_session, NOW, dry_run=False)

        assert test_db_session.query(ArchivedUser).one().auth_deleted == 'skipped'
        assert fake_identity_provider.deleted == []


class TestRestore:
    """Tests for restore_archived_user."""

    @pytest.mark.asyncio
    async def test_restore_round_trip(self, inactive_user, test_db_session):
        await InactiveUserArchivalJob(archive_enabled=True).run(test_db_session, NOW, dry_run=False)
        archive = test_db_session.query(ArchivedUser).one()

        user = restore_archived_user(test_db_session, archive.guid, now=datetime(2026, 3, 5))

        assert user.user_id == 'sleepy'
        assert user.email == 'sleepy@example.com'
        assert user.plan == UserPlan.PREMIUM
        assert user.subscription_status == SubscriptionStatus.ACTIVE
        assert user.first_billing_date == datetime(2025, 1, 1)
        assert user.active is True
        assert user.inactive_since is None
        test_db_session.refresh(archive)
        assert archive.restored_at == datetime(2026, 3, 5)

    @pytest.mark.asyncio
    async def test_restore_twice_conflicts(self, inactive_user, test_db_session):
        await InactiveUserArchivalJob(archive_enabled=True).run(test_db_session, NOW, dry_run=False)
        archive = test_db_session.query(ArchivedUser).one()
        restore_archived_user(test_db_session, archive.guid, now=NOW)

        with pytest.raises(ConflictError):
            restore_archived_user(test_db_session, archive.guid, now=NOW)

    @pytest.mark.parametrize("guid", ["arc_00000000000000000000000000", "garbage"])
    def test_restore_unknown(self, test_db_session, guid):
        with pytest.raises(NotFoundError):
            restore_archived_user(test_db_session, guid)
