"""
Unit tests for PaymentReconciliationJob.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from backend.src.jobs.payment_reconciliation import PaymentReconciliationJob
from backend.src.models import RegistrationStatus
from backend.src.services.registration_service import RegistrationService


NOW = datetime(2026, 3, 2, 6, 0)


@pytest.fixture
def pending(test_db_session, fake_gateway, test_settings, sample_instance):
    """A paid instance with one stale and one fresh pending registration."""
    instance = sample_instance(max_attendees=10, ticket_price=Decimal('100'))
    service = RegistrationService(test_db_session, fake_gateway, test_settings)

    async def _create():
        stale = await service.register(instance.instance_id, 'user-1', now=NOW - timedelta(minutes=90))
        fresh = await service.register(instance.instance_id, 'user-2', now=NOW - timedelta(minutes=10))
        return instance, stale.registration, fresh.registration
    return _create


class TestPaymentReconciliation:
    """Tests for the stale payment sweep."""

    @pytest.mark.asyncio
    async def test_abandons_stale(self, pending, test_settings, test_db_session):
        instance, stale, fresh = await pending()

        summary = await PaymentReconciliationJob(test_settings).run(test_db_session, NOW, dry_run=False)

        assert summary.processed == 1
        assert summary.succeeded == 1
        test_db_session.expire_all()
        assert stale.status == RegistrationStatus.ABANDONED
        assert fresh.status == RegistrationStatus.PENDING_PAYMENT
        assert instance.attendee_count == 1

    @pytest.mark.asyncio
    async def test_dry_run(self, pending, test_settings, test_db_session):
        instance, stale, _ = await pending()

        summary = await PaymentReconciliationJob(test_settings).run(test_db_session, NOW, dry_run=True)

        assert summary.actions == [f"[dry-run] abandon {stale.guid} (1 seat(s))"]
        test_db_session.expire_all()
        assert stale.status == RegistrationStatus.PENDING_PAYMENT
        assert instance.attendee_count == 2

    @pytest.mark.asyncio
    async def test_timeout_from_settings(self, pending, test_settings, test_db_session):
        await pending()
        settings = test_settings.model_copy(update={'payment_abandon_minutes': 5})

        summary = await PaymentReconciliationJob(settings).run(test_db_session, NOW, dry_run=False)

        assert summary.succeeded == 2
