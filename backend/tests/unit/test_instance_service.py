"""
Unit tests for InstanceService.

Tests materialization of recurring templates into instances: rolling
window, idempotent upserts, reconciliation after pattern edits, conflict
handling, cancellation and instance queries.
"""

import pytest
from datetime import date, datetime, time, timedelta

from backend.src.models import (
    EventInstance,
    InstanceStatus,
    PatternType,
    Registration,
    RegistrationStatus,
)
from backend.src.services.exceptions import (
    NotFoundError,
    SeriesEditConflictError,
    ValidationError,
)
from backend.src.services.instance_service import InstanceService, MaterializationResult
from backend.src.services.recurrence import RecurrencePattern


# Monday 2026-03-02 06:00 UTC (08:00 SAST)
NOW = datetime(2026, 3, 2, 6, 0)


@pytest.fixture
def instance_service(test_db_session, test_settings):
    return InstanceService(test_db_session, test_settings)


@pytest.fixture
def add_registration(test_db_session):
    """Attach a counted registration to an instance."""
    def _add(instance, user_id='attendee-1', status=RegistrationStatus.REGISTERED, quantity=1):
        registration = Registration(
            instance_pk=instance.id,
            user_id=user_id,
            quantity=quantity,
            status=status,
            is_counted=status in (RegistrationStatus.REGISTERED, RegistrationStatus.PENDING_PAYMENT),
            initiated_at=NOW,
        )
        test_db_session.add(registration)
        instance.attendee_count += quantity if registration.is_counted else 0
        test_db_session.commit()
        return registration
    return _add


def instance_ids(db, template):
    return sorted(
        i.instance_id for i in db.query(EventInstance).filter(EventInstance.template_id == template.id)
    )


class TestMaterialize:
    """Tests for InstanceService.materialize."""

    def test_weekly_window(self, instance_service, sample_template, test_db_session):
        """Mon/Wed over 14 days creates 4 instances with display fields."""
        template = sample_template()

        result = instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert result.created == 4
        instances = test_db_session.query(EventInstance).order_by(EventInstance.event_date).all()
        assert [i.local_date for i in instances] == [
            date(2026, 3, 2), date(2026, 3, 4), date(2026, 3, 9), date(2026, 3, 11),
        ]
        first = instances[0]
        assert first.instance_id == f"{template.guid}_2026-03-02"
        assert first.event_date == datetime(2026, 3, 2, 8, 0)
        assert first.local_time_formatted == '10:00 AM'
        assert first.timezone_abbr == 'SAST'
        assert first.day_of_week == 'Monday'
        assert first.attendee_count == 0

    def test_idempotent(self, instance_service, sample_template, test_db_session):
        """A second run over the same window changes nothing."""
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)

        result = instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert result.created == 0
        assert result.unchanged == 4
        assert not result.changed
        assert test_db_session.query(EventInstance).count() == 4

    def test_rolling_window(self, instance_service, sample_template):
        """Daily series: 90 instances, then 30 new and 60 kept a month later."""
        template = sample_template(type='daily', days_of_week=[])

        first = instance_service.materialize(template, now=NOW)
        second = instance_service.materialize(template, now=NOW + timedelta(days=30))

        assert first.created == 90
        assert second.created == 30
        assert second.unchanged == 60
        assert second.removed == 0

    def test_window_capped(self, instance_service, sample_template, test_settings):
        template = sample_template(type='daily', days_of_week=[])
        instance_service.settings = test_settings.model_copy(update={'max_instances_per_query': 10})

        result = instance_service.materialize(template, now=NOW)

        assert result.created == 10

    def test_past_instances_untouched(self, instance_service, sample_template, test_db_session):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)

        # Move the series start; Mar 2 is now in the past and must stay
        template.apply_pattern(RecurrencePattern.from_dict({
            'type': 'weekly', 'days_of_week': [1], 'start_date': '2026-03-09', 'start_time': '10:00',
        }))
        test_db_session.commit()
        result = instance_service.materialize(template, lookahead_days=14, now=NOW + timedelta(days=3))

        assert f"{template.guid}_2026-03-02" in instance_ids(test_db_session, template)
        assert result.removed == 1  # Mar 11 (Wednesday)

    def test_preserves_attendee_count(self, instance_service, sample_template, add_registration, test_db_session):
        template = sample_template(max_attendees=10)
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        instance = instance_service.get_instance(f"{template.guid}_2026-03-04")
        add_registration(instance, quantity=1)

        instance_service.materialize(template, lookahead_days=14, now=NOW)

        test_db_session.refresh(instance)
        assert instance.attendee_count == 1

    def test_updates_display_fields(self, instance_service, sample_template, test_db_session):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)

        template.start_time = time(18, 30)
        test_db_session.commit()
        result = instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert result.updated == 4
        instance = instance_service.get_instance(f"{template.guid}_2026-03-04")
        assert instance.local_time_formatted == '6:30 PM'
        assert instance.event_date == datetime(2026, 3, 4, 16, 30)


class TestReconciliation:
    """Tests for removing instances the pattern no longer produces."""

    def test_pattern_edit_removes_unregistered(self, instance_service, sample_template, test_db_session):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)

        template.apply_pattern(RecurrencePattern.from_dict({
            'type': 'weekly', 'days_of_week': [1], 'start_date': '2026-03-02', 'start_time': '10:00',
        }))
        test_db_session.commit()
        result = instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert result.removed == 2
        assert instance_ids(test_db_session, template) == [
            f"{template.guid}_2026-03-02", f"{template.guid}_2026-03-09",
        ]

    def test_plan_reports_conflicts(self, instance_service, sample_template, add_registration):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        wednesday = instance_service.get_instance(f"{template.guid}_2026-03-04")
        add_registration(wednesday)
        mondays_only = RecurrencePattern(
            type=PatternType.WEEKLY,
            start_date=date(2026, 3, 2),
            start_time=template.start_time,
            days_of_week=frozenset({1}),
        )

        plan = instance_service.plan(template, pattern=mondays_only, lookahead_days=14, now=NOW)

        assert wednesday.instance_id in plan.conflicts
        assert len(plan.to_remove) == 2

    def test_conflict_refused_without_confirmation(
        self, instance_service, sample_template, add_registration, test_db_session
    ):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        add_registration(instance_service.get_instance(f"{template.guid}_2026-03-04"))
        template.days_of_week = [1]
        test_db_session.commit()

        with pytest.raises(SeriesEditConflictError) as exc_info:
            instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert exc_info.value.instance_ids == [f"{template.guid}_2026-03-04"]
        assert len(instance_ids(test_db_session, template)) == 4

    def test_conflict_cancelled_with_confirmation(
        self, instance_service, sample_template, add_registration, test_db_session
    ):
        template = sample_template(max_attendees=5)
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        wednesday = instance_service.get_instance(f"{template.guid}_2026-03-04")
        registration = add_registration(wednesday, quantity=2)
        template.days_of_week = [1]
        test_db_session.commit()

        result = instance_service.materialize(template, lookahead_days=14, now=NOW, cancel_affected=True)

        assert result.cancelled == 1
        assert result.removed == 1  # Mar 11 had no registrations
        test_db_session.refresh(wednesday)
        test_db_session.refresh(registration)
        assert wednesday.is_cancelled is True
        assert wednesday.attendee_count == 0
        assert registration.status == RegistrationStatus.CANCELLED
        assert registration.is_counted is False

    def test_instance_with_history_is_kept(
        self, instance_service, sample_template, add_registration, test_db_session
    ):
        """A removed instance with only terminal registrations is cancelled, not deleted."""
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        wednesday = instance_service.get_instance(f"{template.guid}_2026-03-04")
        add_registration(wednesday, status=RegistrationStatus.CANCELLED)
        template.days_of_week = [1]
        test_db_session.commit()

        result = instance_service.materialize(template, lookahead_days=14, now=NOW)

        assert result.cancelled == 1
        assert wednesday.instance_id in instance_ids(test_db_session, template)


class TestCancellation:
    """Tests for InstanceService.cancel_instance."""

    def test_cancel_releases_registrations(self, instance_service, sample_instance, add_registration, test_db_session):
        instance = sample_instance()
        first = add_registration(instance, user_id='a')
        second = add_registration(instance, user_id='b', status=RegistrationStatus.PENDING_PAYMENT)

        affected = instance_service.cancel_instance(instance, now=NOW)

        assert affected == 2
        test_db_session.refresh(instance)
        assert instance.is_cancelled is True
        assert instance.cancelled_at == NOW
        assert instance.attendee_count == 0
        for registration in (first, second):
            test_db_session.refresh(registration)
            assert registration.status == RegistrationStatus.CANCELLED

    def test_cancelled_instance_survives_materialization(self, instance_service, sample_template, test_db_session):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        instance = instance_service.get_instance(f"{template.guid}_2026-03-04")
        instance_service.cancel_instance(instance, now=NOW)

        instance_service.materialize(template, lookahead_days=14, now=NOW)

        test_db_session.refresh(instance)
        assert instance.is_cancelled is True


class TestQueries:
    """Tests for instance lookups, listing and status."""

    def test_get_by_instance_id_and_guid(self, instance_service, sample_instance):
        instance = sample_instance()

        assert instance_service.get_instance(instance.instance_id).id == instance.id
        assert instance_service.get_instance(instance.guid).id == instance.id

    @pytest.mark.parametrize("identifier", ["tpl_missing_2026-03-02", "ins_notaguid"])
    def test_get_missing(self, instance_service, identifier):
        with pytest.raises(NotFoundError):
            instance_service.get_instance(identifier)

    def test_list_upcoming_paginates(self, instance_service, sample_template):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=28, now=NOW)

        page = instance_service.list_upcoming(template, start=NOW, page=1, page_size=3)

        assert page.total == 8
        assert len(page.items) == 3
        assert page.has_more is True
        assert page.items[0].local_date == date(2026, 3, 2)

    def test_list_upcoming_excludes_cancelled(self, instance_service, sample_template):
        template = sample_template()
        instance_service.materialize(template, lookahead_days=14, now=NOW)
        instance_service.cancel_instance(instance_service.get_instance(f"{template.guid}_2026-03-04"), now=NOW)

        page = instance_service.list_upcoming(template, start=NOW, end=NOW + timedelta(days=14),
                                              include_cancelled=False)

        assert page.total == 3

    def test_list_upcoming_validation(self, instance_service, sample_template):
        template = sample_template()

        with pytest.raises(ValidationError):
            instance_service.list_upcoming(template, page=0)
        with pytest.raises(ValidationError):
            instance_service.list_upcoming(template, start=NOW, end=NOW - timedelta(days=1))

    def test_derive_status(self, sample_instance):
        instance = sample_instance(event_date=datetime(2026, 3, 4, 8, 0), max_attendees=2)

        assert InstanceService.derive_status(instance, NOW) == InstanceStatus.AVAILABLE
        instance.attendee_count = 2
        assert InstanceService.derive_status(instance, NOW) == InstanceStatus.FULL
        assert InstanceService.derive_status(instance, datetime(2026, 3, 5)) == InstanceStatus.PAST
        instance.is_cancelled = True
        assert InstanceService.derive_status(instance, datetime(2026, 3, 5)) == InstanceStatus.CANCELLED


class TestMaterializationResult:
    """Tests for MaterializationResult helpers."""

    def test_merge(self):
        merged = MaterializationResult(created=2, errors=['a']).merge(
            MaterializationResult(unchanged=3, removed=1, errors=['b'])
        )

        assert (merged.created, merged.unchanged, merged.removed) == (2, 3, 1)
        assert merged.errors == ['a', 'b']
        assert merged.changed is True
