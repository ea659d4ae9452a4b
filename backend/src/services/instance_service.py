"""
Instance service: materializes recurring templates into bookable instances.

Occurrences produced by the recurrence evaluator are persisted as
EventInstance rows inside the rolling window [now, now + lookahead_days].

Design:
- instance_id is deterministic, so materialization is an idempotent upsert:
  new occurrences are inserted, existing ones keep their attendee count and
  cancellation flag and only have display fields refreshed
- Each upsert is committed on its own; a failure on one instance is recorded
  and the run continues (the next scheduled run retries)
- A unique-constraint collision on insert means another run created the row
  first; it is recovered by treating the row as existing
- Instances before now are never touched
- Future instances the rule no longer produces are removed; if one holds
  active registrations the whole run is refused with SeriesEditConflictError
  unless cancel_affected is set, in which case it is cancelled instead
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import islice
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    EventInstance,
    EventTemplate,
    InstanceStatus,
    Registration,
    RegistrationStatus,
    ACTIVE_REGISTRATION_STATUSES,
)
from backend.src.services.exceptions import (
    NotFoundError,
    SeriesEditConflictError,
    StaleMaterializationError,
    ValidationError,
)
from backend.src.services.recurrence import (
    Occurrence,
    RecurrencePattern,
    instance_id_for,
    occurrences_in_window,
)
from backend.src.utils.instants import to_naive_utc, utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass
class MaterializationResult:
    """
    Outcome of one materialization run for a template.

    Attributes:
        template_guid: Template that was materialized
        created: Instances inserted
        updated: Existing instances whose display fields changed
        unchanged: Existing instances left as they were
        removed: Future instances deleted because the rule no longer produces them
        cancelled: Future instances cancelled instead of deleted (had registrations)
        errors: Per-instance error messages
    """
    template_guid: Optional[str] = None
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    cancelled: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.removed or self.cancelled)

    def merge(self, other: "MaterializationResult") -> "MaterializationResult":
        """Merge counts from another run."""
        return MaterializationResult(
            template_guid=None,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
            removed=self.removed + other.removed,
            cancelled=self.cancelled + other.cancelled,
            errors=self.errors + other.errors,
        )


@dataclass
class ReconciliationPlan:
    """
    What a materialization run would do, computed without writing.

    Attributes:
        occurrences: Occurrences inside the window keyed by instance_id
        to_remove: Future instances no longer produced by the rule
        conflicts: instance_ids in to_remove that hold active registrations
    """
    occurrences: Dict[str, Occurrence] = field(default_factory=dict)
    to_remove: List[EventInstance] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)


@dataclass
class InstancePage:
    """One page of instances."""
    items: List[EventInstance]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


class InstanceService:
    """
    Service for materializing and querying event instances.

    Usage:
        >>> service = InstanceService(db_session)
        >>> result = service.materialize(template)
        >>> print(f"{result.created} created, {result.unchanged} unchanged")
    """

    def __init__(self, db: Session, settings: Optional[AppSettings] = None):
        """
        Initialize instance service.

        Args:
            db: SQLAlchemy database session
            settings: Application settings (defaults to cached settings)
        """
        self.db = db
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # Materialization
    # -------------------------------------------------------------------------

    def plan(
        self,
        template: EventTemplate,
        pattern: Optional[RecurrencePattern] = None,
        lookahead_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReconciliationPlan:
        """
        Compute the reconciliation for a template without writing anything.

        Args:
            template: Template to reconcile
            pattern: Pattern to evaluate (defaults to the template's current pattern)
            lookahead_days: Window size (defaults to settings.lookahead_days)
            now: Window start, naive UTC (defaults to current time)

        Returns:
            ReconciliationPlan with window occurrences, removals and conflicts
        """
        pattern = pattern or template.pattern
        now = now or utc_now()
        lookahead = lookahead_days if lookahead_days is not None else self.settings.lookahead_days
        window_end = now + timedelta(days=lookahead)

        existing_future = (
            self.db.query(EventInstance)
            .filter(
                EventInstance.template_id == template.id,
                EventInstance.event_date >= now,
            )
            .all()
        )

        plan = ReconciliationPlan()
        if pattern is None:
            # Template no longer recurs; every future instance is stale
            produced_ids = set()
        else:
            # Evaluate far enough to cover instances materialized by a larger window
            horizon = max([window_end] + [i.event_date for i in existing_future])
            produced_ids = set()
            for occurrence in occurrences_in_window(pattern, now, horizon):
                instance_id = instance_id_for(template.guid, occurrence.local_date)
                produced_ids.add(instance_id)
                if to_naive_utc(occurrence.instant) <= window_end \
                        and len(plan.occurrences) < self.settings.max_instances_per_query:
                    plan.occurrences[instance_id] = occurrence

        for instance in existing_future:
            if instance.instance_id in produced_ids:
                continue
            plan.to_remove.append(instance)
            if self._has_active_registrations(instance):
                plan.conflicts.append(instance.instance_id)

        return plan

    def materialize(
        self,
        template: EventTemplate,
        lookahead_days: Optional[int] = None,
        now: Optional[datetime] = None,
        cancel_affected: bool = False,
    ) -> MaterializationResult:
        """
        Materialize a template's occurrences inside [now, now + lookahead_days].

        Args:
            template: Recurring template to materialize
            lookahead_days: Window size (defaults to settings.lookahead_days)
            now: Window start, naive UTC (defaults to current time)
            cancel_affected: Cancel (instead of refusing) removed instances
                that hold active registrations

        Returns:
            MaterializationResult with per-outcome counts

        Raises:
            SeriesEditConflictError: If removed instances hold active
                registrations and cancel_affected is False
        """
        now = now or utc_now()
        plan = self.plan(template, lookahead_days=lookahead_days, now=now)

        if plan.conflicts and not cancel_affected:
            raise SeriesEditConflictError(template.guid, plan.conflicts)

        result = MaterializationResult(template_guid=template.guid)

        if plan.to_remove:
            self._remove_stale(plan.to_remove, now, result)

        existing = {
            instance.instance_id: instance
            for instance in self.db.query(EventInstance)
            .filter(EventInstance.instance_id.in_(list(plan.occurrences.keys())))
            .all()
        } if plan.occurrences else {}

        for instance_id, occurrence in plan.occurrences.items():
            try:
                current = existing.get(instance_id)
                if current is None:
                    try:
                        self._insert(template, instance_id, occurrence)
                        result.created += 1
                        continue
                    except StaleMaterializationError:
                        current = self._get_by_instance_id(instance_id)
                        if current is None:
                            raise

                if self._refresh(current, occurrence):
                    self.db.commit()
                    result.updated += 1
                else:
                    result.unchanged += 1

            except (SQLAlchemyError, StaleMaterializationError) as e:
                self.db.rollback()
                result.errors.append(f"{instance_id}: {e}")
                logger.error(
                    f"Failed to materialize instance {instance_id}",
                    extra={"template_guid": template.guid, "error": str(e)}
                )

        logger.info(
            f"Materialized template {template.guid}",
            extra={
                "template_guid": template.guid,
                "created": result.created,
                "updated": result.updated,
                "unchanged": result.unchanged,
                "removed": result.removed,
                "cancelled": result.cancelled,
                "errors": len(result.errors),
            }
        )
        return result

    def _insert(self, template: EventTemplate, instance_id: str, occurrence: Occurrence) -> EventInstance:
        instance = EventInstance(
            template_id=template.id,
            instance_id=instance_id,
            max_attendees=template.max_attendees or 0,
            attendee_count=0,
            is_cancelled=False,
        )
        self._apply_display_fields(instance, occurrence)
        self.db.add(instance)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise StaleMaterializationError(instance_id)
        return instance

    def _refresh(self, instance: EventInstance, occurrence: Occurrence) -> bool:
        """Refresh display-derived fields; return True if anything changed."""
        before = self._display_fields(instance)
        self._apply_display_fields(instance, occurrence)
        return self._display_fields(instance) != before

    @staticmethod
    def _apply_display_fields(instance: EventInstance, occurrence: Occurrence) -> None:
        instance.event_date = to_naive_utc(occurrence.instant)
        instance.local_date = occurrence.local_date
        instance.local_time_formatted = occurrence.local_time_formatted
        instance.timezone = occurrence.timezone
        instance.timezone_abbr = occurrence.timezone_abbr
        instance.day_of_week = occurrence.day_of_week

    @staticmethod
    def _display_fields(instance: EventInstance) -> tuple:
        return (
            instance.event_date,
            instance.local_date,
            instance.local_time_formatted,
            instance.timezone,
            instance.timezone_abbr,
            instance.day_of_week,
        )

    def _remove_stale(self, instances: List[EventInstance], now: datetime, result: MaterializationResult) -> None:
        """Delete or cancel instances the rule no longer produces (one transaction)."""
        try:
            for instance in instances:
                has_history = self.db.query(Registration.id).filter(
                    Registration.instance_pk == instance.id
                ).first() is not None

                if not has_history:
                    self.db.delete(instance)
                    result.removed += 1
                elif not instance.is_cancelled or self._has_active_registrations(instance):
                    # Keep rows that carry registrations, only cancel them
                    self._cancel(instance, now)
                    result.cancelled += 1
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            result.errors.append(f"Removing stale instances failed: {e}")
            logger.error(
                "Failed to remove stale instances",
                extra={"instance_ids": [i.instance_id for i in instances], "error": str(e)}
            )

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel_instance(self, instance: EventInstance, now: Optional[datetime] = None) -> int:
        """
        Cancel an instance and all of its active registrations.

        Args:
            instance: Instance to cancel
            now: Cancellation time, naive UTC

        Returns:
            Number of registrations cancelled
        """
        now = now or utc_now()
        affected = self._cancel(instance, now)
        self.db.commit()
        logger.info(
            f"Cancelled instance {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "registrations_cancelled": affected}
        )
        return affected

    def _cancel(self, instance: EventInstance, now: datetime) -> int:
        instance.is_cancelled = True
        instance.cancelled_at = instance.cancelled_at or now

        active = (
            self.db.query(Registration)
            .filter(
                Registration.instance_pk == instance.id,
                Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
            .all()
        )
        released = 0
        for registration in active:
            if registration.is_counted:
                released += registration.quantity
                registration.is_counted = False
            registration.status = RegistrationStatus.CANCELLED
            registration.cancelled_at = now

        if released:
            self.db.execute(
                update(EventInstance)
                .where(EventInstance.id == instance.id)
                .values(attendee_count=EventInstance.attendee_count - released)
                .execution_options(synchronize_session=False)
            )
            self.db.expire(instance, ["attendee_count"])
        return len(active)

    def _has_active_registrations(self, instance: EventInstance) -> bool:
        return self.db.query(Registration.id).filter(
            Registration.instance_pk == instance.id,
            Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
        ).first() is not None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_instance(self, instance_id: str) -> EventInstance:
        """
        Get an instance by its deterministic instance_id or its ins_ GUID.

        Raises:
            NotFoundError: If no such instance exists
        """
        instance = None
        if instance_id and instance_id.lower().startswith(f"{EventInstance.GUID_PREFIX}_"):
            try:
                uuid_value = EventInstance.parse_guid(instance_id)
            except ValueError:
                raise NotFoundError("EventInstance", instance_id)
            instance = self.db.query(EventInstance).filter(EventInstance.uuid == uuid_value).first()
        else:
            instance = self._get_by_instance_id(instance_id)

        if instance is None:
            raise NotFoundError("EventInstance", instance_id)
        return instance

    def _get_by_instance_id(self, instance_id: str) -> Optional[EventInstance]:
        return self.db.query(EventInstance).filter(EventInstance.instance_id == instance_id).first()

    def list_upcoming(
        self,
        template: EventTemplate,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 20,
        include_cancelled: bool = True,
    ) -> InstancePage:
        """
        List a template's instances between start and end, ordered by date.

        Args:
            template: Parent template
            start: Inclusive lower bound, naive UTC (defaults to now)
            end: Inclusive upper bound, naive UTC (defaults to now + lookahead)
            page: 1-based page number
            page_size: Items per page, capped at settings.max_instances_per_query
            include_cancelled: Include organizer-cancelled instances

        Returns:
            InstancePage

        Raises:
            ValidationError: If page or page_size are not positive, or end < start
        """
        if page < 1:
            raise ValidationError("page must be >= 1", field="page")
        if page_size < 1:
            raise ValidationError("page_size must be >= 1", field="page_size")
        page_size = min(page_size, self.settings.max_instances_per_query)

        start = start or utc_now()
        end = end or start + timedelta(days=self.settings.lookahead_days)
        if end < start:
            raise ValidationError("end must not be before start", field="end")

        query = self.db.query(EventInstance).filter(
            EventInstance.template_id == template.id,
            EventInstance.event_date >= start,
            EventInstance.event_date <= end,
        )
        if not include_cancelled:
            query = query.filter(EventInstance.is_cancelled.is_(False))

        total = query.with_entities(func.count(EventInstance.id)).scalar() or 0
        items = (
            query.order_by(EventInstance.event_date.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return InstancePage(items=items, total=total, page=page, page_size=page_size)

    @staticmethod
    def derive_status(instance: EventInstance, now: Optional[datetime] = None) -> InstanceStatus:
        """Derive the read-time status of an instance."""
        return instance.status_at(now or utc_now())
