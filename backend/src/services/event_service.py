"""
Event service for managing recurring event templates.

Provides the organizer-facing lifecycle of a template: creation, pattern
edits, ending a series and cancelling single instances. Every change that
affects occurrences is followed by a materialization run.

Design:
- Patterns are validated before anything is written
- Pattern edits are previewed first; an edit that would drop future
  instances holding registrations is refused unless cancel_affected is set
- Ending a series sets end_date to today (in the template timezone) and
  cancels the remaining future instances, reporting how many registrations
  were affected
- Only the organizer who owns a template may change it
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import EventInstance, EventTemplate
from backend.src.services.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    SeriesEditConflictError,
    ValidationError,
)
from backend.src.services.instance_service import InstanceService, MaterializationResult
from backend.src.services.recurrence import RecurrencePattern, validate_pattern
from backend.src.utils.instants import as_aware_utc, utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")

PatternInput = Union[RecurrencePattern, Dict[str, Any]]


@dataclass
class EndSeriesResult:
    """
    Outcome of ending a recurring series.

    Attributes:
        template: The updated template
        end_date: New end date
        affected_registrations: Active registrations on instances after end_date
        materialization: Reconciliation counts
    """
    template: EventTemplate
    end_date: date
    affected_registrations: int
    materialization: MaterializationResult


class EventService:
    """
    Service for managing recurring event templates.

    Usage:
        >>> service = EventService(db_session)
        >>> template, result = service.create_template(
        ...     organizer_id="user-1",
        ...     title="Weekly networking",
        ...     pattern={"type": "weekly", "days_of_week": [1, 3],
        ...              "start_date": "2026-03-02", "start_time": "10:00"},
        ... )
    """

    def __init__(self, db: Session, settings: Optional[AppSettings] = None):
        """
        Initialize event service.

        Args:
            db: SQLAlchemy database session
            settings: Application settings (defaults to cached settings)
        """
        self.db = db
        self.settings = settings or get_settings()
        self.instances = InstanceService(db, self.settings)

    def get_template(self, guid: str) -> EventTemplate:
        """
        Get a template by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or no template exists
        """
        try:
            uuid_value = EventTemplate.parse_guid(guid)
        except ValueError:
            raise NotFoundError("EventTemplate", guid)

        template = self.db.query(EventTemplate).filter(EventTemplate.uuid == uuid_value).first()
        if not template:
            raise NotFoundError("EventTemplate", guid)
        return template

    def list_recurring_templates(self, today: Optional[date] = None) -> List[EventTemplate]:
        """List recurring templates whose series has not ended before today."""
        query = self.db.query(EventTemplate).filter(EventTemplate.is_recurring.is_(True))
        if today is not None:
            query = query.filter(
                (EventTemplate.end_date.is_(None)) | (EventTemplate.end_date >= today)
            )
        return query.order_by(EventTemplate.id).all()

    def create_template(
        self,
        organizer_id: str,
        title: str,
        pattern: PatternInput,
        description: Optional[str] = None,
        location: Optional[str] = None,
        category: Optional[str] = None,
        ticket_price: Union[Decimal, float, int] = 0,
        currency: Optional[str] = None,
        max_attendees: int = 0,
        allow_bulk_registrations: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple[EventTemplate, MaterializationResult]:
        """
        Create a recurring template and materialize its first window.

        Args:
            organizer_id: Owner's user id
            title: Event title
            pattern: RecurrencePattern or mapping accepted by RecurrencePattern.from_dict
            description: Optional description
            location: Optional venue
            category: Optional category tag
            ticket_price: Price per seat in major units (0 = free)
            currency: ISO currency code (defaults to settings.currency)
            max_attendees: Capacity per instance (<= 0 = unlimited)
            allow_bulk_registrations: Allow multi-seat bookings
            now: Materialization window start, naive UTC

        Returns:
            Tuple of (template, materialization result)

        Raises:
            ValidationError: If title or price are invalid
            InvalidPatternError: If the pattern is invalid
        """
        if not organizer_id:
            raise ValidationError("organizer_id is required", field="organizer_id")
        if not title or not title.strip():
            raise ValidationError("Title is required", field="title")
        if ticket_price is None or Decimal(str(ticket_price)) < 0:
            raise ValidationError("ticket_price must not be negative", field="ticket_price")

        parsed = self._parse_pattern(pattern)

        template = EventTemplate(
            organizer_id=organizer_id,
            title=title.strip(),
            description=description,
            location=location,
            category=category,
            ticket_price=Decimal(str(ticket_price)),
            currency=currency or self.settings.currency,
            max_attendees=max_attendees or 0,
            allow_bulk_registrations=allow_bulk_registrations,
        )
        template.apply_pattern(parsed)
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)

        logger.info(
            f"Created template {template.guid}",
            extra={"template_guid": template.guid, "organizer_id": organizer_id,
                   "pattern_type": parsed.type.value}
        )

        result = self.instances.materialize(template, now=now)
        return template, result

    def get_pattern(self, guid: str) -> RecurrencePattern:
        """
        Get a template's recurrence pattern.

        Raises:
            NotFoundError: If the template does not exist or does not recur
        """
        template = self.get_template(guid)
        pattern = template.pattern
        if pattern is None:
            raise NotFoundError("RecurrencePattern", guid)
        return pattern

    def update_pattern(
        self,
        guid: str,
        pattern: PatternInput,
        organizer_id: str,
        cancel_affected: bool = False,
        now: Optional[datetime] = None,
    ) -> Tuple[EventTemplate, MaterializationResult]:
        """
        Replace a template's pattern and reconcile its future instances.

        Instances before now are never touched. Future instances the new
        pattern no longer produces are deleted, or cancelled when they carry
        registrations.

        Args:
            guid: Template GUID
            pattern: New pattern
            organizer_id: Caller's user id (must own the template)
            cancel_affected: Confirm cancellation of registered instances the
                new pattern drops
            now: Reconciliation time, naive UTC

        Returns:
            Tuple of (template, materialization result)

        Raises:
            NotFoundError: If the template does not exist
            PermissionDeniedError: If the caller does not own the template
            InvalidPatternError: If the pattern is invalid
            SeriesEditConflictError: If registered instances would be dropped
                and cancel_affected is False
        """
        template = self.get_template(guid)
        self._require_owner(template, organizer_id)
        parsed = self._parse_pattern(pattern)
        now = now or utc_now()

        plan = self.instances.plan(template, pattern=parsed, now=now)
        if plan.conflicts and not cancel_affected:
            logger.warning(
                f"Refused pattern edit on {guid}",
                extra={"template_guid": guid, "conflicts": plan.conflicts}
            )
            raise SeriesEditConflictError(template.guid, plan.conflicts)

        template.apply_pattern(parsed)
        self.db.commit()

        result = self.instances.materialize(template, now=now, cancel_affected=cancel_affected)
        logger.info(
            f"Updated pattern for {guid}",
            extra={"template_guid": guid, "removed": result.removed, "cancelled": result.cancelled}
        )
        return template, result

    def end_series(
        self,
        guid: str,
        organizer_id: str,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> EndSeriesResult:
        """
        End a recurring series today.

        Future instances after today are cancelled (or deleted when they have
        no registrations); the count of affected active registrations is
        returned so the caller can notify attendees.

        Raises:
            NotFoundError: If the template does not exist
            PermissionDeniedError: If the caller does not own the template
            ValidationError: If the template does not recur
        """
        template = self.get_template(guid)
        self._require_owner(template, organizer_id)
        pattern = template.pattern
        if pattern is None:
            raise ValidationError("Template is not a recurring series", field="guid")

        now = now or utc_now()
        if today is None:
            today = as_aware_utc(now).astimezone(pattern.zone).date()
        end_date = max(today, pattern.start_date)

        template.end_date = end_date
        validate_pattern(template.pattern)

        plan = self.instances.plan(template, now=now)
        affected = sum(
            1
            for instance in plan.to_remove
            for reg in instance.registrations
            if reg.is_active
        )

        self.db.commit()
        result = self.instances.materialize(template, now=now, cancel_affected=True)

        logger.info(
            f"Ended series {guid}",
            extra={"template_guid": guid, "end_date": end_date.isoformat(),
                   "affected_registrations": affected}
        )
        return EndSeriesResult(
            template=template,
            end_date=end_date,
            affected_registrations=affected,
            materialization=result,
        )

    def cancel_instance(
        self,
        instance_id: str,
        organizer_id: str,
        now: Optional[datetime] = None,
    ) -> Tuple[EventInstance, int]:
        """
        Cancel a single instance (organizer only).

        Cancelling an already cancelled instance is a no-op.

        Returns:
            Tuple of (instance, number of registrations cancelled)

        Raises:
            NotFoundError: If the instance does not exist
            PermissionDeniedError: If the caller does not own the template
        """
        instance = self.instances.get_instance(instance_id)
        self._require_owner(instance.template, organizer_id)

        if instance.is_cancelled:
            return instance, 0

        affected = self.instances.cancel_instance(instance, now=now)
        return instance, affected

    @staticmethod
    def _require_owner(template: EventTemplate, organizer_id: str) -> None:
        if not organizer_id or template.organizer_id != organizer_id:
            raise PermissionDeniedError(
                f"User {organizer_id} is not the organizer of {template.guid}"
            )

    def _parse_pattern(self, pattern: PatternInput) -> RecurrencePattern:
        if isinstance(pattern, RecurrencePattern):
            validate_pattern(pattern)
            return pattern
        return RecurrencePattern.from_dict(pattern, default_timezone=self.settings.default_timezone)
