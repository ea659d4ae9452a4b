"""
Registration service: seat bookings against event instances.

State machine:
    pending_payment -> registered | abandoned | cancelled
    registered      -> cancelled
    abandoned       -> registered (payment verified after abandonment)

Design:
- Seats are reserved when the registration is created, free or paid. The
  capacity check and the increment are one conditional UPDATE, so two
  concurrent bookings for the last seat can never both succeed
- Bulk bookings reserve their whole quantity in that same statement:
  either every seat is reserved or none is
- Paid bookings hold their seats while pending_payment; confirmation only
  flips the status, so re-delivered confirmations never double count
- Every status transition is a conditional UPDATE on the current status;
  whichever caller wins performs the seat release, the others become no-ops
- Unconfirmed payments older than the abandonment timeout become abandoned
  and release their seats
- A payment verified after abandonment reserves the seats again; when they
  are gone the caller gets CapacityExceededError and refunds
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.src.config.settings import AppSettings, get_settings
from backend.src.models import (
    EventInstance,
    Registration,
    RegistrationStatus,
    ACTIVE_REGISTRATION_STATUSES,
)
from backend.src.services.exceptions import (
    AlreadyRegisteredError,
    CapacityExceededError,
    ExternalVerificationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from backend.src.services.instance_service import InstanceService
from backend.src.services.payment_gateway import PaymentGateway, PaymentStatus
from backend.src.utils.instants import utc_now
from backend.src.utils.logging_config import get_logger


logger = get_logger("services")


@dataclass
class RegistrationResult:
    """
    Outcome of a booking.

    Attributes:
        registration: The created registration
        payment_url: Gateway checkout URL (paid bookings only)
        reference: Gateway payment reference (paid bookings only)
    """
    registration: Registration
    payment_url: Optional[str] = None
    reference: Optional[str] = None

    @property
    def requires_payment(self) -> bool:
        return self.registration.status == RegistrationStatus.PENDING_PAYMENT


class RegistrationService:
    """
    Service for registering users against event instances.

    Usage:
        >>> service = RegistrationService(db_session, gateway)
        >>> result = await service.register(instance_id, user_id="user-1")
        >>> if result.requires_payment:
        ...     redirect(result.payment_url)
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize registration service.

        Args:
            db: SQLAlchemy database session
            gateway: Payment gateway for paid instances (None = paid bookings fail)
            settings: Application settings (defaults to cached settings)
        """
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.instances = InstanceService(db, self.settings)

    # -------------------------------------------------------------------------
    # Booking
    # -------------------------------------------------------------------------

    async def register(
        self,
        instance_id: str,
        user_id: str,
        quantity: int = 1,
        attendee_details: Optional[List[Dict[str, Any]]] = None,
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RegistrationResult:
        """
        Book seats on an instance.

        Free instances are registered immediately. Paid instances reserve
        the seats, create a pending_payment registration and start a
        payment with the gateway.

        Args:
            instance_id: Instance id or ins_ GUID
            user_id: Booker's user id
            quantity: Seats to book (more than one follows the bulk rules)
            attendee_details: One entry per seat for bulk bookings
            email: Payer email handed to the gateway
            now: Booking time, naive UTC

        Returns:
            RegistrationResult

        Raises:
            NotFoundError: If the instance does not exist
            ValidationError: If the instance is cancelled or past, or the
                quantity / attendee details are invalid
            AlreadyRegisteredError: If the user already holds an active booking
            CapacityExceededError: If not enough seats remain
            ExternalVerificationError: If the payment could not be started
        """
        now = now or utc_now()
        if not user_id:
            raise ValidationError("user_id is required", field="user_id")

        instance = self.instances.get_instance(instance_id)
        template = instance.template

        if quantity != 1:
            self._validate_bulk(template, quantity, attendee_details)

        if instance.is_cancelled:
            raise ValidationError(f"Instance {instance.instance_id} is cancelled", field="instance_id")
        if instance.event_date < now:
            raise ValidationError(f"Instance {instance.instance_id} has already taken place", field="instance_id")

        existing = self._active_registration(instance, user_id)
        if existing is not None:
            raise AlreadyRegisteredError(instance.instance_id, user_id, existing.guid)

        paid = not template.is_free
        if paid and self.gateway is None:
            raise ExternalVerificationError("payment_gateway", "No payment gateway configured")

        self._reserve_seats(instance, quantity)

        registration = Registration(
            instance_pk=instance.id,
            user_id=user_id,
            email=email,
            quantity=quantity,
            attendee_details=attendee_details if quantity != 1 else None,
            is_counted=True,
            initiated_at=now,
        )
        if paid:
            registration.status = RegistrationStatus.PENDING_PAYMENT
            registration.payment_amount = self._amount_minor(template.ticket_price, quantity)
        else:
            registration.status = RegistrationStatus.REGISTERED
            registration.completed_at = now

        self.db.add(registration)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent booking by the same user won; the rollback also
            # undoes this seat reservation
            self.db.rollback()
            existing = self._active_registration(instance, user_id)
            raise AlreadyRegisteredError(
                instance.instance_id, user_id, existing.guid if existing is not None else None
            )

        logger.info(
            f"Reserved {quantity} seat(s) on {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "user_id": user_id,
                   "registration_guid": registration.guid, "paid": paid}
        )

        if not paid:
            return RegistrationResult(registration=registration)

        return await self._start_payment(registration, instance, now)

    async def register_bulk(
        self,
        instance_id: str,
        user_id: str,
        quantity: int,
        attendee_details: List[Dict[str, Any]],
        email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RegistrationResult:
        """
        Book several seats in one all-or-nothing operation.

        Raises:
            ValidationError: If quantity is outside the bulk range, the
                attendee list does not match it, or the event disallows bulk
            CapacityExceededError: If fewer than quantity seats remain
        """
        instance = self.instances.get_instance(instance_id)
        self._validate_bulk(instance.template, quantity, attendee_details)
        return await self.register(
            instance_id,
            user_id,
            quantity=quantity,
            attendee_details=attendee_details,
            email=email,
            now=now,
        )

    async def _start_payment(
        self,
        registration: Registration,
        instance: EventInstance,
        now: datetime,
    ) -> RegistrationResult:
        metadata = {
            "email": registration.email,
            "registration_guid": registration.guid,
            "instance_id": instance.instance_id,
            "user_id": registration.user_id,
            "quantity": registration.quantity,
        }
        try:
            handle = await self.gateway.initialize_payment(registration.payment_amount, metadata)
        except Exception as e:
            # Seats were reserved before the gateway call; give them back
            self._transition(
                registration,
                ACTIVE_REGISTRATION_STATUSES,
                RegistrationStatus.ABANDONED,
                now,
            )
            logger.error(
                f"Payment initialization failed for {registration.guid}",
                extra={"registration_guid": registration.guid, "error": str(e)}
            )
            if isinstance(e, ExternalVerificationError):
                raise
            raise ExternalVerificationError(self.gateway.name, str(e))

        registration.payment_reference = handle.reference
        registration.payment_url = handle.payment_url
        self.db.commit()

        return RegistrationResult(
            registration=registration,
            payment_url=handle.payment_url,
            reference=handle.reference,
        )

    def _validate_bulk(self, template, quantity: int, attendee_details: Optional[List[Dict[str, Any]]]) -> None:
        low, high = self.settings.bulk_min_quantity, self.settings.bulk_max_quantity
        if not template.allow_bulk_registrations:
            raise ValidationError("Bulk registrations are not enabled for this event", field="quantity")
        if quantity < low or quantity > high:
            raise ValidationError(f"Quantity must be between {low} and {high}", field="quantity")
        if not attendee_details or len(attendee_details) != quantity:
            raise ValidationError(
                f"Attendee details must be provided for all {quantity} tickets",
                field="attendee_details",
            )
        for index, attendee in enumerate(attendee_details, start=1):
            if not isinstance(attendee, dict) or not attendee.get("name") or not attendee.get("email"):
                raise ValidationError(
                    f"Attendee {index}: name and email are required",
                    field="attendee_details",
                )

    @staticmethod
    def _amount_minor(price: Decimal, quantity: int) -> int:
        total = Decimal(str(price)) * quantity * 100
        return int(total.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    # -------------------------------------------------------------------------
    # Seat accounting
    # -------------------------------------------------------------------------

    def _reserve_seats(self, instance: EventInstance, quantity: int) -> None:
        """
        Atomically add quantity to attendee_count if capacity allows.

        Raises:
            CapacityExceededError: If the conditional update matched no row
        """
        result = self.db.execute(
            update(EventInstance)
            .where(
                EventInstance.id == instance.id,
                EventInstance.is_cancelled.is_(False),
                or_(
                    EventInstance.max_attendees <= 0,
                    EventInstance.attendee_count + quantity <= EventInstance.max_attendees,
                ),
            )
            .values(attendee_count=EventInstance.attendee_count + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            self.db.expire(instance, ["attendee_count"])
            return

        self.db.rollback()
        self.db.refresh(instance)
        logger.info(
            f"Capacity exceeded on {instance.instance_id}",
            extra={"instance_id": instance.instance_id, "requested": quantity,
                   "remaining": instance.remaining}
        )
        raise CapacityExceededError(instance.instance_id, quantity, instance.remaining)

    def _release_seats(self, instance_pk: int, quantity: int) -> None:
        self.db.execute(
            update(EventInstance)
            .where(
                EventInstance.id == instance_pk,
                EventInstance.attendee_count >= quantity,
            )
            .values(attendee_count=EventInstance.attendee_count - quantity)
            .execution_options(synchronize_session=False)
        )

    def _transition(
        self,
        registration: Registration,
        from_statuses,
        to_status: RegistrationStatus,
        now: datetime,
    ) -> bool:
        """
        Move a registration to to_status if it is still in one of from_statuses.

        Releases the registration's seats when leaving a counted state for a
        terminal one. Returns False when another caller got there first.
        """
        # Read before the UPDATE; the row is about to change underneath the object
        was_counted = registration.is_counted
        instance_pk, quantity = registration.instance_pk, registration.quantity

        values: Dict[str, Any] = {"status": to_status}
        release = to_status in (RegistrationStatus.CANCELLED, RegistrationStatus.ABANDONED)
        if release:
            values["is_counted"] = False
            values["cancelled_at"] = now
        elif to_status == RegistrationStatus.REGISTERED:
            values["completed_at"] = now

        result = self.db.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.status.in_(list(from_statuses)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(registration)
            return False

        if release and was_counted:
            self._release_seats(instance_pk, quantity)

        self.db.commit()
        self.db.refresh(registration)
        return True

    # -------------------------------------------------------------------------
    # Payment confirmation
    # -------------------------------------------------------------------------

    async def confirm_payment(self, reference: str, now: Optional[datetime] = None) -> Registration:
        """
        Confirm a payment by reference. Safe to call repeatedly.

        success -> registered; failed -> abandoned (seats released);
        pending -> unchanged. A verified payment on an abandoned
        registration reserves its seats again. Registered and cancelled
        registrations are returned as they are.

        Raises:
            NotFoundError: If no registration carries the reference
            ExternalVerificationError: If the gateway cannot be reached
            CapacityExceededError: If a late payment arrives after its seats
                were taken; the payment needs a refund
            AlreadyRegisteredError: If the user booked the instance again
                before the late payment arrived
        """
        now = now or utc_now()
        registration = (
            self.db.query(Registration)
            .filter(Registration.payment_reference == reference)
            .first()
        )
        if registration is None:
            raise NotFoundError("Registration", reference)

        if registration.status in (RegistrationStatus.REGISTERED, RegistrationStatus.CANCELLED):
            if registration.status == RegistrationStatus.CANCELLED:
                logger.warning(
                    "Payment confirmation for cancelled registration",
                    extra={"registration_guid": registration.guid, "reference": reference}
                )
            return registration

        if self.gateway is None:
            raise ExternalVerificationError("payment_gateway", "No payment gateway configured", reference)

        status = await self.gateway.verify_payment(reference)

        if registration.status == RegistrationStatus.ABANDONED:
            if status == PaymentStatus.SUCCESS:
                self._reinstate(registration, now)
            return registration

        if status == PaymentStatus.SUCCESS:
            if self._transition(registration, [RegistrationStatus.PENDING_PAYMENT],
                                RegistrationStatus.REGISTERED, now):
                logger.info(
                    f"Payment confirmed for {registration.guid}",
                    extra={"registration_guid": registration.guid, "reference": reference}
                )
        elif status == PaymentStatus.FAILED:
            if self._transition(registration, [RegistrationStatus.PENDING_PAYMENT],
                                RegistrationStatus.ABANDONED, now):
                logger.info(
                    f"Payment failed for {registration.guid}, seats released",
                    extra={"registration_guid": registration.guid, "reference": reference}
                )

        return registration

    def _reinstate(self, registration: Registration, now: datetime) -> None:
        """
        Move an abandoned registration whose payment succeeded to registered.

        Seats go through the same conditional reservation as a new booking.
        """
        instance = registration.instance
        existing = self._active_registration(instance, registration.user_id)
        if existing is not None:
            raise AlreadyRegisteredError(instance.instance_id, registration.user_id, existing.guid)

        self._reserve_seats(instance, registration.quantity)

        result = self.db.execute(
            update(Registration)
            .where(
                Registration.id == registration.id,
                Registration.status == RegistrationStatus.ABANDONED,
            )
            .values(
                status=RegistrationStatus.REGISTERED,
                is_counted=True,
                completed_at=now,
                cancelled_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another confirmation reinstated it first
            self.db.rollback()
            self.db.refresh(registration)
            return

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AlreadyRegisteredError(instance.instance_id, registration.user_id)
        self.db.refresh(registration)

        logger.info(
            f"Late payment reinstated {registration.guid}",
            extra={"registration_guid": registration.guid, "quantity": registration.quantity,
                   "reference": registration.payment_reference}
        )

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def get_registration(self, guid: str) -> Registration:
        """
        Get a registration by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or no registration exists
        """
        try:
            uuid_value = Registration.parse_guid(guid)
        except ValueError:
            raise NotFoundError("Registration", guid)

        registration = self.db.query(Registration).filter(Registration.uuid == uuid_value).first()
        if registration is None:
            raise NotFoundError("Registration", guid)
        return registration

    def cancel(self, registration_id: str, user_id: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """
        Cancel a registration and release its seats.

        No-op if the registration is already cancelled or abandoned.

        Raises:
            NotFoundError: If the registration does not exist
            PermissionDeniedError: If user_id is given and does not own it
        """
        registration = self.get_registration(registration_id)
        if user_id is not None and registration.user_id != user_id:
            raise PermissionDeniedError(f"User {user_id} does not own registration {registration_id}")

        if not registration.is_active:
            return

        if self._transition(registration, ACTIVE_REGISTRATION_STATUSES,
                            RegistrationStatus.CANCELLED, now or utc_now()):
            logger.info(
                f"Cancelled registration {registration.guid}",
                extra={"registration_guid": registration.guid, "quantity": registration.quantity}
            )

    def unregister(self, instance_id: str, user_id: str, now: Optional[datetime] = None) -> Registration:
        """
        Cancel the user's active registration on an instance.

        Raises:
            NotFoundError: If the instance or an active registration does not exist
        """
        instance = self.instances.get_instance(instance_id)
        registration = self._active_registration(instance, user_id)
        if registration is None:
            raise NotFoundError("Registration", f"{instance.instance_id}/{user_id}")

        self.cancel(registration.guid, now=now)
        return registration

    def _active_registration(self, instance: EventInstance, user_id: str) -> Optional[Registration]:
        return (
            self.db.query(Registration)
            .filter(
                Registration.instance_pk == instance.id,
                Registration.user_id == user_id,
                Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
            .first()
        )

    # -------------------------------------------------------------------------
    # Abandonment
    # -------------------------------------------------------------------------

    def find_stale_payments(
        self,
        now: Optional[datetime] = None,
        older_than: Optional[timedelta] = None,
    ) -> List[Registration]:
        """List pending_payment registrations initiated before now - older_than."""
        now = now or utc_now()
        older_than = older_than or timedelta(minutes=self.settings.payment_abandon_minutes)
        return (
            self.db.query(Registration)
            .filter(
                Registration.status == RegistrationStatus.PENDING_PAYMENT,
                Registration.initiated_at < now - older_than,
            )
            .order_by(Registration.initiated_at.asc())
            .all()
        )

    def abandon(self, registration: Registration, now: Optional[datetime] = None) -> bool:
        """Mark a pending registration abandoned and release its seats."""
        return self._transition(
            registration,
            [RegistrationStatus.PENDING_PAYMENT],
            RegistrationStatus.ABANDONED,
            now or utc_now(),
        )

    def abandon_stale_payments(
        self,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[Registration]:
        """
        Abandon every unconfirmed payment older than the timeout.

        Returns:
            Registrations that were abandoned by this call
        """
        now = now or utc_now()
        abandoned = []
        for registration in self.find_stale_payments(now, older_than):
            if self.abandon(registration, now):
                abandoned.append(registration)
        if abandoned:
            logger.info(
                f"Abandoned {len(abandoned)} stale payment(s)",
                extra={"registration_guids": [r.guid for r in abandoned]}
            )
        return abandoned
