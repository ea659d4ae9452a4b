"""
Custom exceptions for service layer.

Provides specific exception types for business logic errors
that can be translated to appropriate HTTP responses.
"""

from typing import Any, List, Optional


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: Any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class ConflictError(ServiceError):
    """Raised when an operation conflicts with existing state."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ServiceError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class PermissionDeniedError(ServiceError):
    """Raised when a user acts on a resource they do not own."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidPatternError(ValidationError):
    """Raised when a recurrence pattern is malformed.

    Carries every problem found so callers can report them together.
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid recurrence pattern: " + "; ".join(self.errors), field="recurrence_pattern")


class CapacityExceededError(ConflictError):
    """Raised when a registration would exceed the instance capacity."""

    def __init__(self, instance_id: str, requested: int, remaining: Optional[int] = None):
        self.instance_id = instance_id
        self.requested = requested
        self.remaining = remaining
        if remaining is None:
            message = f"Instance {instance_id} cannot accept {requested} more attendee(s)"
        else:
            message = (
                f"Instance {instance_id} cannot accept {requested} more attendee(s); "
                f"{remaining} seat(s) remaining"
            )
        super().__init__(message)


class AlreadyRegisteredError(ConflictError):
    """Raised when a user already holds an active registration for an instance."""

    def __init__(self, instance_id: str, user_id: str, registration_guid: Optional[str] = None):
        self.instance_id = instance_id
        self.user_id = user_id
        self.registration_guid = registration_guid
        super().__init__(f"User {user_id} is already registered for instance {instance_id}")


class SeriesEditConflictError(ConflictError):
    """Raised when a pattern edit would drop future instances that hold registrations.

    The organizer must either keep those dates or confirm their cancellation.
    """

    def __init__(self, template_guid: str, instance_ids: List[str]):
        self.template_guid = template_guid
        self.instance_ids = list(instance_ids)
        super().__init__(
            f"Editing series {template_guid} would remove {len(self.instance_ids)} "
            f"instance(s) with registrations: {', '.join(self.instance_ids)}"
        )


class StaleMaterializationError(ServiceError):
    """Raised internally when an instance upsert collides with a concurrent run.

    Never surfaced to end users; the next scheduled run reconciles.
    """

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance {instance_id} was materialized concurrently")


class ExternalVerificationError(ServiceError):
    """Raised when a payment gateway or identity provider call fails."""

    def __init__(self, provider: str, message: str, reference: Optional[str] = None):
        self.provider = provider
        self.reference = reference
        self.message = message
        super().__init__(f"{provider}: {message}")
