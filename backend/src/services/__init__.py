"""
Service layer for business logic.

This module exports all service classes for use in API endpoints and jobs.
"""

from backend.src.services.exceptions import (
    ServiceError,
    NotFoundError,
    ConflictError,
    ValidationError,
    PermissionDeniedError,
    InvalidPatternError,
    CapacityExceededError,
    AlreadyRegisteredError,
    SeriesEditConflictError,
    StaleMaterializationError,
    ExternalVerificationError,
)
from backend.src.services.instance_service import InstanceService, MaterializationResult
from backend.src.services.event_service import EventService
from backend.src.services.registration_service import RegistrationService, RegistrationResult
from backend.src.services.payment_gateway import (
    PaymentGateway,
    PaystackGateway,
    PaymentStatus,
    PaymentInitialization,
)
from backend.src.services.identity_provider import IdentityProvider, NoopIdentityProvider

__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PermissionDeniedError",
    "InvalidPatternError",
    "CapacityExceededError",
    "AlreadyRegisteredError",
    "SeriesEditConflictError",
    "StaleMaterializationError",
    "ExternalVerificationError",
    "InstanceService",
    "MaterializationResult",
    "EventService",
    "RegistrationService",
    "RegistrationResult",
    "PaymentGateway",
    "PaystackGateway",
    "PaymentStatus",
    "PaymentInitialization",
    "IdentityProvider",
    "NoopIdentityProvider",
]
