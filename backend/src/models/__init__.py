"""
SQLAlchemy models for the XSCard events backend.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# All models inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata

# Recurring events
from backend.src.models.event_template import EventTemplate, PatternType
from backend.src.models.event_instance import EventInstance, InstanceStatus
from backend.src.models.registration import (
    Registration,
    RegistrationStatus,
    ACTIVE_REGISTRATION_STATUSES,
)

# Account lifecycle
from backend.src.models.user import User, SubscriptionStatus, UserPlan
from backend.src.models.archived_user import ArchivedUser, ARCHIVE_VERSION

# Legacy meetings
from backend.src.models.meeting import Meeting

__all__ = [
    "Base",
    "EventTemplate",
    "PatternType",
    "EventInstance",
    "InstanceStatus",
    "Registration",
    "RegistrationStatus",
    "ACTIVE_REGISTRATION_STATUSES",
    "User",
    "SubscriptionStatus",
    "UserPlan",
    "ArchivedUser",
    "ARCHIVE_VERSION",
    "Meeting",
]
