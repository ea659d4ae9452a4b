"""
Custom SQLAlchemy types for cross-database compatibility.

Registrations, archives and legacy meeting records keep free-form JSON
(attendee lists, user snapshots, booking payloads). Production stores these
as JSONB; the test suite runs on SQLite.
"""

from sqlalchemy import TypeDecorator, JSON
from sqlalchemy.dialects.postgresql import JSONB


class JSONBType(TypeDecorator):
    """
    JSON column stored as JSONB on PostgreSQL and plain JSON elsewhere.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())
