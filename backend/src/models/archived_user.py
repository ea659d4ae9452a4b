"""
ArchivedUser model: append-only copies of archived user records.

The inactive user job writes and commits an archive row before the live
users row is deleted, so a failure between the two steps can never lose
data. Restoring re-creates the live row from the snapshot and stamps
restored_at; the archive row itself is kept.
"""

from sqlalchemy import Column, Integer, String, DateTime

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.models.types import JSONBType
from backend.src.utils.instants import utc_now


ARCHIVE_VERSION = "1.0"


class ArchivedUser(Base, GuidMixin):
    """
    Archived user snapshot.

    Attributes:
        id: Primary key (internal, never exposed)
        guid: GUID string property (arc_xxx, inherited from GuidMixin)
        original_user_id: user_id of the archived account
        snapshot: Full JSON copy of the live row
        archived_at: When the archive was written
        archived_by: Actor ("system" for the scheduled job)
        archive_reason: Why the account was archived
        archive_version: Snapshot format version
        auth_deleted: Whether the external identity was deleted
        auth_deletion_error: Error reported by the identity provider, if any
        restored_at: When the account was restored, if ever
    """

    __tablename__ = "archived_users"

    GUID_PREFIX = "arc"

    id = Column(Integer, primary_key=True, autoincrement=True)

    original_user_id = Column(String(128), nullable=False, index=True)
    snapshot = Column(JSONBType, nullable=False)

    archived_at = Column(DateTime, default=utc_now, nullable=False)
    archived_by = Column(String(64), nullable=False, default="system")
    archive_reason = Column(String(64), nullable=False, default="inactive_user")
    archive_version = Column(String(16), nullable=False, default=ARCHIVE_VERSION)

    auth_deleted = Column(String(16), nullable=False, default="skipped")
    auth_deletion_error = Column(String(500), nullable=True)

    restored_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ArchivedUser("
            f"id={self.id}, "
            f"original_user_id='{self.original_user_id}', "
            f"archived_at={self.archived_at}"
            f")>"
        )
