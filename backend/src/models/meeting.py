"""
Meeting model for legacy booked meetings.

Meetings were written by several client versions, each storing the meeting
time differently: a plain `date` string, a `meeting_when` string or timestamp
object ({"_seconds": n}), or only inside the first booking. The raw values
are kept as-is; occurs_at resolves them through to_instant.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime

from backend.src.models import Base
from backend.src.models.types import JSONBType
from backend.src.utils.instants import to_instant, utc_now


class Meeting(Base):
    """
    Legacy meeting record.

    Attributes:
        id: Primary key
        owner_id: External user id of the card owner
        title: Meeting title
        date: Raw date value (string)
        meeting_when: Raw meeting time (string or timestamp object)
        bookings: List of booking payloads, each possibly carrying meetingWhen
        created_at: Creation timestamp
    """

    __tablename__ = "meetings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    owner_id = Column(String(128), nullable=True, index=True)
    title = Column(String(255), nullable=True)

    date = Column(String(64), nullable=True)
    meeting_when = Column(JSONBType, nullable=True)
    bookings = Column(JSONBType, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    @property
    def occurs_at(self) -> Optional[datetime]:
        """
        Resolve the meeting time as an aware UTC datetime.

        Checks date, then meeting_when, then the first booking's meetingWhen.

        Raises:
            ValueError: If the first present value cannot be parsed
        """
        for raw in (self.date, self.meeting_when, self._first_booking_when()):
            instant = to_instant(raw)
            if instant is not None:
                return instant
        return None

    def _first_booking_when(self):
        if not self.bookings:
            return None
        first = self.bookings[0]
        if isinstance(first, dict):
            return first.get("meetingWhen") or first.get("meeting_when")
        return None

    def __repr__(self) -> str:
        return f"<Meeting(id={self.id}, title='{self.title}')>"
