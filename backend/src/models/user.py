"""
User model for subscription and account lifecycle tracking.

Only the parts of the user record the background jobs reconcile live here:
the subscription state (trial, active, cancelled) and the account lifecycle
(active, flagged inactive, archived). Authentication happens upstream; the
user_id column holds the identity provider's id.

Lifecycle:
- Subscription: trial -> active | cancelled (cancelled also downgrades plan to free)
- Account: active -> inactive (flag + inactive_since) -> archived (row moved
  to archived_users) -> optionally restored
"""

import enum
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum

from backend.src.models import Base
from backend.src.models.mixins import GuidMixin
from backend.src.utils.instants import utc_now


class SubscriptionStatus(str, enum.Enum):
    """
    Subscription status.

    State transitions:
    - trial -> active (gateway reports the subscription active)
    - trial -> cancelled (anything else; plan downgraded to free)
    """
    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"


class UserPlan(str, enum.Enum):
    """Billing plan."""
    FREE = "free"
    PREMIUM = "premium"


class User(Base, GuidMixin):
    """
    User record.

    Attributes:
        id: Primary key (internal, never exposed)
        guid: GUID string property (usr_xxx, inherited from GuidMixin)
        user_id: External identity provider id (unique)
        email: Contact email
        name: Display name
        plan: Billing plan
        subscription_status: Subscription state
        subscription_code: Gateway subscription code, verified on trial expiry
        trial_end_date: When the trial ends
        first_billing_date: First charge date once active
        cancellation_date: When the subscription was cancelled
        active: False once the account is flagged inactive
        inactive_since: When the account was flagged inactive
        last_login_at: Last sign-in
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    __tablename__ = "users"

    GUID_PREFIX = "usr"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(String(128), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)

    plan = Column(
        Enum(UserPlan, name="user_plan", native_enum=False,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserPlan.FREE,
    )
    subscription_status = Column(
        Enum(SubscriptionStatus, name="subscription_status", native_enum=False,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubscriptionStatus.NONE,
        index=True,
    )
    subscription_code = Column(String(100), nullable=True)
    trial_end_date = Column(DateTime, nullable=True, index=True)
    first_billing_date = Column(DateTime, nullable=True)
    cancellation_date = Column(DateTime, nullable=True)

    active = Column(Boolean, nullable=False, default=True, index=True)
    inactive_since = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    # Columns carried in archive snapshots and restored from them
    SNAPSHOT_FIELDS = (
        "user_id", "email", "name", "plan", "subscription_status",
        "subscription_code", "trial_end_date", "first_billing_date",
        "cancellation_date", "active", "inactive_since", "last_login_at",
        "created_at",
    )

    def to_snapshot(self) -> Dict[str, Any]:
        """Serialize the row to a JSON-friendly mapping for archival."""
        snapshot: Dict[str, Any] = {}
        for name in self.SNAPSHOT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, enum.Enum):
                value = value.value
            elif hasattr(value, "isoformat"):
                value = value.isoformat()
            snapshot[name] = value
        snapshot["guid"] = self.guid
        return snapshot

    def __repr__(self) -> str:
        return (
            f"<User("
            f"id={self.id}, "
            f"user_id='{self.user_id}', "
            f"subscription_status={self.subscription_status}"
            f")>"
        )
