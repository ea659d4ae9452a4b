"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- Application settings
- Fake payment gateway and identity provider
- Sample data factories (templates, instances, users, meetings)
- FastAPI test client
"""

import os
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['XSCARD_DB_URL'] = 'sqlite:///:memory:'
os.environ['XSCARD_SCHEDULER_AUTOSTART'] = 'false'
os.environ['PAYSTACK_SECRET_KEY'] = ''

from backend.src.config.settings import AppSettings
from backend.src.models import (
    Base,
    EventInstance,
    EventTemplate,
    Meeting,
    SubscriptionStatus,
    User,
    UserPlan,
)
from backend.src.services.exceptions import ExternalVerificationError
from backend.src.services.identity_provider import IdentityProvider
from backend.src.services.payment_gateway import (
    PaymentGateway,
    PaymentInitialization,
    PaymentStatus,
)
from backend.src.services.recurrence import RecurrencePattern


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )


@pytest.fixture(scope='function')
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Application settings with defaults (90 day window, SAST)."""
    return AppSettings()


# ============================================================================
# Fake Collaborators
# ============================================================================

class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    payment_statuses maps reference -> PaymentStatus (default success).
    subscription_statuses maps code -> status string or an exception to raise.
    """

    name = "fake"

    def __init__(self):
        self.initialized = []
        self.verified = []
        self.payment_statuses = {}
        self.subscription_statuses = {}
        self.fail_initialize = False
        self.closed = False
        self._counter = 0

    async def initialize_payment(self, amount, metadata):
        if self.fail_initialize:
            raise ExternalVerificationError(self.name, "gateway unavailable")
        self._counter += 1
        reference = f"ref-{self._counter}"
        self.initialized.append({"amount": amount, "metadata": metadata, "reference": reference})
        return PaymentInitialization(
            payment_url=f"https://checkout.example.com/{reference}",
            reference=reference,
        )

    async def verify_payment(self, reference):
        self.verified.append(reference)
        return self.payment_statuses.get(reference, PaymentStatus.SUCCESS)

    async def verify_subscription(self, subscription_code):
        outcome = self.subscription_statuses.get(subscription_code, "active")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


class FakeIdentityProvider(IdentityProvider):
    """Records deletions; raises for user ids in fail_for."""

    def __init__(self, fail_for=None):
        self.deleted = []
        self.fail_for = set(fail_for or [])

    async def delete_identity(self, user_id):
        if user_id in self.fail_for:
            raise ExternalVerificationError("identity", f"cannot delete {user_id}")
        self.deleted.append(user_id)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def fake_identity_provider():
    return FakeIdentityProvider()


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_pattern_data():
    """Factory for recurrence pattern mappings."""
    def _create(**overrides):
        data = {
            'type': 'weekly',
            'frequency': 1,
            'days_of_week': [1, 3],
            'timezone': 'Africa/Johannesburg',
            'start_date': '2026-03-02',
            'start_time': '10:00',
            'end_date': None,
            'excluded_dates': [],
        }
        data.update(overrides)
        return data
    return _create


@pytest.fixture
def sample_template(test_db_session, sample_pattern_data):
    """Factory for EventTemplate rows (not materialized)."""
    def _create(
        organizer_id='organizer-1',
        title='Morning Yoga',
        ticket_price=Decimal('0'),
        max_attendees=0,
        allow_bulk_registrations=False,
        **pattern_overrides
    ):
        template = EventTemplate(
            organizer_id=organizer_id,
            title=title,
            ticket_price=ticket_price,
            currency='ZAR',
            max_attendees=max_attendees,
            allow_bulk_registrations=allow_bulk_registrations,
        )
        template.apply_pattern(RecurrencePattern.from_dict(sample_pattern_data(**pattern_overrides)))
        test_db_session.add(template)
        test_db_session.commit()
        test_db_session.refresh(template)
        return template
    return _create


@pytest.fixture
def sample_instance(test_db_session, sample_template):
    """Factory for a single EventInstance on a fresh or given template."""
    def _create(
        template=None,
        event_date=datetime(2026, 3, 4, 8, 0),
        max_attendees=10,
        attendee_count=0,
        is_cancelled=False,
        **template_kwargs
    ):
        if template is None:
            template_kwargs.setdefault('max_attendees', max_attendees)
            template = sample_template(**template_kwargs)
        local_date = event_date.date()
        instance = EventInstance(
            template_id=template.id,
            instance_id=f"{template.guid}_{local_date.isoformat()}",
            event_date=event_date,
            local_date=local_date,
            local_time_formatted='10:00 AM',
            timezone='Africa/Johannesburg',
            timezone_abbr='SAST',
            day_of_week=local_date.strftime('%A'),
            max_attendees=max_attendees,
            attendee_count=attendee_count,
            is_cancelled=is_cancelled,
        )
        test_db_session.add(instance)
        test_db_session.commit()
        test_db_session.refresh(instance)
        return instance
    return _create


@pytest.fixture
def sample_user(test_db_session):
    """Factory for User rows."""
    def _create(
        user_id='user-1',
        email=None,
        plan=UserPlan.PREMIUM,
        subscription_status=SubscriptionStatus.TRIAL,
        subscription_code='SUB_1',
        trial_end_date=datetime(2026, 3, 1, 0, 0),
        active=True,
        inactive_since=None,
        **kwargs
    ):
        user = User(
            user_id=user_id,
            email=email or f'{user_id}@example.com',
            name=user_id.title(),
            plan=plan,
            subscription_status=subscription_status,
            subscription_code=subscription_code,
            trial_end_date=trial_end_date,
            active=active,
            inactive_since=inactive_since,
            **kwargs
        )
        test_db_session.add(user)
        test_db_session.commit()
        test_db_session.refresh(user)
        return user
    return _create


@pytest.fixture
def sample_meeting(test_db_session):
    """Factory for Meeting rows with any date shape."""
    def _create(owner_id='user-1', title='Coffee', date=None, meeting_when=None, bookings=None):
        meeting = Meeting(
            owner_id=owner_id,
            title=title,
            date=date,
            meeting_when=meeting_when,
            bookings=bookings,
        )
        test_db_session.add(meeting)
        test_db_session.commit()
        test_db_session.refresh(meeting)
        return meeting
    return _create


# ============================================================================
# FastAPI Test Client Fixture
# ============================================================================

@pytest.fixture
def test_client(test_db_session, test_settings, fake_gateway):
    """Create a test client for FastAPI application."""
    from fastapi.testclient import TestClient
    from backend.src.main import app

    # Override dependencies
    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    from backend.src.api.dependencies import get_app_settings, get_payment_gateway
    from backend.src.db.database import get_db

    app.dependency_overrides[get_db] = get_test_db
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    with TestClient(app) as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Headers identifying the caller as the default organizer."""
    def _headers(user_id='organizer-1'):
        return {'X-User-Id': user_id}
    return _headers


@pytest.fixture
def upcoming_pattern():
    """Daily 10:00 UTC pattern covering the next seven days (relative to today)."""
    def _create(days=7, **overrides):
        start = datetime.now(timezone.utc).date() + timedelta(days=1)
        data = {
            'type': 'daily',
            'timezone': 'UTC',
            'start_date': start.isoformat(),
            'start_time': '10:00',
            'end_date': (start + timedelta(days=days - 1)).isoformat(),
        }
        data.update(overrides)
        return data
    return _create


@pytest.fixture
def create_event(test_client, auth_headers, upcoming_pattern):
    """Create a recurring event through the API and return the response body."""
    def _create(organizer_id='organizer-1', pattern=None, **fields):
        payload = {
            'title': 'Morning Yoga',
            'max_attendees': 10,
            'recurrence_pattern': pattern or upcoming_pattern(),
        }
        payload.update(fields)
        response = test_client.post('/api/events', json=payload, headers=auth_headers(organizer_id))
        assert response.status_code == 201, response.text
        return response.json()
    return _create
