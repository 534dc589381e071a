"""Shared test fixtures for the event pass test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off,
  direct notification transport)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin + gate staff users, a member, an event and a paid
  registration
- login: helper fixture that logs a user in through /auth/login
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from app.extensions import db as _db
from app.models.event import Event
from app.models.member import Member
from app.models.registration import Registration
from app.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, a member, an event and one paid registration.

    Returns a dict of plain ids (plus a few objects) for easy access.
    """
    admin = User(
        email="admin@mandapam.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Admin User",
        role="admin",
    )
    staff = User(
        email="gate@mandapam.local",
        password_hash=generate_password_hash("gate1234"),
        full_name="Gate Staff",
        role="staff",
    )
    _db.session.add_all([admin, staff])

    member = Member(
        name="Ramesh Patil",
        business_name="Patil Mandap Decorators",
        phone="9876543210",
        city="Kolhapur",
        profile_image="https://cdn.example.com/photos/ramesh.jpg",
    )
    other_member = Member(
        name="Suresh Jadhav",
        business_name="Jadhav Caterers",
        phone="9123456780",
        city="Sangli",
    )
    _db.session.add_all([member, other_member])

    event = Event(
        title="MANDAPAM 2026",
        venue="Exhibition Grounds",
        city="Kolhapur",
        registration_fee=Decimal("500.00"),
    )
    _db.session.add(event)
    _db.session.flush()

    registration = Registration(
        event_id=event.id,
        member_id=member.id,
        status="registered",
        payment_status="paid",
        amount_paid=Decimal("500.00"),
        registered_at=datetime(2026, 1, 10, 9, 30, tzinfo=timezone.utc),
    )
    _db.session.add(registration)
    _db.session.commit()

    # Store plain IDs so tests can use them even when objects
    # are expired by a commit inside the code under test.
    return {
        "admin": admin,
        "admin_id": admin.id,
        "staff_id": staff.id,
        "member": member,
        "member_id": member.id,
        "other_member_id": other_member.id,
        "event": event,
        "event_id": event.id,
        "registration": registration,
        "registration_id": registration.id,
    }


@pytest.fixture
def login(client):
    """Return a function that logs in via the JSON auth endpoint."""

    def _login(email="admin@mandapam.local", password="admin123"):
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login
