"""Shared test fixtures for the marketplace core test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: customer, professionals, profile, bookings in each state,
  a pending background check
- login: helper that puts a user id into the Flask-Login session
"""

from datetime import datetime, timedelta, timezone

import pytest
from flask import g
from werkzeug.security import generate_password_hash

from marketplace_core import create_app
from marketplace_core.extensions import db as _db
from marketplace_core.models.background_check import BackgroundCheck
from marketplace_core.models.booking import Booking
from marketplace_core.models.professional import ProfessionalProfile
from marketplace_core.models.user import User

# Bogotá, Parque de la 93
SERVICE_LAT = 4.6767
SERVICE_LNG = -74.0483


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
def login(client):
    """Return a function that logs the given user id in on the test client."""

    def _login(user_id):
        with client.session_transaction() as sess:
            sess["_user_id"] = user_id
            sess["_fresh"] = True
        # Requests reuse the test's app context, so drop any cached user.
        g.pop("_login_user", None)

    return _login


def _user(email, full_name, role):
    user = User(
        email=email,
        password_hash=generate_password_hash("password123"),
        full_name=full_name,
        role=role,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


@pytest.fixture
def seed_data(app, db_session):
    """Seed users, a professional profile, bookings and a background check.

    Returns a dict of plain ids so tests can reload objects freely.
    """
    customer = _user("customer@test.com", "Carla Customer", "customer")
    pro = _user("pro@test.com", "Pedro Pro", "professional")
    other_pro = _user("other@test.com", "Olga Other", "professional")

    profile = ProfessionalProfile(
        user_id=pro.id,
        onboarding_status="application_in_review",
        documents_verified=True,
        interview_completed=True,
    )
    _db.session.add(profile)

    address = {
        "formatted": "Calle 93 #11-26, Bogotá",
        "latitude": SERVICE_LAT,
        "longitude": SERVICE_LNG,
    }
    now = datetime.now(timezone.utc)

    # --- In progress: checked in an hour ago, ready to check out ---
    in_progress = Booking(
        customer_id=customer.id,
        professional_id=pro.id,
        service_name="Deep cleaning",
        status="in_progress",
        scheduled_start=now - timedelta(minutes=65),
        duration_minutes=60,
        checked_in_at=now - timedelta(minutes=60),
        address=address,
        amount_authorized=50000,
        time_extension_amount=5000,
        currency="cop",
        payment_intent_id="pi_test",
        payment_status="requires_capture",
    )

    confirmed = Booking(
        customer_id=customer.id,
        professional_id=pro.id,
        service_name="Ironing",
        status="confirmed",
        scheduled_start=now + timedelta(hours=2),
        duration_minutes=120,
        address=address,
        amount_authorized=40000,
        currency="cop",
        payment_intent_id="pi_confirmed",
        payment_status="requires_capture",
    )

    pending = Booking(
        customer_id=customer.id,
        professional_id=pro.id,
        service_name="Laundry",
        status="pending",
        scheduled_start=now + timedelta(days=1),
        duration_minutes=90,
        address=address,
        amount_authorized=30000,
        currency="cop",
        payment_intent_id="pi_pending",
        payment_status="requires_capture",
    )
    _db.session.add_all([in_progress, confirmed, pending])

    check = BackgroundCheck(
        professional_id=pro.id,
        provider="checkr",
        provider_check_id="rpt_123",
        status="pending",
    )
    _db.session.add(check)
    _db.session.commit()

    return {
        "customer_id": customer.id,
        "pro_id": pro.id,
        "other_pro_id": other_pro.id,
        "profile_id": profile.id,
        "in_progress_id": in_progress.id,
        "confirmed_id": confirmed.id,
        "pending_id": pending.id,
        "check_id": check.id,
        "provider_check_id": check.provider_check_id,
    }
