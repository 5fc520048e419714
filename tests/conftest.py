"""Shared test fixtures for the SalesTrack test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off, audit inline)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: users for every role, one prospect and one activity with a
  next action due 2025-06-10 09:00 IST
- make_activity: factory for extra activities owned by the associate
"""

from datetime import datetime, timezone

import pytest
from werkzeug.security import generate_password_hash

from salestrack import create_app
from salestrack.extensions import db as _db
from salestrack.models.activity import Activity
from salestrack.models.prospect import Prospect
from salestrack.models.user import User

# 2025-06-09 10:00 IST: "tomorrow" is 2025-06-10 in Asia/Kolkata.
TODAY_NOW = datetime(2025, 6, 9, 4, 30, tzinfo=timezone.utc)
# 2025-06-10 09:00 IST
TOMORROW_9AM = datetime(2025, 6, 10, 3, 30, tzinfo=timezone.utc)


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
    """Seed users, a prospect and an activity with a pending next action.

    Returns a dict with all created objects for easy access in tests.
    """
    # --- Users ---
    sys_admin = User(
        email="sys@salestrack.local",
        password_hash=generate_password_hash("sys123"),
        name="Sys Admin",
        role="SYS_ADMIN",
    )
    admin = User(
        email="admin@salestrack.local",
        password_hash=generate_password_hash("admin123"),
        name="Admin User",
        phone="+919800000009",
        role="ADMIN",
    )
    associate = User(
        email="rep@salestrack.local",
        password_hash=generate_password_hash("rep123"),
        name="Asha Rep",
        phone="+919800000001",
        role="ASSOCIATE",
    )
    other = User(
        email="other@salestrack.local",
        password_hash=generate_password_hash("other123"),
        name="Other Rep",
        phone="+919800000002",
        role="ASSOCIATE",
    )
    _db.session.add_all([sys_admin, admin, associate, other])
    _db.session.flush()

    # --- Prospect ---
    prospect = Prospect(
        name="Dr. Mehta Clinic",
        phone="+912200000000",
        user_id=associate.id,
    )
    _db.session.add(prospect)
    _db.session.flush()

    # --- Activity with a next action due tomorrow ---
    activity = Activity(
        user_id=associate.id,
        prospect_id=prospect.id,
        type="CALL",
        subject="Intro call",
        next_action_type="CALL_PROSPECT",
        next_action_details="Follow-up call",
        next_action_date=TOMORROW_9AM,
        next_action_status="PENDING",
        next_action_reminder_sent=False,
    )
    _db.session.add(activity)
    _db.session.commit()

    return {
        "sys_admin": sys_admin,
        "sys_admin_id": sys_admin.id,
        "admin": admin,
        "admin_id": admin.id,
        "associate": associate,
        "associate_id": associate.id,
        "other": other,
        "other_id": other.id,
        "prospect": prospect,
        "prospect_id": prospect.id,
        "activity": activity,
        "activity_id": activity.id,
    }


@pytest.fixture
def make_activity(seed_data):
    """Factory: create and commit an activity owned by the associate."""

    def _make(**overrides):
        values = {
            "user_id": seed_data["associate_id"],
            "prospect_id": seed_data["prospect_id"],
            "type": "VISIT",
            "subject": "Clinic visit",
            "next_action_type": "SEND_SAMPLES",
            "next_action_details": None,
            "next_action_date": TOMORROW_9AM,
            "next_action_status": "PENDING",
            "next_action_reminder_sent": False,
        }
        values.update(overrides)
        activity = Activity(**values)
        _db.session.add(activity)
        _db.session.commit()
        return activity

    return _make


def login(client, email, password):
    """Log in through the JSON endpoint."""
    return client.post("/auth/login", json={"email": email, "password": password})


def login_associate(client):
    return login(client, "rep@salestrack.local", "rep123")


def login_admin(client):
    return login(client, "admin@salestrack.local", "admin123")


def reload(model, obj_id):
    """Fresh copy from the database, bypassing the identity map."""
    _db.session.expire_all()
    return _db.session.get(model, obj_id)
