import os

import pytest

# Must be set before the application modules are imported
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test.db"

from fastapi.testclient import TestClient

from medbook.main import app
from medbook.core.database import Base, SessionLocal, engine, get_redis
from medbook.core.security import UserRole
from medbook.models.user import User
from medbook.services.notifications import Notifier, get_notifier


class RecordingNotifier(Notifier):
    """Keeps sent messages in memory; raises instead when ``fail`` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.confirmations = []
        self.registrations = []

    def send_appointment_confirmation(self, notice):
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.confirmations.append(notice)

    def send_registration_confirmation(self, email, name):
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.registrations.append((email, name))


# Test data
test_user_data = {
    "name": "Test User",
    "email": "test@example.com",
    "mobile": "9876543210",
    "password": "Secret#123"
}

test_login_data = {
    "email": "test@example.com",
    "password": "Secret#123"
}

booking_data = {
    "type": "General Checkup",
    "date": "2026-11-02",
    "time": "10:00 AM",
    "reason": "Annual checkup",
    "name": "Test User",
    "mobile": "9876543210"
}


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    get_redis().flushdb()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(test_db):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(test_db, notifier):
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client, **overrides) -> dict:
    """Register a user and return the response body."""
    payload = {**test_user_data, **overrides}
    response = client.post("/api/v1/auth/register", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(client):
    body = register(client)
    # Drop the auth cookie so only the explicit header authenticates
    client.cookies.clear()
    return auth_headers(body["token"])


@pytest.fixture
def admin_headers(client):
    body = register(
        client, name="Clinic Admin", email="admin@example.com", mobile="9000000000"
    )
    client.cookies.clear()

    db = SessionLocal()
    try:
        admin = db.query(User).filter(User.id == body["user"]["id"]).first()
        admin.role = UserRole.ADMIN
        db.commit()
    finally:
        db.close()

    return auth_headers(body["token"])
