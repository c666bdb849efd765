"""Shared pytest fixtures: in-memory SQLite app, captured outbound messages, user factories."""

from __future__ import annotations

import os
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

# Must be set before chillconnect.config is first imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BOOKING_EXPIRY_JOB_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["PAYPAL_CLIENT_ID"] = ""

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from chillconnect.database import Base, SessionLocal, engine  # noqa: E402
from chillconnect.main import app  # noqa: E402
from chillconnect.models.user import User, UserProfile, UserRole  # noqa: E402
from chillconnect.models.wallet import TransactionType  # noqa: E402
from chillconnect.services import ledger, notifications  # noqa: E402
from chillconnect.services.auth import create_access_token, get_password_hash  # noqa: E402

PASSWORD = "Password123!"


@pytest.fixture()
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db) -> TestClient:
    return TestClient(app)


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> dict:
    """Capture email and SMS instead of calling Mailgun/Twilio."""
    sent = {"email": [], "sms": []}

    def _send_email(to_email, subject, html_content, text_content=None):
        sent["email"].append({"to": to_email, "subject": subject, "html": html_content, "text": text_content})
        return True

    def _send_sms(to_phone, body):
        sent["sms"].append({"to": to_phone, "body": body})
        return True

    monkeypatch.setattr(notifications, "send_email", _send_email)
    monkeypatch.setattr(notifications, "send_sms", _send_sms)
    return sent


@pytest.fixture()
def make_user(db):
    """Create a ready-to-use account: user, profile, wallet and optional starting balance."""
    counter = {"n": 0}

    def _make(
        role: UserRole = UserRole.SEEKER,
        email: str | None = None,
        *,
        verified: bool = True,
        balance: int = 0,
        hourly_rate: int | None = None,
        location: str | None = None,
        services: list[str] | None = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value.lower()}{counter['n']}@example.com",
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            is_verified=verified,
            email_verified=verified,
            age_verified=True,
            consent_given=True,
        )
        db.add(user)
        db.flush()
        db.add(UserProfile(
            user_id=user.id,
            first_name=role.value.title(),
            last_name=str(counter["n"]),
            date_of_birth=date(1990, 1, 1),
            hourly_rate=hourly_rate,
            location=location,
            services=services,
            rating_breakdown={str(i): 0 for i in range(1, 6)},
        ))
        ledger.create_wallet(db, user.id)
        if balance:
            ledger.credit(db, user.id, balance, TransactionType.ADJUSTMENT, "Test funds")
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}


def future(hours: int = 24) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()
