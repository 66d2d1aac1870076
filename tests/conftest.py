from __future__ import annotations

import os

# Required settings must exist before config.py is imported
os.environ.setdefault("SESSION_SECRET_KEY", "test-session-secret")
os.environ.setdefault("SWEEP_API_KEY", "test-sweep-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AWS_REGION", "us-east-1")

from dataclasses import dataclass, field  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

import records  # noqa: E402,F401
from database import get_db  # noqa: E402
from main import app  # noqa: E402
from services.email_service import EmailDeliveryError, get_email_sender  # noqa: E402


@dataclass
class FakeEmailSender:
    sent: list[tuple[str, str]] = field(default_factory=list)
    fail_with: str | None = None

    def send_verification_email(self, email: str, otp: str) -> str | None:
        if self.fail_with:
            raise EmailDeliveryError(email, self.fail_with)
        self.sent.append((email, otp))
        return f"message-{len(self.sent)}"

    def last_code(self, email: str) -> str:
        return next(otp for to, otp in reversed(self.sent) if to == email)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def client(engine, email_sender):
    def _get_db():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    # Not entered as a context manager, so the startup sweeps never run
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sign_in(client, email_sender):
    """Run the full OTP flow for an email and return the verify response body."""

    def _sign_in(email: str) -> dict:
        resp = client.post("/api/send-otp", json={"email": email})
        assert resp.status_code == 200, resp.text
        otp = email_sender.last_code(email)
        resp = client.post("/api/verify-otp", json={"email": email, "otp": otp})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _sign_in
