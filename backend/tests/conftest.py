"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import secrets
import sys
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PAYPAL_CLIENT_ID", "paypal-client-id")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "paypal-client-secret")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from eventpay.core.config import settings
from eventpay.db import redis as redis_module
from eventpay.db.session import get_db
from eventpay.db.store import SqlAlchemyPaymentStore
from eventpay.main import app
from eventpay.models import Base, Event, Operation, OperationType, Payment, PaymentStatus, User


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def store(db_session: Session) -> SqlAlchemyPaymentStore:
    return SqlAlchemyPaymentStore(db_session)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Replace the lazily created Redis client with fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Disable OpenTelemetry and table creation on the app engine
        with patch("eventpay.main.initialize_otel", return_value=False), \
                patch("eventpay.main.instrument_sqlalchemy"), \
                patch("eventpay.main.init_db"):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    user = User(email="buyer@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def other_user(db_session: Session) -> User:
    user = User(email="someone-else@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def organizer(db_session: Session) -> User:
    user = User(email="organizer@example.com", commission_rate=Decimal("7.50"))
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def admin_user(db_session: Session) -> User:
    user = User(email="admin@example.com", is_admin=True)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def make_event(db_session: Session, organizer=None, capacity=10, available_places=None,
               starts_in=timedelta(days=7), base_price="25.00", name="Jazz Night") -> Event:
    """Create an event starting ``starts_in`` from now"""
    start = datetime.now(timezone.utc) + starts_in
    event = Event(
        name=name,
        description="An evening of live jazz",
        start_date=start,
        end_date=start + timedelta(hours=3),
        base_price=Decimal(base_price),
        capacity=capacity,
        available_places=capacity if available_places is None else available_places,
        organizer_id=organizer.id if organizer else None,
    )
    db_session.add(event)
    db_session.commit()
    db_session.refresh(event)
    return event


@pytest.fixture(scope="function")
def test_event(db_session: Session, organizer: User) -> Event:
    return make_event(db_session, organizer)


def make_reservation(db_session: Session, user: User, event: Event, quantity=2,
                     status=PaymentStatus.PENDING.value, provider="stripe", reference=None) -> Operation:
    """Create a payment + reservation pair directly in the database"""
    payment = Payment(
        user_id=user.id,
        total=Decimal(event.base_price) * quantity,
        status=status,
        provider=provider,
        provider_reference=reference or f"ref_{secrets.token_hex(6)}",
    )
    db_session.add(payment)
    db_session.flush()
    operation = Operation(
        user_id=user.id,
        event_id=event.id,
        payment_id=payment.id,
        quantity=quantity,
        type=OperationType.RESERVATION.value,
    )
    db_session.add(operation)
    db_session.commit()
    db_session.refresh(operation)
    return operation


def login(client: TestClient, mock_redis, user: User) -> TestClient:
    """Give ``client`` an authenticated session for ``user``, its CSRF token and an allowed Origin"""
    session_id = secrets.token_urlsafe(32)
    csrf_token = secrets.token_urlsafe(32)
    mock_redis.setex(f"session:{session_id}", 2592000, str(user.id))
    mock_redis.setex(f"csrf:{session_id}", 2592000, csrf_token)

    client.cookies.set("session_id", session_id)
    client.headers.update({"X-CSRF-Token": csrf_token, "Origin": settings.FRONTEND_URL})
    return client


@pytest.fixture(scope="function")
def authenticated_client(client: TestClient, test_user: User, mock_redis) -> TestClient:
    """Client with an authenticated session, CSRF token and allowed Origin"""
    return login(client, mock_redis, test_user)


@pytest.fixture(scope="function")
def mock_stripe_checkout():
    """Mock Stripe Checkout session creation and expiry"""
    session = Mock(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")
    with patch("stripe.checkout.Session.create", return_value=session) as create, \
            patch("stripe.checkout.Session.expire", return_value=Mock(status="expired")) as expire:
        yield Mock(create=create, expire=expire, session=session)


def stripe_signature(payload: str, secret: str = None, timestamp: int = None) -> str:
    """Build a valid Stripe-Signature header for ``payload``"""
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, session_id: str, event_id: str = None, **session_fields) -> str:
    """Serialized Stripe event with a checkout session object"""
    session = {"id": session_id, "object": "checkout.session"}
    session.update(session_fields)
    return json.dumps({
        "id": event_id or f"evt_{secrets.token_hex(8)}",
        "object": "event",
        "type": event_type,
        "data": {"object": session},
    })
