import pytest
from datetime import datetime, timezone
from typing import Dict, Generator, List
from unittest.mock import Mock

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import Base, Person, BIRTHDAY_REMINDER_PARTITION
from app.services.idempotency_gate import IdempotencyGate
from app.services.notification_service import NotificationResult
from app.services.person_service import PersonService


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed scan clock used across the suite
REFERENCE_INSTANT = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_engine():
    """Create a fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)
    session = session_maker()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def person_service(db_session: Session) -> PersonService:
    return PersonService(db_session)


class FakeRedis:
    """Dict-backed stand-in for the two Redis commands the gate uses."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = str(value)
        self.ttls[key] = ex
        return True

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def idempotency_gate(fake_redis: FakeRedis) -> IdempotencyGate:
    return IdempotencyGate(client=fake_redis, ttl_seconds=86400, key_prefix="notification")


class RecordingNotificationService:
    """Notification sink double that records messages and returns a scripted result."""

    def __init__(self, result: NotificationResult = None):
        self.result = result or NotificationResult(success=True, status_code=200)
        self.messages: List[str] = []

    async def send_notification(self, message: str) -> NotificationResult:
        self.messages.append(message)
        return self.result


@pytest.fixture
def notification_service() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture
def failing_notification_service() -> RecordingNotificationService:
    return RecordingNotificationService(
        NotificationResult(success=False, status_code=500, error="HTTP 500")
    )


@pytest.fixture
def mock_celery_task():
    """Mock Celery task for testing retry behavior."""
    mock_task = Mock()
    mock_task.request.id = "test_request_id"
    mock_task.request.retries = 0
    mock_task.max_retries = 3
    mock_task.retry = Mock(side_effect=Exception("Retry called"))
    return mock_task


@pytest.fixture
def log_records():
    """Capture loguru records emitted during a test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


# Test data factories
@pytest.fixture
def make_person(db_session: Session):
    """Insert a person row directly, bypassing occurrence computation."""

    def _make_person(
        next_birthday_utc: datetime,
        last_notification_year: int = 0,
        first_name: str = "John",
        last_name: str = "Doe",
        birthday: str = "1990-06-15",
        city: str = "New York",
        state: str = "New York",
        country: str = "USA",
    ) -> Person:
        person = Person(
            first_name=first_name,
            last_name=last_name,
            birthday=birthday,
            city=city,
            state=state,
            country=country,
            reminder_partition=BIRTHDAY_REMINDER_PARTITION,
            next_birthday_utc=next_birthday_utc.astimezone(timezone.utc).replace(tzinfo=None),
            last_notification_year=last_notification_year,
        )
        db_session.add(person)
        db_session.commit()
        db_session.refresh(person)
        return person

    return _make_person
