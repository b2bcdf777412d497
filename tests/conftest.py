import uuid
from datetime import timedelta
from typing import Generator, Optional
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import (
    Base,
    Notification,
    NotificationStatus,
    NotificationType,
    Priority,
    Todo,
    TodoStatus,
    User,
)
from app.services.notifications import NotificationService
from app.services.todo_service import TodoService
from app.utils.datetime_utils import naive_utc_now

from tests.fakes import FakeBroker


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="session")
def test_engine():
    """Create test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(test_engine) -> Generator[Session, None, None]:
    """Create a database session on fresh tables for each test."""
    Base.metadata.create_all(test_engine)
    session_maker = sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)

    session = session_maker()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(test_engine)


@pytest.fixture
def fake_broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def notification_service(db_session: Session, fake_broker: FakeBroker) -> NotificationService:
    """Notification service publishing to the fake broker, without delivery delay."""
    return NotificationService(db_session, broker=fake_broker, delivery_delay=0)


@pytest.fixture
def todo_service(db_session: Session, notification_service: NotificationService) -> TodoService:
    return TodoService(db_session, notification_service=notification_service)


@pytest.fixture
def mock_celery_app():
    """Mock Celery app with a producer pool and connection context managers."""
    app = MagicMock()
    producer = MagicMock(name="producer")
    app.producer_or_acquire.return_value.__enter__.return_value = producer
    app.send_task.return_value = MagicMock(id="message-1")

    connection = MagicMock(name="connection")
    app.connection_for_write.return_value.__enter__.return_value = connection

    app.producer = producer
    app.connection = connection
    return app


# Test data factories
def make_user(
    db_session: Session,
    username: str,
    roles: Optional[list] = None,
    is_active: bool = True,
) -> User:
    user = User(
        id=str(uuid.uuid4()),
        username=username,
        email=f"{username}@example.com",
        roles=roles or ["USER"],
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_todo(
    db_session: Session,
    user: User,
    title: str,
    due_in: Optional[timedelta] = None,
    status: TodoStatus = TodoStatus.PENDING,
    is_deleted: bool = False,
) -> Todo:
    todo = Todo(
        id=str(uuid.uuid4()),
        user_id=user.id,
        title=title,
        status=status,
        priority=Priority.MEDIUM,
        due_date=naive_utc_now() + due_in if due_in is not None else None,
        is_deleted=is_deleted,
    )
    db_session.add(todo)
    db_session.commit()
    return todo


def make_notification(
    db_session: Session,
    user_id: str,
    status: NotificationStatus = NotificationStatus.PENDING,
    created_ago: timedelta = timedelta(0),
    expires_in: Optional[timedelta] = None,
    notification_type: NotificationType = NotificationType.REMINDER,
    todo_id: Optional[str] = None,
    is_deleted: bool = False,
) -> Notification:
    """Insert a notification row directly, bypassing the service."""
    created_at = naive_utc_now() - created_ago
    notification = Notification(
        id=str(uuid.uuid4()),
        user_id=user_id,
        title="Stored notification",
        message="Stored notification body",
        type=notification_type,
        status=status,
        created_at=created_at,
        expires_at=naive_utc_now() + expires_in if expires_in is not None else None,
        todo_id=todo_id,
        is_deleted=is_deleted,
    )
    db_session.add(notification)
    db_session.commit()
    return notification


@pytest.fixture
def user(db_session: Session) -> User:
    return make_user(db_session, "alice")


@pytest.fixture
def other_user(db_session: Session) -> User:
    return make_user(db_session, "bob")


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return make_user(db_session, "root", roles=["USER", "ADMIN"])
