from typing import Any, Dict, List, Optional
from datetime import datetime
import uuid
from sqlalchemy import (
    String,
    Boolean,
    Text,
    Enum,
    Index,
    CheckConstraint,
    DateTime,
    JSON,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates
import enum

from app.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


def generate_uuid() -> str:
    return str(uuid.uuid4())


# Enums
class NotificationType(enum.Enum):
    TODO_CREATED = "TODO_CREATED"
    TODO_UPDATED = "TODO_UPDATED"
    TODO_COMPLETED = "TODO_COMPLETED"
    TODO_DUE_SOON = "TODO_DUE_SOON"
    TODO_OVERDUE = "TODO_OVERDUE"
    SYSTEM_ANNOUNCEMENT = "SYSTEM_ANNOUNCEMENT"
    USER_WELCOME = "USER_WELCOME"
    REMINDER = "REMINDER"


class NotificationStatus(enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Priority(enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TodoStatus(enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Models
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    roles: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("idx_users_is_active", "is_active"),)


class Todo(Base, AuditMixin):
    __tablename__ = "todos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000))
    status: Mapped[TodoStatus] = mapped_column(
        Enum(TodoStatus), default=TodoStatus.PENDING, nullable=False
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), default=Priority.MEDIUM, nullable=False
    )
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    @property
    def is_completed(self) -> bool:
        return self.status == TodoStatus.COMPLETED

    def mark_as_completed(self) -> None:
        self.status = TodoStatus.COMPLETED
        self.completed_at = naive_utc_now()

    __table_args__ = (
        Index("idx_todos_user_id", "user_id"),
        Index("idx_todos_user_due_date", "user_id", "due_date"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType), nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(
        Enum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False
    )
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority), default=Priority.MEDIUM, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    # sent_at is written once, on the first transition to SENT
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    todo_id: Mapped[Optional[str]] = mapped_column(String(36))
    action_url: Mapped[Optional[str]] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    notification_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSON
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __init__(self, **kwargs):
        kwargs.setdefault("status", NotificationStatus.PENDING)
        kwargs.setdefault("priority", Priority.MEDIUM)
        kwargs.setdefault("is_deleted", False)
        kwargs.setdefault("created_at", naive_utc_now())
        super().__init__(**kwargs)

    @validates("status")
    def _stamp_sent_at(self, key, value):
        if value == NotificationStatus.SENT and self.sent_at is None:
            self.sent_at = naive_utc_now()
        return value

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_sent(self) -> bool:
        return self.status == NotificationStatus.SENT

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and self.expires_at < naive_utc_now()

    def mark_as_sent(self) -> None:
        self.status = NotificationStatus.SENT

    def mark_as_failed(self) -> None:
        self.status = NotificationStatus.FAILED

    def mark_as_read(self) -> bool:
        """Set read_at once. Returns False when it was already read."""
        if self.read_at is not None:
            return False
        self.read_at = naive_utc_now()
        return True

    def soft_delete(self) -> bool:
        """Flag as deleted once. Returns False when it was already deleted."""
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = naive_utc_now()
        return True

    def __repr__(self) -> str:
        return (
            f"Notification(id={self.id!r}, user_id={self.user_id!r}, "
            f"type={self.type}, status={self.status}, is_deleted={self.is_deleted})"
        )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "expires_at IS NULL OR expires_at > created_at",
            name="ck_notif_expires_after_created",
        ),
        Index("idx_notif_user_id", "user_id"),
        Index("idx_notif_user_status", "user_id", "status"),
        Index("idx_notif_user_deleted", "user_id", "is_deleted"),
        Index("idx_notif_todo_id", "todo_id"),
        Index("idx_notif_status_created", "status", "created_at"),
        Index("idx_notif_status_expires", "status", "expires_at"),
    )
