from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import Select, and_, desc, func, select
from sqlalchemy.orm import Session

from app.db.models import (
    Notification,
    NotificationStatus,
    NotificationType,
    Priority,
)


class NotificationStore:
    """
    Persistence of notification records.

    Every per-user query excludes soft-deleted rows and returns the newest
    notifications first. Lookups by todo id are deliberately not user scoped.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    # Writes

    def save(self, notification: Notification) -> Notification:
        self.db.add(notification)
        self.db.commit()
        return notification

    def save_all(self, notifications: Sequence[Notification]) -> None:
        self.db.add_all(notifications)
        self.db.commit()

    # Single-record lookups

    def get(self, notification_id: str) -> Optional[Notification]:
        return self.db.get(Notification, notification_id)

    def get_for_user(
        self, notification_id: str, user_id: str, include_deleted: bool = False
    ) -> Optional[Notification]:
        query = select(Notification).where(
            and_(Notification.id == notification_id, Notification.user_id == user_id)
        )
        if not include_deleted:
            query = query.where(Notification.is_deleted == False)
        return self.db.execute(query).scalar_one_or_none()

    # Per-user queries

    def _user_scope(self, user_id: str) -> Select:
        return (
            select(Notification)
            .where(
                and_(
                    Notification.user_id == user_id,
                    Notification.is_deleted == False,
                )
            )
            .order_by(desc(Notification.created_at))
        )

    def _all(self, query: Select) -> List[Notification]:
        return list(self.db.execute(query).scalars().all())

    def find_by_user(self, user_id: str) -> List[Notification]:
        return self._all(self._user_scope(user_id))

    def find_by_status(
        self, user_id: str, status: NotificationStatus
    ) -> List[Notification]:
        return self._all(self._user_scope(user_id).where(Notification.status == status))

    def find_by_type(
        self, user_id: str, notification_type: NotificationType
    ) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(Notification.type == notification_type)
        )

    def find_by_priority(self, user_id: str, priority: Priority) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(Notification.priority == priority)
        )

    def find_unread(self, user_id: str) -> List[Notification]:
        return self._all(self._user_scope(user_id).where(Notification.read_at == None))

    def find_read(self, user_id: str) -> List[Notification]:
        return self._all(self._user_scope(user_id).where(Notification.read_at != None))

    def find_expired_for_user(self, user_id: str, now: datetime) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(
                and_(Notification.expires_at != None, Notification.expires_at < now)
            )
        )

    def find_created_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(
                Notification.created_at.between(start, end)
            )
        )

    def find_sent_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(Notification.sent_at.between(start, end))
        )

    def find_read_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self._all(
            self._user_scope(user_id).where(Notification.read_at.between(start, end))
        )

    def find_by_todo_id(self, todo_id: str) -> List[Notification]:
        return self._all(
            select(Notification)
            .where(
                and_(Notification.todo_id == todo_id, Notification.is_deleted == False)
            )
            .order_by(desc(Notification.created_at))
        )

    # Counters

    def count_by_user(self, user_id: str) -> int:
        return self._count(Notification.user_id == user_id)

    def count_unread(self, user_id: str) -> int:
        return self._count(
            and_(Notification.user_id == user_id, Notification.read_at == None)
        )

    def count_by_status(self, user_id: str, status: NotificationStatus) -> int:
        return self._count(
            and_(Notification.user_id == user_id, Notification.status == status)
        )

    def _count(self, criteria) -> int:
        result = self.db.execute(
            select(func.count(Notification.id)).where(
                and_(criteria, Notification.is_deleted == False)
            )
        )
        return result.scalar() or 0

    def count_grouped(self, user_id: str, column) -> Dict[str, int]:
        """Counts of the user's notifications grouped by an enum column."""
        rows = self.db.execute(
            select(column, func.count(Notification.id))
            .where(
                and_(Notification.user_id == user_id, Notification.is_deleted == False)
            )
            .group_by(column)
        ).all()
        return {key.value: count for key, count in rows}

    # Cleanup scans

    def find_sent_expired(self, now: datetime) -> List[Notification]:
        return self._all(
            select(Notification).where(
                and_(
                    Notification.status == NotificationStatus.SENT,
                    Notification.expires_at != None,
                    Notification.expires_at < now,
                    Notification.is_deleted == False,
                )
            )
        )

    def find_stale_pending(self, cutoff: datetime) -> List[Notification]:
        return self._all(
            select(Notification).where(
                and_(
                    Notification.status == NotificationStatus.PENDING,
                    Notification.created_at < cutoff,
                )
            )
        )
