import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import (
    Notification,
    NotificationStatus,
    NotificationType,
    Priority,
)
from app.schemas.notification_schemas import NotificationMessage, NotificationStats
from app.utils.datetime_utils import (
    days_from_now,
    hours_ago,
    naive_utc_now,
    to_naive_utc,
)
from app.utils.errors import (
    BrokerPublishError,
    NotFoundError,
    NotificationValidationError,
)
from app.utils.logging import get_logger

from .broker_gateway import BrokerGateway, notification_broker
from .notification_store import NotificationStore

logger = get_logger()

TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 500

# Fields an owner may change after creation
EDITABLE_FIELDS = (
    "title",
    "message",
    "type",
    "priority",
    "expires_at",
    "action_url",
    "metadata",
)

WELCOME_TITLE = "Welcome to TodoList App!"
WELCOME_MESSAGE = (
    "Thank you for joining us. Start creating your first todo to get organized!"
)


def _coerce_enum(enum_cls, value, field: str):
    if value is None:
        raise NotificationValidationError(f"Notification {field} is required")
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise NotificationValidationError(f"Invalid notification {field}: {value}")


def _validate_text(value: Optional[str], field: str, max_length: int) -> str:
    if value is None or not value.strip():
        raise NotificationValidationError(f"Notification {field} is required")
    if len(value) > max_length:
        raise NotificationValidationError(
            f"Notification {field} must be at most {max_length} characters"
        )
    return value


def _validate_expiry(expires_at: Optional[datetime]) -> Optional[datetime]:
    if expires_at is None:
        return None
    expires_at = to_naive_utc(expires_at)
    if expires_at <= naive_utc_now():
        raise NotificationValidationError("Notification expiry must be in the future")
    return expires_at


class NotificationService:
    """
    Creation, delivery bookkeeping and owner-facing operations for notifications.

    Records are always created PENDING and handed to the broker right away.
    Only the queue consumers and the cleanup routines move a record to SENT
    or FAILED.
    """

    def __init__(
        self,
        db_session: Session,
        broker: Optional[BrokerGateway] = None,
        delivery_delay: Optional[float] = None,
    ):
        self.db = db_session
        self.store = NotificationStore(db_session)
        self.broker = broker if broker is not None else notification_broker
        self.delivery_delay = (
            settings.NOTIFICATION_DELIVERY_DELAY_SECONDS
            if delivery_delay is None
            else delivery_delay
        )

    # Creation

    async def create(
        self,
        user_id: str,
        title: str,
        message: str,
        type: Union[NotificationType, str],
        todo_id: Optional[str] = None,
        priority: Union[Priority, str] = Priority.MEDIUM,
        expires_at: Optional[datetime] = None,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Persist a PENDING notification and publish it.

        Validation happens before anything is written. When publishing fails
        the record stays in the store as FAILED and BrokerPublishError is
        raised to the caller.
        """
        if not user_id:
            raise NotificationValidationError("Notification user id is required")

        notification = Notification(
            user_id=user_id,
            title=_validate_text(title, "title", TITLE_MAX_LENGTH),
            message=_validate_text(message, "message", MESSAGE_MAX_LENGTH),
            type=_coerce_enum(NotificationType, type, "type"),
            priority=_coerce_enum(Priority, priority, "priority"),
            expires_at=_validate_expiry(expires_at),
            todo_id=todo_id,
            action_url=action_url,
            notification_metadata=metadata,
        )
        self.store.save(notification)
        logger.info(
            f"Created notification {notification.id} ({notification.type.value}) "
            f"for user {user_id}"
        )

        try:
            self.broker.publish(notification)
        except BrokerPublishError:
            notification.mark_as_failed()
            self.store.save(notification)
            logger.error(
                f"Notification {notification.id} marked FAILED after publish failure"
            )
            raise

        return notification

    async def send_welcome(self, user_id: str) -> Notification:
        return await self.create(
            user_id=user_id,
            title=WELCOME_TITLE,
            message=WELCOME_MESSAGE,
            type=NotificationType.USER_WELCOME,
            priority=Priority.LOW,
            expires_at=days_from_now(settings.WELCOME_NOTIFICATION_EXPIRY_DAYS),
        )

    async def send_announcement(
        self, title: str, message: str, user_ids: Iterable[str]
    ) -> List[Notification]:
        """
        Fan out one SYSTEM_ANNOUNCEMENT per user.

        A publish failure for one user does not stop the fan-out; that user's
        record is returned in FAILED state.
        """
        expires_at = days_from_now(settings.ANNOUNCEMENT_EXPIRY_DAYS)
        notifications = []

        for user_id in user_ids:
            try:
                notification = await self.create(
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=NotificationType.SYSTEM_ANNOUNCEMENT,
                    priority=Priority.MEDIUM,
                    expires_at=expires_at,
                )
            except BrokerPublishError as e:
                logger.error(f"Announcement for user {user_id} not enqueued: {e}")
                notification = self.store.get(e.notification_id)
            notifications.append(notification)

        logger.info(f"Sent announcement '{title}' to {len(notifications)} users")
        return notifications

    # Owner operations

    async def get_notification(self, notification_id: str, user_id: str) -> Notification:
        notification = self.store.get_for_user(notification_id, user_id)
        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    async def update(
        self, notification_id: str, user_id: str, changes: Dict[str, Any]
    ) -> Notification:
        notification = await self.get_notification(notification_id, user_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise NotificationValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )

        if "title" in changes:
            notification.title = _validate_text(
                changes["title"], "title", TITLE_MAX_LENGTH
            )
        if "message" in changes:
            notification.message = _validate_text(
                changes["message"], "message", MESSAGE_MAX_LENGTH
            )
        if "type" in changes:
            notification.type = _coerce_enum(NotificationType, changes["type"], "type")
        if "priority" in changes:
            notification.priority = _coerce_enum(
                Priority, changes["priority"], "priority"
            )
        if "expires_at" in changes:
            notification.expires_at = _validate_expiry(changes["expires_at"])
        if "action_url" in changes:
            notification.action_url = changes["action_url"]
        if "metadata" in changes:
            notification.notification_metadata = changes["metadata"]

        self.store.save(notification)
        logger.info(f"Updated notification {notification_id} for user {user_id}")
        return notification

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self.get_notification(notification_id, user_id)
        if notification.mark_as_read():
            self.store.save(notification)
            logger.info(f"Marked notification {notification_id} as read")
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        unread = self.store.find_unread(user_id)
        for notification in unread:
            notification.mark_as_read()
        if unread:
            self.db.commit()
        logger.info(f"Marked {len(unread)} notifications as read for user {user_id}")
        return len(unread)

    async def delete(self, notification_id: str, user_id: str) -> Notification:
        notification = self.store.get_for_user(
            notification_id, user_id, include_deleted=True
        )
        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")

        if notification.soft_delete():
            self.store.save(notification)
            logger.info(f"Deleted notification {notification_id} for user {user_id}")
        return notification

    async def delete_all(self, user_id: str) -> int:
        notifications = self.store.find_by_user(user_id)
        for notification in notifications:
            notification.soft_delete()
        if notifications:
            self.db.commit()
        logger.info(
            f"Deleted {len(notifications)} notifications for user {user_id}"
        )
        return len(notifications)

    # Queries

    async def get_user_notifications(self, user_id: str) -> List[Notification]:
        return self.store.find_by_user(user_id)

    async def get_by_status(
        self, user_id: str, status: NotificationStatus
    ) -> List[Notification]:
        return self.store.find_by_status(user_id, status)

    async def get_by_type(
        self, user_id: str, notification_type: NotificationType
    ) -> List[Notification]:
        return self.store.find_by_type(user_id, notification_type)

    async def get_by_priority(
        self, user_id: str, priority: Priority
    ) -> List[Notification]:
        return self.store.find_by_priority(user_id, priority)

    async def get_unread(self, user_id: str) -> List[Notification]:
        return self.store.find_unread(user_id)

    async def get_read(self, user_id: str) -> List[Notification]:
        return self.store.find_read(user_id)

    async def get_expired(self, user_id: str) -> List[Notification]:
        return self.store.find_expired_for_user(user_id, naive_utc_now())

    async def get_by_todo_id(self, todo_id: str) -> List[Notification]:
        """Every notification referencing the todo, whoever owns it."""
        return self.store.find_by_todo_id(todo_id)

    async def get_created_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self.store.find_created_between(
            user_id, to_naive_utc(start), to_naive_utc(end)
        )

    async def get_sent_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self.store.find_sent_between(
            user_id, to_naive_utc(start), to_naive_utc(end)
        )

    async def get_read_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> List[Notification]:
        return self.store.find_read_between(
            user_id, to_naive_utc(start), to_naive_utc(end)
        )

    async def count_unread(self, user_id: str) -> int:
        return self.store.count_unread(user_id)

    async def count_by_status(self, user_id: str, status: NotificationStatus) -> int:
        return self.store.count_by_status(user_id, status)

    async def get_stats(self, user_id: str) -> NotificationStats:
        total = self.store.count_by_user(user_id)
        unread = self.store.count_unread(user_id)
        by_status = self.store.count_grouped(user_id, Notification.status)

        return NotificationStats(
            total=total,
            unread=unread,
            read=total - unread,
            pending=by_status.get(NotificationStatus.PENDING.value, 0),
            sent=by_status.get(NotificationStatus.SENT.value, 0),
            failed=by_status.get(NotificationStatus.FAILED.value, 0),
            by_status=by_status,
            by_type=self.store.count_grouped(user_id, Notification.type),
            by_priority=self.store.count_grouped(user_id, Notification.priority),
        )

    # Queue consumption

    async def consume_from_queue(
        self,
        payload: Union[Dict[str, Any], NotificationMessage],
        final_attempt: bool = True,
    ) -> Notification:
        """
        Process one delivered message: simulate delivery, then mark SENT.

        Any error is raised again so the consumer wrapper can reject the
        message. On the final attempt the record is marked FAILED first; when
        the message is going to be requeued the record stays as it was so the
        redelivery can still send it. FAILED records are left alone, and a
        record that is already SENT keeps its original sent_at.
        """
        notification_id = (
            payload.get("id") if isinstance(payload, dict) else payload.id
        )

        try:
            message = NotificationMessage.model_validate(payload)
            notification = self.store.get(message.id)
            if notification is None:
                raise NotFoundError(f"Notification {message.id} not found")

            if notification.status == NotificationStatus.FAILED:
                logger.warning(
                    f"Notification {notification.id} already FAILED, skipping delivery"
                )
                return notification

            await self._deliver(notification)

            notification.mark_as_sent()
            self.store.save(notification)
            logger.info(f"Notification {notification.id} delivered to user {notification.user_id}")
            return notification

        except Exception as e:
            logger.error(f"Failed to process notification {notification_id}: {str(e)}")
            if final_attempt:
                self._mark_failed(notification_id)
            else:
                self.db.rollback()
                logger.info(f"Notification {notification_id} left unchanged for redelivery")
            raise

    async def consume_dead_letter(
        self, payload: Union[Dict[str, Any], NotificationMessage]
    ) -> Optional[Notification]:
        """Force a dead-lettered notification into FAILED. Never re-publishes."""
        message = NotificationMessage.model_validate(payload)
        notification = self.store.get(message.id)

        if notification is None:
            logger.warning(f"Dead-lettered notification {message.id} not found, ignoring")
            return None

        if notification.status == NotificationStatus.SENT:
            logger.warning(
                f"Dead-lettered notification {notification.id} was already SENT, "
                "forcing FAILED"
            )

        if notification.status != NotificationStatus.FAILED:
            notification.mark_as_failed()
            self.store.save(notification)

        logger.info(f"Notification {notification.id} marked FAILED from dead-letter queue")
        return notification

    async def _deliver(self, notification: Notification) -> None:
        # Stand-in for a push/email channel
        if self.delivery_delay > 0:
            await asyncio.sleep(self.delivery_delay)

    def _mark_failed(self, notification_id: Optional[str]) -> None:
        self.db.rollback()
        if not notification_id:
            return

        try:
            notification = self.store.get(notification_id)
            if (
                notification is not None
                and notification.status != NotificationStatus.FAILED
            ):
                notification.mark_as_failed()
                self.store.save(notification)
                logger.info(f"Notification {notification_id} marked FAILED")
        except Exception as e:
            # The processing error is re-raised by the caller
            self.db.rollback()
            logger.error(f"Could not mark notification {notification_id} FAILED: {e}")

    # Cleanup

    async def cleanup_expired(self) -> int:
        """Soft-delete SENT notifications whose expiry has passed."""
        expired = self.store.find_sent_expired(naive_utc_now())
        for notification in expired:
            notification.soft_delete()
        if expired:
            self.db.commit()
        logger.info(f"Cleaned up {len(expired)} expired notifications")
        return len(expired)

    async def cleanup_stale_pending(self, hours: int = settings.STALE_PENDING_HOURS) -> int:
        """Fail PENDING notifications older than ``hours``; they are not re-published."""
        stale = self.store.find_stale_pending(hours_ago(hours))
        for notification in stale:
            notification.mark_as_failed()
        if stale:
            self.db.commit()
        logger.info(
            f"Marked {len(stale)} stale pending notifications (older than {hours}h) as FAILED"
        )
        return len(stale)
