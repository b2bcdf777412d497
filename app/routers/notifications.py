from typing import Annotated, List
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.db.models import Notification, NotificationStatus, NotificationType, Priority
from app.db.session import get_sync_session
from app.middlewares.auth_middleware import get_current_identity
from app.schemas.notification_schemas import (
    CreateNotificationRequest,
    NotificationResponse,
    UpdateNotificationRequest,
)
from app.services.notifications import NotificationService
from app.utils.errors import BrokerPublishError, BusinessLogicError
from app.utils.identity import AuthenticatedIdentity
from app.utils.responses import ResponseBuilder
from app.utils.logging import get_logger

notifications_router = APIRouter()
logger = get_logger()


def get_notification_service(
    db: Annotated[Session, Depends(get_sync_session)],
) -> NotificationService:
    return NotificationService(db)


Identity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


def serialize(notification: Notification) -> dict:
    return NotificationResponse.model_validate(notification).model_dump(
        mode="json", by_alias=True
    )


def serialize_all(notifications: List[Notification]) -> List[dict]:
    return [serialize(notification) for notification in notifications]


def _list_response(request: Request, notifications: List[Notification], label: str):
    return ResponseBuilder.success(
        request=request,
        data=serialize_all(notifications),
        message=f"Retrieved {len(notifications)} {label}",
        meta={"count": len(notifications)},
    )


@notifications_router.get("")
async def get_notifications(request: Request, identity: Identity, service: Service):
    """All notifications of the current user, newest first."""
    notifications = await service.get_user_notifications(identity.user_id())
    return _list_response(request, notifications, "notifications")


@notifications_router.get("/unread")
async def get_unread_notifications(
    request: Request, identity: Identity, service: Service
):
    notifications = await service.get_unread(identity.user_id())
    return _list_response(request, notifications, "unread notifications")


@notifications_router.get("/read")
async def get_read_notifications(request: Request, identity: Identity, service: Service):
    notifications = await service.get_read(identity.user_id())
    return _list_response(request, notifications, "read notifications")


@notifications_router.get("/expired")
async def get_expired_notifications(
    request: Request, identity: Identity, service: Service
):
    notifications = await service.get_expired(identity.user_id())
    return _list_response(request, notifications, "expired notifications")


@notifications_router.get("/stats")
async def get_notification_stats(request: Request, identity: Identity, service: Service):
    """Counts by status, type and priority plus unread/read totals."""
    stats = await service.get_stats(identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data=stats.model_dump(by_alias=True),
        message="Notification statistics retrieved",
    )


@notifications_router.get("/status/{notification_status}")
async def get_notifications_by_status(
    request: Request,
    notification_status: NotificationStatus,
    identity: Identity,
    service: Service,
):
    notifications = await service.get_by_status(identity.user_id(), notification_status)
    return _list_response(
        request, notifications, f"{notification_status.value} notifications"
    )


@notifications_router.get("/type/{notification_type}")
async def get_notifications_by_type(
    request: Request,
    notification_type: NotificationType,
    identity: Identity,
    service: Service,
):
    notifications = await service.get_by_type(identity.user_id(), notification_type)
    return _list_response(
        request, notifications, f"{notification_type.value} notifications"
    )


@notifications_router.get("/priority/{priority}")
async def get_notifications_by_priority(
    request: Request, priority: Priority, identity: Identity, service: Service
):
    notifications = await service.get_by_priority(identity.user_id(), priority)
    return _list_response(request, notifications, f"{priority.value} notifications")


@notifications_router.get("/todo/{todo_id}")
async def get_notifications_by_todo(
    request: Request, todo_id: str, identity: Identity, service: Service
):
    """
    Notifications referencing a todo.

    This lookup is not restricted to the caller's own notifications.
    """
    notifications = await service.get_by_todo_id(todo_id)
    return _list_response(request, notifications, "todo notifications")


@notifications_router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_notification(
    request: Request,
    body: CreateNotificationRequest,
    identity: Identity,
    service: Service,
):
    """
    Create a notification for the current user and enqueue it for delivery.

    Responds 503 when the broker rejects the message; the record is then
    kept in FAILED state.
    """
    try:
        notification = await service.create(
            user_id=identity.user_id(),
            title=body.title,
            message=body.message,
            type=body.type,
            todo_id=body.todo_id,
            priority=body.priority,
            expires_at=body.expires_at,
            action_url=body.action_url,
            metadata=body.metadata,
        )

        return ResponseBuilder.success(
            request=request,
            data=serialize(notification),
            message="Notification created",
            status_code=status.HTTP_201_CREATED,
        )

    except (BusinessLogicError, BrokerPublishError):
        raise
    except Exception as e:
        logger.error(
            f"Failed to create notification for user {identity.user_id()}: {str(e)}",
            exc_info=True,
        )
        raise


@notifications_router.post("/welcome", status_code=status.HTTP_201_CREATED)
async def send_welcome_notification(
    request: Request, identity: Identity, service: Service
):
    notification = await service.send_welcome(identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data=serialize(notification),
        message="Welcome notification sent",
        status_code=status.HTTP_201_CREATED,
    )


@notifications_router.put("/read-all")
async def mark_all_notifications_as_read(
    request: Request, identity: Identity, service: Service
):
    updated_count = await service.mark_all_as_read(identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data={"updatedCount": updated_count},
        message=f"Marked {updated_count} notifications as read",
    )


@notifications_router.delete("/all")
async def delete_all_notifications(
    request: Request, identity: Identity, service: Service
):
    deleted_count = await service.delete_all(identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data={"deletedCount": deleted_count},
        message=f"Deleted {deleted_count} notifications",
    )


@notifications_router.get("/{notification_id}")
async def get_notification(
    request: Request, notification_id: str, identity: Identity, service: Service
):
    notification = await service.get_notification(notification_id, identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data=serialize(notification),
        message="Notification retrieved",
    )


@notifications_router.put("/{notification_id}")
async def update_notification(
    request: Request,
    notification_id: str,
    body: UpdateNotificationRequest,
    identity: Identity,
    service: Service,
):
    notification = await service.update(
        notification_id,
        identity.user_id(),
        body.model_dump(exclude_unset=True),
    )
    return ResponseBuilder.success(
        request=request,
        data=serialize(notification),
        message="Notification updated",
    )


@notifications_router.put("/{notification_id}/read")
async def mark_notification_as_read(
    request: Request, notification_id: str, identity: Identity, service: Service
):
    notification = await service.mark_as_read(notification_id, identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data=serialize(notification),
        message="Notification marked as read",
    )


@notifications_router.delete("/{notification_id}")
async def delete_notification(
    request: Request, notification_id: str, identity: Identity, service: Service
):
    await service.delete(notification_id, identity.user_id())
    return ResponseBuilder.success(
        request=request,
        data={"notificationId": notification_id},
        message="Notification deleted",
    )
