from typing import Annotated
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.db.models import NotificationStatus
from app.db.session import get_sync_session
from app.middlewares.auth_middleware import require_admin
from app.routers.notifications import get_notification_service, serialize_all
from app.schemas.notification_schemas import AnnouncementRequest, CleanupResult
from app.services.notifications import NotificationService
from app.services.user_service import UserService
from app.utils.identity import AuthenticatedIdentity
from app.utils.responses import ResponseBuilder
from app.utils.logging import get_logger

notification_admin_router = APIRouter()
logger = get_logger()

Admin = Annotated[AuthenticatedIdentity, Depends(require_admin)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


@notification_admin_router.post("/announcement", status_code=status.HTTP_201_CREATED)
async def send_announcement(
    request: Request,
    body: AnnouncementRequest,
    admin: Admin,
    service: Service,
    db: Annotated[Session, Depends(get_sync_session)],
):
    """
    Fan out a SYSTEM_ANNOUNCEMENT, one notification per target user.

    Without explicit user ids every active user is targeted.
    """
    user_ids = body.user_ids
    if user_ids is None:
        users = await UserService(db).find_all_active_users()
        user_ids = [user.id for user in users]

    notifications = await service.send_announcement(body.title, body.message, user_ids)
    failed = sum(1 for n in notifications if n.status == NotificationStatus.FAILED)

    logger.info(
        f"Admin {admin.user_id()} sent announcement to {len(notifications)} users "
        f"({failed} failed to enqueue)"
    )
    return ResponseBuilder.success(
        request=request,
        data=serialize_all(notifications),
        message=f"Announcement sent to {len(notifications)} users",
        meta={"count": len(notifications), "failedCount": failed},
        status_code=status.HTTP_201_CREATED,
    )


@notification_admin_router.post("/cleanup")
async def cleanup_now(request: Request, admin: Admin, service: Service):
    """Run both cleanup routines immediately."""
    result = CleanupResult(
        expired_deleted=await service.cleanup_expired(),
        stale_failed=await service.cleanup_stale_pending(),
    )

    logger.info(f"Admin {admin.user_id()} triggered notification cleanup: {result}")
    return ResponseBuilder.success(
        request=request,
        data=result.model_dump(by_alias=True),
        message="Notification cleanup completed",
    )
