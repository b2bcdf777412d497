from fastapi import APIRouter

from app.routers.health import health_router
from app.routers.notification_admin import notification_admin_router
from app.routers.notifications import notifications_router

main_router = APIRouter()

main_router.include_router(health_router, prefix="/health", tags=["Health Checks"])
main_router.include_router(
    notification_admin_router,
    prefix="/notifications/admin",
    tags=["Notifications - Admin"],
)
main_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
