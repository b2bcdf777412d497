import asyncio

from app.celery import celery
from app.utils.logging import get_logger


@celery.task(bind=True)
def welcome_notification_checker_task(self, request_id: str):
    """Reserved hook for welcoming newly registered users. Does nothing yet."""
    return asyncio.run(_async_welcome_notification_checker(request_id))


async def _async_welcome_notification_checker(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    # TODO: track the last checked registration time and call
    # NotificationService.send_welcome for users created after it.
    logger.debug("Welcome notification check: new-user detection not enabled")
    return {"success": True, "processed_count": 0, "request_id": request_id}
