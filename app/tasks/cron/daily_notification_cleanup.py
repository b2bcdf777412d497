import asyncio

from app.celery import celery
from app.config.settings import settings
from app.services.notifications import NotificationService

from .job_runner import run_locked_job

JOB_NAME = "daily_notification_cleanup"


@celery.task(bind=True)
def daily_notification_cleanup_task(self, request_id: str):
    """
    Daily maintenance at a fixed wall-clock time: soft-delete expired SENT
    notifications, then fail PENDING ones that have been waiting too long.
    """
    return asyncio.run(_async_daily_notification_cleanup(request_id))


async def _async_daily_notification_cleanup(request_id: str):
    async def job(db_session, logger):
        service = NotificationService(db_session)
        expired_deleted = await service.cleanup_expired()
        stale_failed = await service.cleanup_stale_pending(settings.STALE_PENDING_HOURS)
        return {"expired_deleted": expired_deleted, "stale_failed": stale_failed}

    return await run_locked_job(JOB_NAME, request_id, job)
