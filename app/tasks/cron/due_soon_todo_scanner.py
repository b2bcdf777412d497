import asyncio
from typing import Optional

from app.celery import celery
from app.config.settings import settings

from .job_runner import run_locked_job, scan_active_users

JOB_NAME = "due_soon_todo_scanner"


@celery.task(bind=True)
def due_soon_todo_scanner_task(self, request_id: str, hours: Optional[int] = None):
    """
    Emit one TODO_DUE_SOON notification per todo due within the window
    (24 hours by default) for every active user.
    """
    return asyncio.run(
        _async_due_soon_todo_scanner(
            request_id, settings.DUE_SOON_WINDOW_HOURS if hours is None else hours
        )
    )


async def _async_due_soon_todo_scanner(request_id: str, hours: int):
    async def job(db_session, logger):
        result = await scan_active_users(
            db_session,
            lambda todo_service, user_id: todo_service.check_and_notify_due_soon_todos(
                user_id, hours
            ),
            logger,
        )
        return {**result, "window_hours": hours}

    return await run_locked_job(JOB_NAME, request_id, job)
