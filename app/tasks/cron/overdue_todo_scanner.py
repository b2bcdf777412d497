import asyncio

from app.celery import celery

from .job_runner import run_locked_job, scan_active_users

JOB_NAME = "overdue_todo_scanner"


@celery.task(bind=True)
def overdue_todo_scanner_task(self, request_id: str):
    """
    Hourly scan emitting one TODO_OVERDUE notification per overdue todo of
    every active user. Repeated runs notify the same todos again.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_overdue_todo_scanner(request_id))


async def _async_overdue_todo_scanner(request_id: str):
    async def job(db_session, logger):
        return await scan_active_users(
            db_session,
            lambda todo_service, user_id: todo_service.check_and_notify_overdue_todos(
                user_id
            ),
            logger,
        )

    return await run_locked_job(JOB_NAME, request_id, job)
