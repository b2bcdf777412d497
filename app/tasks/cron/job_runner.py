from typing import Any, Awaitable, Callable, Dict

from sqlalchemy.orm import Session

from app.db.session import get_sync_session
from app.services.todo_service import TodoService
from app.services.user_service import UserService
from app.utils.context import set_request_id
from app.utils.job_lock import job_lock
from app.utils.logging import get_logger

UserScan = Callable[[TodoService, str], Awaitable[int]]
Job = Callable[[Session, Any], Awaitable[Dict[str, Any]]]


async def scan_active_users(db_session: Session, scan: UserScan, logger) -> Dict[str, int]:
    """
    Run ``scan`` for every active user, one user at a time.

    A failing user is logged and skipped so the rest of the batch still runs.
    ``scan`` returns the number of notifications it emitted.
    """
    users = await UserService(db_session).find_all_active_users()
    todo_service = TodoService(db_session)

    notifications_created = 0
    failed_users = 0
    for user in users:
        try:
            notifications_created += await scan(todo_service, user.id)
        except Exception as e:
            db_session.rollback()
            failed_users += 1
            logger.error(f"Scan failed for user {user.id}: {str(e)}")

    return {
        "users_scanned": len(users),
        "notifications_created": notifications_created,
        "failed_users": failed_users,
    }


async def run_locked_job(job_name: str, request_id: str, job: Job) -> Dict[str, Any]:
    """
    Run one scheduled job under its Redis lock with a fresh DB session.

    An overlapping run of the same job is skipped. Errors are logged and
    reported in the result instead of failing the Celery task.
    """
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    try:
        with job_lock(job_name) as acquired:
            if not acquired:
                logger.warning(f"{job_name} is already running, skipping this run")
                return {"success": True, "skipped": True, "request_id": request_id}

            for db_session in get_sync_session():
                result = await job(db_session, logger)
                logger.info(f"{job_name} completed: {result}")
                return {"success": True, **result, "request_id": request_id}

    except Exception as e:
        logger.error(f"{job_name} failed: {str(e)}", exc_info=True)
        return {"success": False, "error": str(e), "request_id": request_id}
