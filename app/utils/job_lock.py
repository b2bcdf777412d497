from contextlib import contextmanager
from typing import Iterator, Optional

import redis
from redis.exceptions import LockError

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Process-wide Redis client, created on first use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(
            settings.REDIS_URL, socket_connect_timeout=5, retry_on_timeout=True
        )
    return _redis_client


@contextmanager
def job_lock(job_name: str, timeout: Optional[int] = None) -> Iterator[bool]:
    """
    Distributed, non-blocking lock around one run of a scheduled job.

    Yields True when this run holds the lock and False when another run of
    the same job is still in progress. The lock expires after ``timeout``
    seconds so a crashed worker cannot block the job forever.
    """
    lock = get_redis_client().lock(
        f"job_lock:{job_name}",
        timeout=timeout or settings.JOB_LOCK_TIMEOUT_SECONDS,
        blocking=False,
    )
    acquired = lock.acquire()
    try:
        yield acquired
    finally:
        if acquired:
            try:
                lock.release()
            except LockError:
                logger.warning(f"Lock for job {job_name} expired before release")
