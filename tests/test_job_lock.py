from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import LockError

from app.utils.job_lock import job_lock


@pytest.fixture
def redis_lock():
    lock = MagicMock()
    client = MagicMock()
    client.lock.return_value = lock
    with patch("app.utils.job_lock.get_redis_client", return_value=client):
        yield client, lock


class TestJobLock:
    def test_acquired_lock_is_released(self, redis_lock):
        client, lock = redis_lock
        lock.acquire.return_value = True

        with job_lock("overdue_todo_scanner", timeout=60) as acquired:
            assert acquired is True

        client.lock.assert_called_once_with(
            "job_lock:overdue_todo_scanner", timeout=60, blocking=False
        )
        lock.release.assert_called_once()

    def test_busy_lock_yields_false_and_is_not_released(self, redis_lock):
        _, lock = redis_lock
        lock.acquire.return_value = False

        with job_lock("overdue_todo_scanner") as acquired:
            assert acquired is False

        lock.release.assert_not_called()

    def test_lock_is_released_when_job_raises(self, redis_lock):
        _, lock = redis_lock
        lock.acquire.return_value = True

        with pytest.raises(RuntimeError):
            with job_lock("daily_notification_cleanup"):
                raise RuntimeError("job failed")

        lock.release.assert_called_once()

    def test_expired_lock_release_is_tolerated(self, redis_lock):
        _, lock = redis_lock
        lock.acquire.return_value = True
        lock.release.side_effect = LockError("not owned")

        with job_lock("due_soon_todo_scanner") as acquired:
            assert acquired is True
