import pytest
from contextlib import contextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from app.db.models import Notification, NotificationStatus, NotificationType, TodoStatus
from app.tasks.cron.daily_notification_cleanup import _async_daily_notification_cleanup
from app.tasks.cron.due_soon_todo_scanner import (
    _async_due_soon_todo_scanner,
    due_soon_todo_scanner_task,
)
from app.tasks.cron.job_runner import scan_active_users
from app.tasks.cron.overdue_todo_scanner import _async_overdue_todo_scanner
from app.tasks.cron.welcome_notification_checker import (
    _async_welcome_notification_checker,
)
from app.utils.logging import get_logger

from tests.conftest import make_notification, make_todo, make_user
from tests.fakes import FakeBroker


@contextmanager
def _lock(acquired: bool = True):
    yield acquired


@pytest.fixture
def job_environment(db_session):
    """Route scheduled jobs to the test session, a free lock and a fake broker."""
    broker = FakeBroker()

    def session_provider():
        yield db_session

    with patch(
        "app.tasks.cron.job_runner.get_sync_session", session_provider
    ), patch(
        "app.tasks.cron.job_runner.job_lock", lambda name: _lock(True)
    ), patch(
        "app.services.notifications.notification_service.notification_broker", broker
    ):
        yield broker


def _notifications_of_type(db_session, notification_type):
    return (
        db_session.query(Notification)
        .filter(Notification.type == notification_type)
        .all()
    )


class TestOverdueScan:
    """Test the hourly overdue scan."""

    @pytest.mark.asyncio
    async def test_overdue_todo_is_notified_on_every_run(
        self, db_session, job_environment, user
    ):
        """Each run emits a new TODO_OVERDUE notification; there is no de-duplication."""
        overdue = make_todo(db_session, user, "File taxes", due_in=timedelta(hours=-1))

        first = await _async_overdue_todo_scanner("overdue_test")
        notifications = _notifications_of_type(db_session, NotificationType.TODO_OVERDUE)
        assert first["success"] is True
        assert first["notifications_created"] == 1
        assert len(notifications) == 1
        assert notifications[0].todo_id == overdue.id
        assert notifications[0].message == "Your todo is overdue: File taxes"

        await _async_overdue_todo_scanner("overdue_test")
        notifications = _notifications_of_type(db_session, NotificationType.TODO_OVERDUE)
        assert len(notifications) == 2
        assert len({n.id for n in notifications}) == 2
        assert {n.todo_id for n in notifications} == {overdue.id}

    @pytest.mark.asyncio
    async def test_completed_deleted_and_future_todos_are_ignored(
        self, db_session, job_environment, user
    ):
        make_todo(db_session, user, "Done", due_in=timedelta(hours=-2), status=TodoStatus.COMPLETED)
        make_todo(db_session, user, "Gone", due_in=timedelta(hours=-2), is_deleted=True)
        make_todo(db_session, user, "Later", due_in=timedelta(days=3))
        make_todo(db_session, user, "Someday")

        result = await _async_overdue_todo_scanner("overdue_test")

        assert result["notifications_created"] == 0
        assert _notifications_of_type(db_session, NotificationType.TODO_OVERDUE) == []

    @pytest.mark.asyncio
    async def test_inactive_users_are_not_scanned(self, db_session, job_environment):
        dormant = make_user(db_session, "dormant", is_active=False)
        make_todo(db_session, dormant, "Old", due_in=timedelta(hours=-1))

        result = await _async_overdue_todo_scanner("overdue_test")

        assert result["users_scanned"] == 0
        assert result["notifications_created"] == 0

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, db_session, user):
        make_todo(db_session, user, "Late", due_in=timedelta(hours=-1))

        with patch("app.tasks.cron.job_runner.job_lock", lambda name: _lock(False)):
            result = await _async_overdue_todo_scanner("overdue_test")

        assert result == {"success": True, "skipped": True, "request_id": "overdue_test"}
        assert _notifications_of_type(db_session, NotificationType.TODO_OVERDUE) == []

    @pytest.mark.asyncio
    async def test_lock_backend_failure_is_reported(self, db_session):
        @contextmanager
        def broken_lock(name):
            raise ConnectionError("redis down")
            yield

        with patch("app.tasks.cron.job_runner.job_lock", broken_lock):
            result = await _async_overdue_todo_scanner("overdue_test")

        assert result["success"] is False
        assert "redis down" in result["error"]


class TestPerUserIsolation:
    """Test that one user's failure does not abort the batch."""

    @pytest.mark.asyncio
    async def test_failing_user_is_skipped(self, db_session):
        first = make_user(db_session, "first")
        second = make_user(db_session, "second")
        third = make_user(db_session, "third")
        visited = []

        async def scan(todo_service, user_id):
            visited.append(user_id)
            if user_id == second.id:
                raise RuntimeError("boom")
            return 2

        result = await scan_active_users(db_session, scan, get_logger())

        assert set(visited) == {first.id, second.id, third.id}
        assert result == {"users_scanned": 3, "notifications_created": 4, "failed_users": 1}

    @pytest.mark.asyncio
    async def test_publish_failure_for_one_user_does_not_stop_scan(self, db_session):
        unlucky = make_user(db_session, "unlucky")
        lucky = make_user(db_session, "lucky")
        make_todo(db_session, unlucky, "A", due_in=timedelta(hours=-1))
        make_todo(db_session, lucky, "B", due_in=timedelta(hours=-1))
        broker = FakeBroker(fail_for_users=[unlucky.id])

        def session_provider():
            yield db_session

        with patch("app.tasks.cron.job_runner.get_sync_session", session_provider), patch(
            "app.tasks.cron.job_runner.job_lock", lambda name: _lock(True)
        ), patch("app.services.notifications.notification_service.notification_broker", broker):
            result = await _async_overdue_todo_scanner("overdue_test")

        assert result["failed_users"] == 0
        assert result["notifications_created"] == 1
        statuses = {
            n.user_id: n.status
            for n in _notifications_of_type(db_session, NotificationType.TODO_OVERDUE)
        }
        assert statuses == {
            unlucky.id: NotificationStatus.FAILED,
            lucky.id: NotificationStatus.PENDING,
        }


class TestDueSoonScan:
    """Test the due-soon scan."""

    @pytest.mark.asyncio
    async def test_only_todos_inside_window_are_notified(
        self, db_session, job_environment, user
    ):
        soon = make_todo(db_session, user, "Soon", due_in=timedelta(hours=3))
        make_todo(db_session, user, "Far", due_in=timedelta(hours=30))
        make_todo(db_session, user, "Late", due_in=timedelta(hours=-3))

        result = await _async_due_soon_todo_scanner("due_soon_test", 24)

        notifications = _notifications_of_type(db_session, NotificationType.TODO_DUE_SOON)
        assert result["window_hours"] == 24
        assert [n.todo_id for n in notifications] == [soon.id]
        assert notifications[0].title == "Todo Due Soon"

    @pytest.mark.parametrize("hours, expected", [(0, 0), (None, 24), (6, 6)])
    def test_task_window_argument(self, hours, expected, monkeypatch):
        monkeypatch.setattr(
            "app.tasks.cron.due_soon_todo_scanner.settings.DUE_SOON_WINDOW_HOURS", 24
        )
        scanner = AsyncMock(return_value={"success": True})

        with patch(
            "app.tasks.cron.due_soon_todo_scanner._async_due_soon_todo_scanner", scanner
        ):
            due_soon_todo_scanner_task.run(request_id="due_soon_test", hours=hours)

        scanner.assert_awaited_once_with("due_soon_test", expected)


class TestCleanupJob:
    """Test the daily cleanup job."""

    @pytest.mark.asyncio
    async def test_cleanup_runs_both_routines(self, db_session, job_environment, user):
        make_notification(
            db_session,
            user.id,
            status=NotificationStatus.SENT,
            created_ago=timedelta(days=2),
            expires_in=timedelta(days=-1),
        )
        make_notification(db_session, user.id, created_ago=timedelta(hours=48))

        result = await _async_daily_notification_cleanup("cleanup_test")

        assert result["success"] is True
        assert result["expired_deleted"] == 1
        assert result["stale_failed"] == 1


class TestWelcomeChecker:
    """Test the reserved welcome hook."""

    @pytest.mark.asyncio
    async def test_welcome_checker_does_nothing(self, db_session, job_environment, user):
        result = await _async_welcome_notification_checker("welcome_test")

        assert result == {"success": True, "processed_count": 0, "request_id": "welcome_test"}
        assert db_session.query(Notification).count() == 0
