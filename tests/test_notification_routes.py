from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.config.settings import settings
from app.db.models import Notification, NotificationStatus, NotificationType
from app.db.session import get_sync_session
from app.main import create_application
from app.routers.notifications import get_notification_service
from app.services.notifications import NotificationService
from app.utils.auth import AuthUtils

from tests.conftest import make_notification, make_user
from tests.fakes import FakeBroker

BASE = f"{settings.API_PREFIX}/notifications"


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def client(db_session, broker):
    """TestClient on the real app, with the DB and broker swapped for test doubles."""

    def session_provider():
        yield db_session

    application = create_application()
    application.dependency_overrides[get_sync_session] = session_provider
    application.dependency_overrides[get_notification_service] = (
        lambda: NotificationService(db_session, broker=broker, delivery_delay=0)
    )

    with patch("app.middlewares.auth_middleware.get_sync_session", session_provider):
        yield TestClient(application)


def auth_headers(user, auth_provider: str = "password") -> dict:
    token = AuthUtils.generate_access_token(
        user.id, user.username, auth_provider=auth_provider
    )
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:
    def test_missing_token_is_rejected(self, client):
        response = client.get(BASE)

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_invalid_token_is_rejected(self, client):
        response = client.get(BASE, headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["meta"]["error_code"] == "UNAUTHORIZED"

    def test_inactive_user_is_rejected(self, client, db_session):
        dormant = make_user(db_session, "dormant", is_active=False)

        response = client.get(BASE, headers=auth_headers(dormant))

        assert response.status_code == 401

    def test_database_outage_is_server_error(self, db_session, user):
        def broken_session():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))
            yield

        application = create_application()
        with patch("app.middlewares.auth_middleware.get_sync_session", broken_session):
            response = TestClient(application, raise_server_exceptions=False).get(
                BASE, headers=auth_headers(user)
            )

        assert response.status_code == 500
        assert response.json()["meta"]["error_code"] == "INTERNAL_ERROR"

    def test_oauth2_identity_is_accepted(self, client, user, broker):
        response = client.post(
            f"{BASE}/welcome", headers=auth_headers(user, auth_provider="github")
        )

        assert response.status_code == 201
        assert response.json()["data"]["userId"] == user.id
        assert len(broker.published) == 1

    def test_health_is_public(self, client):
        response = client.get(f"{settings.API_PREFIX}/health")

        assert response.status_code == 200


class TestNotificationRoutes:
    def test_create_notification(self, client, user, broker, db_session):
        response = client.post(
            f"{BASE}/create",
            headers=auth_headers(user),
            json={
                "title": "Standup",
                "message": "Daily standup in 10 minutes",
                "type": "REMINDER",
                "priority": "HIGH",
                "metadata": {"room": "A1"},
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["userId"] == user.id
        assert data["status"] == "PENDING"
        assert data["priority"] == "HIGH"
        assert data["metadata"] == {"room": "A1"}
        assert broker.published_ids == [data["id"]]
        assert db_session.get(Notification, data["id"]) is not None

    def test_create_with_invalid_type_is_422(self, client, user):
        response = client.post(
            f"{BASE}/create",
            headers=auth_headers(user),
            json={"title": "x", "message": "y", "type": "NOT_A_TYPE"},
        )

        assert response.status_code == 422

    def test_publish_failure_is_503_and_record_failed(self, client, user, broker, db_session):
        broker.fail = True

        response = client.post(
            f"{BASE}/create",
            headers=auth_headers(user),
            json={"title": "x", "message": "y", "type": "REMINDER"},
        )

        assert response.status_code == 503
        notification_id = response.json()["meta"]["notification_id"]
        assert db_session.get(Notification, notification_id).status == NotificationStatus.FAILED

    def test_get_other_users_notification_is_404(self, client, user, other_user, db_session):
        foreign = make_notification(db_session, other_user.id)

        response = client.get(f"{BASE}/{foreign.id}", headers=auth_headers(user))

        assert response.status_code == 404

    def test_mark_as_read_and_unread_listing(self, client, user, db_session):
        first = make_notification(db_session, user.id, status=NotificationStatus.SENT)
        second = make_notification(db_session, user.id, status=NotificationStatus.SENT)

        response = client.put(f"{BASE}/{first.id}/read", headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["data"]["readAt"] is not None

        unread = client.get(f"{BASE}/unread", headers=auth_headers(user)).json()
        assert [n["id"] for n in unread["data"]] == [second.id]
        assert unread["meta"]["count"] == 1

    def test_list_by_type(self, client, user, db_session):
        make_notification(db_session, user.id, notification_type=NotificationType.TODO_OVERDUE)
        make_notification(db_session, user.id)

        response = client.get(f"{BASE}/type/TODO_OVERDUE", headers=auth_headers(user))

        assert response.status_code == 200
        assert [n["type"] for n in response.json()["data"]] == ["TODO_OVERDUE"]

    def test_stats(self, client, user, db_session):
        make_notification(db_session, user.id)
        make_notification(db_session, user.id, status=NotificationStatus.FAILED)

        data = client.get(f"{BASE}/stats", headers=auth_headers(user)).json()["data"]

        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["failed"] == 1
        assert data["byStatus"]["FAILED"] == 1

    def test_delete_twice(self, client, user, db_session):
        notification = make_notification(db_session, user.id)

        first = client.delete(f"{BASE}/{notification.id}", headers=auth_headers(user))
        second = client.delete(f"{BASE}/{notification.id}", headers=auth_headers(user))

        assert first.status_code == 200
        assert second.status_code == 200
        listing = client.get(BASE, headers=auth_headers(user)).json()
        assert listing["data"] == []


class TestAdminRoutes:
    def test_announcement_requires_admin(self, client, user):
        response = client.post(
            f"{BASE}/admin/announcement",
            headers=auth_headers(user),
            json={"title": "Maintenance", "message": "Tonight at 22:00"},
        )

        assert response.status_code == 403

    def test_announcement_to_selected_users(self, client, admin_user, user, other_user, broker):
        response = client.post(
            f"{BASE}/admin/announcement",
            headers=auth_headers(admin_user),
            json={
                "title": "Maintenance",
                "message": "Tonight at 22:00",
                "userIds": [user.id, other_user.id],
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert {n["userId"] for n in body["data"]} == {user.id, other_user.id}
        assert {n["type"] for n in body["data"]} == {"SYSTEM_ANNOUNCEMENT"}
        assert body["meta"]["failedCount"] == 0
        assert len(broker.published) == 2

    def test_announcement_defaults_to_all_active_users(
        self, client, admin_user, user, other_user, broker
    ):
        broker.fail_for_users = {other_user.id}

        response = client.post(
            f"{BASE}/admin/announcement",
            headers=auth_headers(admin_user),
            json={"title": "Hello", "message": "Everyone"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["meta"]["count"] == 3
        assert body["meta"]["failedCount"] == 1

    def test_cleanup_now(self, client, admin_user):
        response = client.post(f"{BASE}/admin/cleanup", headers=auth_headers(admin_user))

        assert response.status_code == 200
        assert response.json()["data"] == {"expiredDeleted": 0, "staleFailed": 0}
