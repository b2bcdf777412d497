import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from celery.exceptions import Reject

from app.db.models import Notification, NotificationStatus
from app.services.notifications import serialize_notification
from app.tasks.background.dead_letter_consumer import (
    DeadLetterConsumerStep,
    extract_notification_payload,
)
from app.tasks.background.notification_consumer import (
    consume_notification_task,
    should_requeue,
)

from tests.conftest import make_notification


def _session_provider(db_session):
    def provider():
        yield db_session

    return provider


class TestRequeuePolicy:
    """Test requeue vs dead-letter decisions."""

    def test_default_policy_dead_letters(self):
        assert should_requeue({"redelivered": False}) is False

    def test_enabled_policy_requeues_first_delivery_only(self, monkeypatch):
        monkeypatch.setattr(
            "app.tasks.background.notification_consumer.settings.NOTIFICATION_REQUEUE_ON_FAILURE",
            True,
        )

        assert should_requeue({"redelivered": False}) is True
        assert should_requeue({"redelivered": True}) is False
        assert should_requeue(None) is True


class TestMainQueueConsumer:
    """Test the Celery task consuming the main notification queue."""

    def test_successful_message_marks_sent(self, db_session, user):
        notification = make_notification(db_session, user.id)

        with patch(
            "app.tasks.background.notification_consumer.get_sync_session",
            _session_provider(db_session),
        ), patch(
            "app.services.notifications.notification_service.settings.NOTIFICATION_DELIVERY_DELAY_SECONDS",
            0,
        ):
            result = consume_notification_task.run(
                request_id="req-1", notification=serialize_notification(notification)
            )

        assert result["success"] is True
        assert result["status"] == "SENT"
        assert db_session.get(Notification, notification.id).status == NotificationStatus.SENT

    def test_processing_error_is_rejected_without_requeue(self, db_session, user):
        notification = make_notification(db_session, user.id)
        payload = serialize_notification(notification)
        payload["id"] = "missing"

        with patch(
            "app.tasks.background.notification_consumer.get_sync_session",
            _session_provider(db_session),
        ):
            with pytest.raises(Reject) as exc_info:
                consume_notification_task.run(request_id="req-2", notification=payload)

        assert exc_info.value.requeue is False

    def test_redelivered_message_is_not_requeued_again(self, db_session, user, monkeypatch):
        monkeypatch.setattr(
            "app.tasks.background.notification_consumer.settings.NOTIFICATION_REQUEUE_ON_FAILURE",
            True,
        )
        notification = make_notification(db_session, user.id)

        consume_notification_task.push_request(delivery_info={"redelivered": True})
        try:
            with patch(
                "app.tasks.background.notification_consumer.get_sync_session",
                _session_provider(db_session),
            ):
                with pytest.raises(Reject) as exc_info:
                    consume_notification_task.run(
                        request_id="req-3", notification={"id": notification.id}
                    )
        finally:
            consume_notification_task.pop_request()

        assert exc_info.value.requeue is False
        assert db_session.get(Notification, notification.id).status == NotificationStatus.FAILED

    def test_requeued_failure_is_sent_on_redelivery(self, db_session, user, monkeypatch):
        monkeypatch.setattr(
            "app.tasks.background.notification_consumer.settings.NOTIFICATION_REQUEUE_ON_FAILURE",
            True,
        )
        notification = make_notification(db_session, user.id)
        payload = serialize_notification(notification)

        with patch(
            "app.tasks.background.notification_consumer.get_sync_session",
            _session_provider(db_session),
        ), patch(
            "app.services.notifications.notification_service.settings.NOTIFICATION_DELIVERY_DELAY_SECONDS",
            0,
        ):
            with patch(
                "app.services.notifications.notification_service.NotificationService._deliver",
                AsyncMock(side_effect=RuntimeError("push gateway down")),
            ):
                with pytest.raises(Reject) as exc_info:
                    consume_notification_task.run(request_id="req-4", notification=payload)

            assert exc_info.value.requeue is True
            assert db_session.get(Notification, notification.id).status == NotificationStatus.PENDING

            consume_notification_task.push_request(delivery_info={"redelivered": True})
            try:
                result = consume_notification_task.run(request_id="req-4", notification=payload)
            finally:
                consume_notification_task.pop_request()

        assert result["status"] == "SENT"
        stored = db_session.get(Notification, notification.id)
        assert stored.status == NotificationStatus.SENT
        assert stored.sent_at is not None


class TestDeadLetterPayload:
    """Test decoding of dead-lettered Celery messages."""

    def test_protocol_2_body(self):
        body = [[], {"request_id": "req", "notification": {"id": "n1"}}, {}]

        assert extract_notification_payload(body) == ({"id": "n1"}, "req")

    def test_protocol_1_body(self):
        body = {"task": "x", "kwargs": {"notification": {"id": "n2"}}}

        assert extract_notification_payload(body) == ({"id": "n2"}, None)

    def test_bare_document(self):
        assert extract_notification_payload({"id": "n3"}) == ({"id": "n3"}, None)

    def test_unrecognised_body(self):
        with pytest.raises(ValueError):
            extract_notification_payload("garbage")
        with pytest.raises(ValueError):
            extract_notification_payload([[], {"request_id": "req"}, {}])


class TestDeadLetterConsumer:
    """Test the DLQ consumer bootstep."""

    def test_dead_letter_marks_failed_and_acks(self, db_session, user):
        notification = make_notification(db_session, user.id)
        body = [[], {"request_id": "req", "notification": serialize_notification(notification)}, {}]
        message = MagicMock()

        with patch(
            "app.tasks.background.dead_letter_consumer.get_sync_session",
            _session_provider(db_session),
        ):
            DeadLetterConsumerStep(MagicMock()).handle_message(body, message)

        message.ack.assert_called_once()
        assert db_session.get(Notification, notification.id).status == NotificationStatus.FAILED

    def test_poison_message_is_still_acked(self):
        message = MagicMock()

        DeadLetterConsumerStep(MagicMock()).handle_message("garbage", message)

        message.ack.assert_called_once()

    def test_consumer_reads_dead_letter_queue(self):
        channel = MagicMock()

        consumers = DeadLetterConsumerStep(MagicMock()).get_consumers(channel)

        assert [queue.name for queue in consumers[0].queues] == ["notification.dlq"]
