import asyncio
from typing import Any, Dict, Optional, Tuple

from celery import bootsteps
from kombu import Consumer

from app.celery import celery
from app.config.broker_topology import dead_letter_queue
from app.db.session import get_sync_session
from app.services.notifications import NotificationService
from app.utils.context import set_request_id
from app.utils.logging import get_logger

logger = get_logger()


def extract_notification_payload(body: Any) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Pull the notification document and request id out of a dead-lettered
    Celery task message.

    Celery's message protocol 2 sends ``[args, kwargs, embed]`` as the body,
    protocol 1 sends a dict carrying ``kwargs``. A bare notification document
    is accepted as well.
    """
    if isinstance(body, (list, tuple)) and len(body) >= 2:
        kwargs = body[1] or {}
    elif isinstance(body, dict) and "kwargs" in body:
        kwargs = body["kwargs"] or {}
    elif isinstance(body, dict) and "id" in body:
        return body, None
    else:
        raise ValueError(f"Unrecognised dead-letter message body: {type(body).__name__}")

    notification = kwargs.get("notification")
    if not isinstance(notification, dict):
        raise ValueError("Dead-letter message carries no notification document")
    return notification, kwargs.get("request_id")


async def _async_consume_dead_letter(request_id: str, payload: Dict[str, Any]):
    set_request_id(request_id)

    for db_session in get_sync_session():
        service = NotificationService(db_session)
        notification = await service.consume_dead_letter(payload)
        return {
            "success": True,
            "notification_id": notification.id if notification else payload.get("id"),
            "request_id": request_id,
        }


class DeadLetterConsumerStep(bootsteps.ConsumerStep):
    """
    Worker consumer bootstep reading the notification dead-letter queue.

    Dead-lettered messages are terminal: the record is forced to FAILED and
    the message is acknowledged whatever the outcome, never re-published.
    """

    def get_consumers(self, channel):
        return [
            Consumer(
                channel,
                queues=[dead_letter_queue],
                callbacks=[self.handle_message],
                accept=["json"],
            )
        ]

    def handle_message(self, body, message):
        try:
            payload, request_id = extract_notification_payload(body)
            request_id = request_id or f"dlq_{payload.get('id')}"
            result = asyncio.run(_async_consume_dead_letter(request_id, payload))
            logger.info(f"Dead-letter message handled: {result}")
        except Exception as e:
            # Nothing upstream can act on a poison dead letter
            logger.error(f"Failed to handle dead-letter message: {str(e)}")
        finally:
            message.ack()


celery.steps["consumer"].add(DeadLetterConsumerStep)
