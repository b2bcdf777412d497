import asyncio
from typing import Any, Dict, Optional

from celery.exceptions import Reject
from celery.signals import worker_ready

from app.celery import celery
from app.config.settings import settings
from app.db.session import get_sync_session
from app.services.notifications import NotificationService, notification_broker
from app.utils.context import set_request_id
from app.utils.logging import get_logger


def should_requeue(delivery_info: Optional[Dict[str, Any]]) -> bool:
    """
    Requeue policy for a message whose processing failed.

    A message is requeued at most once and only when requeueing is enabled;
    otherwise the reject sends it through the dead-letter exchange.
    """
    redelivered = bool((delivery_info or {}).get("redelivered"))
    return settings.NOTIFICATION_REQUEUE_ON_FAILURE and not redelivered


@celery.task(bind=True, acks_late=True)
def consume_notification_task(self, request_id: str, notification: Dict[str, Any]):
    """
    Main notification queue consumer.

    Delegates to NotificationService.consume_from_queue. The requeue decision
    is made up front: an attempt that will be requeued on failure leaves the
    record untouched, the final attempt marks it FAILED before the Reject
    dead-letters the message.

    Args:
        request_id: The request ID for tracking purposes
        notification: The published notification document
    """
    requeue = should_requeue(self.request.delivery_info)
    try:
        return asyncio.run(
            _async_consume_notification(
                request_id, notification, final_attempt=not requeue
            )
        )
    except Exception as e:
        get_logger().bind(request_id=request_id).error(
            f"Notification {notification.get('id')} processing failed, "
            f"rejecting with requeue={requeue}: {str(e)}"
        )
        raise Reject(str(e), requeue=requeue)


async def _async_consume_notification(
    request_id: str, payload: Dict[str, Any], final_attempt: bool = True
):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        service = NotificationService(db_session)
        notification = await service.consume_from_queue(
            payload, final_attempt=final_attempt
        )

        logger.info(
            f"Consumed notification {notification.id} with status {notification.status.value}"
        )
        return {
            "success": True,
            "notification_id": notification.id,
            "status": notification.status.value,
            "request_id": request_id,
        }


@worker_ready.connect
def declare_notification_topology(sender=None, **kwargs):
    """Make sure the exchanges, queues and bindings exist before traffic flows."""
    try:
        notification_broker.declare_topology()
    except Exception as e:
        get_logger().error(f"Could not declare notification topology: {str(e)}")
