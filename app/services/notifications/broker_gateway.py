from typing import Any, Dict, Optional

from celery import Celery
from kombu import Exchange

from app.celery import celery
from app.config.broker_topology import NOTIFICATION_TOPOLOGY, notification_exchange
from app.config.settings import settings
from app.db.models import Notification
from app.schemas.notification_schemas import NotificationMessage
from app.utils.errors import BrokerPublishError
from app.utils.logging import get_logger

logger = get_logger()

CONSUMER_TASK_NAME = (
    "app.tasks.background.notification_consumer.consume_notification_task"
)


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    """Full record as a camelCase JSON document."""
    return NotificationMessage.model_validate(notification).model_dump(
        mode="json", by_alias=True
    )


class BrokerGateway:
    """
    Publishes notifications to RabbitMQ through an injected Celery app.

    The Celery app owns the long-lived connection pool; each publish borrows a
    producer for the duration of the call and always hands it back.
    """

    def __init__(
        self,
        celery_app: Celery,
        exchange: Exchange = notification_exchange,
        routing_key: str = settings.NOTIFICATION_ROUTING_KEY,
    ):
        self.app = celery_app
        self.exchange = exchange
        self.routing_key = routing_key

    def publish(
        self, notification: Notification, request_id: Optional[str] = None
    ) -> str:
        """
        Hand the notification to the broker.

        Returns the id of the consumer task message. Any broker or
        serialization error is raised as BrokerPublishError.
        """
        try:
            payload = serialize_notification(notification)

            with self.app.producer_or_acquire() as producer:
                result = self.app.send_task(
                    CONSUMER_TASK_NAME,
                    kwargs={
                        "request_id": request_id or f"publish_{notification.id}",
                        "notification": payload,
                    },
                    exchange=self.exchange,
                    routing_key=self.routing_key,
                    producer=producer,
                    declare=list(NOTIFICATION_TOPOLOGY),
                    retry=True,
                    retry_policy={
                        "max_retries": settings.BROKER_PUBLISH_MAX_RETRIES,
                        "interval_start": 0,
                        "interval_step": 0.5,
                        "interval_max": 2,
                    },
                )
        except Exception as e:
            logger.error(
                f"Failed to publish notification {notification.id} to "
                f"{self.exchange.name}/{self.routing_key}: {str(e)}"
            )
            raise BrokerPublishError(
                f"Failed to send notification to queue: {str(e)}",
                notification_id=notification.id,
            ) from e

        logger.info(
            f"Published notification {notification.id} "
            f"(type={notification.type.value}) as message {result.id}"
        )
        return result.id

    def declare_topology(self) -> None:
        """Declare exchanges, queues and bindings of the notification pipeline."""
        with self.app.connection_for_write() as connection:
            connection.ensure_connection(
                max_retries=settings.BROKER_PUBLISH_MAX_RETRIES
            )
            channel = connection.default_channel
            for queue in NOTIFICATION_TOPOLOGY:
                queue(channel).declare()
                logger.info(
                    f"Declared queue {queue.name} on exchange {queue.exchange.name} "
                    f"(routing key {queue.routing_key})"
                )


notification_broker = BrokerGateway(celery)
