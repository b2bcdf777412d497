from .notification_store import NotificationStore
from .broker_gateway import BrokerGateway, notification_broker, serialize_notification
from .notification_service import NotificationService

__all__ = [
    "NotificationStore",
    "BrokerGateway",
    "notification_broker",
    "serialize_notification",
    "NotificationService",
]
