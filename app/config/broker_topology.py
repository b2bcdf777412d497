from kombu import Exchange, Queue

from .settings import settings

# Notification pipeline: topic exchange -> durable main queue, dead-lettered on
# reject or TTL expiry into a durable DLQ bound to its own topic exchange.
notification_exchange = Exchange(
    settings.NOTIFICATION_EXCHANGE_NAME, type="topic", durable=True
)
dead_letter_exchange = Exchange(settings.NOTIFICATION_DLX_NAME, type="topic", durable=True)

notification_queue = Queue(
    settings.NOTIFICATION_QUEUE_NAME,
    exchange=notification_exchange,
    routing_key=settings.NOTIFICATION_ROUTING_KEY,
    durable=True,
    queue_arguments={
        "x-dead-letter-exchange": settings.NOTIFICATION_DLX_NAME,
        "x-dead-letter-routing-key": settings.NOTIFICATION_DLQ_ROUTING_KEY,
        "x-message-ttl": settings.NOTIFICATION_MESSAGE_TTL_MS,
    },
)

dead_letter_queue = Queue(
    settings.NOTIFICATION_DLQ_NAME,
    exchange=dead_letter_exchange,
    routing_key=settings.NOTIFICATION_DLQ_ROUTING_KEY,
    durable=True,
)

# Scheduler jobs and other housekeeping tasks
default_exchange = Exchange(settings.DEFAULT_QUEUE_NAME, type="direct", durable=True)
default_queue = Queue(
    settings.DEFAULT_QUEUE_NAME,
    exchange=default_exchange,
    routing_key=settings.DEFAULT_QUEUE_NAME,
    durable=True,
)

NOTIFICATION_TOPOLOGY = (notification_queue, dead_letter_queue)
