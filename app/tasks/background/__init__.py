from .notification_consumer import consume_notification_task
from .dead_letter_consumer import DeadLetterConsumerStep

__all__ = [
    "consume_notification_task",
    "DeadLetterConsumerStep",
]
