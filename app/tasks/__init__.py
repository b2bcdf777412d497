from .background import *
from .cron import *

__all__ = [
    # Queue consumers
    "consume_notification_task",
    "DeadLetterConsumerStep",
    # Scheduled/Cron Tasks
    "overdue_todo_scanner_task",
    "due_soon_todo_scanner_task",
    "daily_notification_cleanup_task",
    "welcome_notification_checker_task",
]
