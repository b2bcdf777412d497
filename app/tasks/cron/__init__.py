from .overdue_todo_scanner import overdue_todo_scanner_task
from .due_soon_todo_scanner import due_soon_todo_scanner_task
from .daily_notification_cleanup import daily_notification_cleanup_task
from .welcome_notification_checker import welcome_notification_checker_task

__all__ = [
    "overdue_todo_scanner_task",
    "due_soon_todo_scanner_task",
    "daily_notification_cleanup_task",
    "welcome_notification_checker_task",
]
