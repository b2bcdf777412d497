from datetime import timedelta

from celery.schedules import crontab
from .settings import settings
from .broker_topology import default_queue, notification_queue

# Basic Celery Configuration
broker_url = settings.BROKER_URL
result_backend = settings.REDIS_URL

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = settings.TIMEZONE
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Delivery guarantees: ack only after the consumer finished, so a crashed or
# rejecting worker hands the message back to RabbitMQ (requeue or dead-letter).
task_acks_late = True
task_reject_on_worker_lost = True

# Queue topology. The DLQ is consumed by a dedicated consumer bootstep,
# not by the task pool, so it is not listed here.
task_queues = (default_queue, notification_queue)
task_default_queue = settings.DEFAULT_QUEUE_NAME
task_default_exchange = settings.DEFAULT_QUEUE_NAME
task_default_routing_key = settings.DEFAULT_QUEUE_NAME
task_routes = {
    "app.tasks.background.notification_consumer.consume_notification_task": {
        "queue": settings.NOTIFICATION_QUEUE_NAME,
        "exchange": settings.NOTIFICATION_EXCHANGE_NAME,
        "routing_key": settings.NOTIFICATION_ROUTING_KEY,
    },
}

beat_schedule = {
    # Overdue todo scan - fixed rate, hourly by default
    "overdue-todo-scanner": {
        "task": "app.tasks.cron.overdue_todo_scanner.overdue_todo_scanner_task",
        "schedule": timedelta(minutes=settings.OVERDUE_SCAN_INTERVAL_MINUTES),
        "args": ("overdue_todo_scanner_cron",),
    },
    # Due-soon todo scan - fixed rate, every 6 hours by default
    "due-soon-todo-scanner": {
        "task": "app.tasks.cron.due_soon_todo_scanner.due_soon_todo_scanner_task",
        "schedule": timedelta(hours=settings.DUE_SOON_SCAN_INTERVAL_HOURS),
        "args": ("due_soon_todo_scanner_cron",),
    },
    # Daily maintenance - expired and stale pending notifications, 2:00 AM
    "daily-notification-cleanup": {
        "task": "app.tasks.cron.daily_notification_cleanup.daily_notification_cleanup_task",
        "schedule": crontab(hour=settings.CLEANUP_HOUR, minute=settings.CLEANUP_MINUTE),
        "args": ("daily_notification_cleanup_cron",),
    },
    # New-user welcome hook - every 5 minutes
    "welcome-notification-checker": {
        "task": "app.tasks.cron.welcome_notification_checker.welcome_notification_checker_task",
        "schedule": timedelta(minutes=settings.WELCOME_CHECK_INTERVAL_MINUTES),
        "args": ("welcome_notification_checker_cron",),
    },
}

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
