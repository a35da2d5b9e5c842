from datetime import timedelta

from .settings import settings

# Basic Celery Configuration
broker_url = settings.REDIS_URL
result_backend = settings.REDIS_URL

# Task Discovery
include = ["app.tasks"]

# Timezone Configuration
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 5 * 60  # 5 minutes
task_soft_time_limit = 4 * 60  # 4 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# At-least-once delivery: ack only after the task body returns
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = settings.DELIVERY_RETRY_DELAY_SECONDS
task_max_retries = settings.DELIVERY_MAX_RETRIES

# Exponential Backoff Settings
task_retry_backoff = True
task_retry_backoff_max = 700  # Max 700 seconds
task_retry_jitter = False

# Unacked messages are redelivered after this window
broker_transport_options = {"visibility_timeout": 60 * 60}

beat_schedule = {
    # Occurrence scan - every SCAN_INTERVAL_SECONDS
    "birthday-reminder-scanner": {
        "task": "app.tasks.cron.birthday_reminder_scanner.birthday_reminder_scanner_task",
        "schedule": timedelta(seconds=settings.SCAN_INTERVAL_SECONDS),
        "args": ("birthday_reminder_scanner_cron",),
    },
}

# Default Queue
task_default_queue = settings.NOTIFIER_QUEUE_NAME

# Beat Scheduler Configuration
beat_schedule_filename = "celerybeat-schedule"
