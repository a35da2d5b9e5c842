from .background import *
from .cron import *

__all__ = [
    # Background Tasks
    "send_birthday_notification_task",
    # Scheduled/Cron Tasks
    "birthday_reminder_scanner_task",
]
