from .birthday_reminder_scanner import birthday_reminder_scanner_task

__all__ = [
    "birthday_reminder_scanner_task",
]
