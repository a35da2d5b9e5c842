from .birthday_notification_sender import send_birthday_notification_task

__all__ = [
    "send_birthday_notification_task",
]
