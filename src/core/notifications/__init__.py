from src.core.notifications.queue import (
    LoggingSender,
    Notification,
    NotificationQueue,
    NotificationSender,
    get_notification_queue,
    notification_queue,
)
from src.core.notifications.receipts import (
    build_fee_reminder,
    build_payment_failure,
    build_payment_receipt,
)

__all__ = [
    "LoggingSender",
    "Notification",
    "NotificationQueue",
    "NotificationSender",
    "build_fee_reminder",
    "build_payment_failure",
    "build_payment_receipt",
    "get_notification_queue",
    "notification_queue",
]
