"""Notification delivery: sink port, adapters, and subscription routing."""

from .errors import DispatchError, SinkConfigError
from .filesystem_sink import FilesystemNotificationSink
from .registry import SubscriptionRegistry
from .sink import DeliveryOutcome, NotificationSink
from .telegram_sink import TelegramConfig, TelegramNotificationSink

__all__ = [
    "DeliveryOutcome",
    "DispatchError",
    "FilesystemNotificationSink",
    "NotificationSink",
    "SinkConfigError",
    "SubscriptionRegistry",
    "TelegramConfig",
    "TelegramNotificationSink",
]
