from .fanout import NotificationFanout
from .sinks import LogSink, SlackSink
from .types import (
    Notification,
    NotificationField,
    NotificationSeverity,
    NotificationSink,
    NotificationType,
)

__all__ = [
    'LogSink',
    'Notification',
    'NotificationFanout',
    'NotificationField',
    'NotificationSeverity',
    'NotificationSink',
    'NotificationType',
    'SlackSink',
]
