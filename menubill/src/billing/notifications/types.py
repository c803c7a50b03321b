"""
Notification Types

The notification payload handed to every sink, and the sink interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from menubill.utils.timezone import timezone


class NotificationSeverity(Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class NotificationType(Enum):
    PAYMENT = "PAYMENT"
    CUSTOMER = "CUSTOMER"
    SUBSCRIPTION = "SUBSCRIPTION"
    INVOICE = "INVOICE"
    GENERAL = "GENERAL"


@dataclass(frozen=True)
class NotificationField:
    label: str
    value: str


@dataclass
class Notification:
    """
    A lifecycle event rendered for humans.

    Attributes:
        title: Short headline
        message: One-paragraph body
        severity: Drives emoji / log level in sinks
        type: Business area the event belongs to
        fields: Label/value pairs shown as a table
        context: Optional trailing context line
    """
    title: str
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    type: NotificationType = NotificationType.GENERAL
    fields: List[NotificationField] = field(default_factory=list)
    context: Optional[str] = None
    timestamp: datetime = field(default_factory=timezone.now)


class NotificationSink(ABC):
    """A destination for notifications (Slack, logs, ...)."""

    name: str = "sink"

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver one notification. May raise; the fan-out isolates failures."""
