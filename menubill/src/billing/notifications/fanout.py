"""
Notification Fan-out

Best-effort broadcast of lifecycle notifications to every registered sink.
Sinks run concurrently; a failing sink is logged and never affects the
others or the caller. No retries, no ordering across sinks.
"""

import asyncio
import logging
from typing import Iterable, List, Optional

from .types import Notification, NotificationSink

logger = logging.getLogger(__name__)


class NotificationFanout:
    def __init__(self, sinks: Optional[Iterable[NotificationSink]] = None):
        self._sinks: List[NotificationSink] = list(sinks or [])

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> List[NotificationSink]:
        return list(self._sinks)

    async def _deliver(self, sink: NotificationSink, notification: Notification) -> bool:
        try:
            await sink.send(notification)
            return True
        except Exception as e:
            logger.error(f"[NOTIFY] Sink {sink.name} failed for '{notification.title}': {e}", exc_info=True)
            return False

    async def notify(self, notification: Notification) -> int:
        """
        Send ``notification`` to all sinks.

        Returns:
            Number of sinks that accepted it
        """
        if not self._sinks:
            logger.debug(f"[NOTIFY] No sinks registered, dropping '{notification.title}'")
            return 0

        results = await asyncio.gather(*(self._deliver(sink, notification) for sink in self._sinks))
        return sum(1 for delivered in results if delivered)
