"""
Notification Sinks

Slack (Web API ``chat.postMessage`` with Block Kit) and structured log output.
"""

import logging
from typing import Any, Dict, List

import httpx

from .types import Notification, NotificationSeverity, NotificationSink

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    NotificationSeverity.INFO: ":information_source:",
    NotificationSeverity.SUCCESS: ":white_check_mark:",
    NotificationSeverity.WARNING: ":warning:",
    NotificationSeverity.ERROR: ":rotating_light:",
}

SEVERITY_LOG_LEVEL = {
    NotificationSeverity.INFO: logging.INFO,
    NotificationSeverity.SUCCESS: logging.INFO,
    NotificationSeverity.WARNING: logging.WARNING,
    NotificationSeverity.ERROR: logging.ERROR,
}


class LogSink(NotificationSink):
    """Writes notifications to the application log."""

    name = "log"

    def __init__(self, logger_name: str = "menubill.notifications"):
        self._logger = logging.getLogger(logger_name)

    async def send(self, notification: Notification) -> None:
        fields = ", ".join(f"{f.label}={f.value}" for f in notification.fields)
        self._logger.log(
            SEVERITY_LOG_LEVEL[notification.severity],
            f"[{notification.type.value}] {notification.title}: {notification.message}"
            + (f" ({fields})" if fields else ""),
        )


def build_slack_blocks(notification: Notification) -> List[Dict[str, Any]]:
    emoji = SEVERITY_EMOJI[notification.severity]
    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": f"{emoji} {notification.title}", "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
    ]
    if notification.fields:
        # Slack caps a section at 10 fields
        blocks.append({
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*{f.label}:*\n{f.value}"}
                for f in notification.fields[:10]
            ],
        })
    if notification.context:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Context:* {notification.context}"}})
    return blocks


class SlackSink(NotificationSink):
    """
    Posts notifications to a Slack channel.

    Args:
        http: Shared httpx client
        bot_token: Slack bot token (xoxb-...)
        channel_id: Destination channel
        api_url: chat.postMessage endpoint
    """

    name = "slack"

    def __init__(
        self,
        http: httpx.AsyncClient,
        bot_token: str,
        channel_id: str,
        api_url: str = "https://slack.com/api/chat.postMessage",
    ):
        self._http = http
        self._bot_token = bot_token
        self._channel_id = channel_id
        self._api_url = api_url

    async def send(self, notification: Notification) -> None:
        emoji = SEVERITY_EMOJI[notification.severity]
        response = await self._http.post(
            self._api_url,
            headers={"Authorization": f"Bearer {self._bot_token}"},
            json={
                "channel": self._channel_id,
                "text": f"{emoji} {notification.title}: {notification.message}",
                "blocks": build_slack_blocks(notification),
            },
        )
        response.raise_for_status()
        body = response.json()
        # Slack answers 200 with ok=false on API errors
        if not body.get("ok"):
            raise RuntimeError(f"Slack API error: {body.get('error', 'unknown')}")
