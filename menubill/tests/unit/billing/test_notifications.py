"""Tests for notification fan-out and sinks."""

import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest

from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.notifications.sinks import LogSink, SlackSink, build_slack_blocks
from menubill.src.billing.notifications.types import (
    Notification,
    NotificationField,
    NotificationSeverity,
    NotificationSink,
)


def make_sink(name: str, error: Exception = None):
    sink = AsyncMock(spec=NotificationSink)
    sink.name = name
    if error is not None:
        sink.send.side_effect = error
    return sink


def make_notification(**overrides) -> Notification:
    values = dict(
        title="Checkout link issued",
        message="A new checkout link was issued for user user-1.",
        fields=[NotificationField("Plan", "Basic (basic)")],
    )
    values.update(overrides)
    return Notification(**values)


class TestFanout:
    """Tests for best-effort delivery."""

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self):
        """Test one failing sink neither stops the other sinks nor reaches the caller."""
        first = make_sink("first")
        broken = make_sink("broken", RuntimeError("channel_not_found"))
        last = make_sink("last")
        fanout = NotificationFanout([first, broken, last])
        notification = make_notification()

        delivered = await fanout.notify(notification)

        assert delivered == 2
        first.send.assert_awaited_once_with(notification)
        broken.send.assert_awaited_once_with(notification)
        last.send.assert_awaited_once_with(notification)

    @pytest.mark.asyncio
    async def test_no_sinks(self):
        assert await NotificationFanout().notify(make_notification()) == 0

    @pytest.mark.asyncio
    async def test_add_sink(self):
        fanout = NotificationFanout()
        sink = make_sink("late")
        fanout.add_sink(sink)

        assert await fanout.notify(make_notification()) == 1
        assert [s.name for s in fanout.sinks] == ["late"]


class TestSinks:
    """Tests for the Slack and log sinks."""

    @pytest.mark.asyncio
    async def test_log_sink(self, caplog):
        sink = LogSink()

        with caplog.at_level(logging.WARNING, logger="menubill.notifications"):
            await sink.send(make_notification(title="Subscription canceled", severity=NotificationSeverity.WARNING))

        assert "Subscription canceled" in caplog.text
        assert "Plan=Basic (basic)" in caplog.text

    @pytest.mark.asyncio
    async def test_slack_sink_posts_blocks(self):
        captured = {}

        def respond(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(respond)) as http:
            sink = SlackSink(http, bot_token="xoxb-test", channel_id="C123")
            await sink.send(make_notification())

        assert captured["auth"] == "Bearer xoxb-test"
        assert captured["body"]["channel"] == "C123"
        assert captured["body"]["blocks"][0]["type"] == "header"

    @pytest.mark.asyncio
    async def test_slack_api_error_raises(self):
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "error": "not_in_channel"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(respond)) as http:
            sink = SlackSink(http, bot_token="xoxb-test", channel_id="C123")
            with pytest.raises(RuntimeError, match="not_in_channel"):
                await sink.send(make_notification())

    def test_slack_blocks_cap_fields(self):
        notification = make_notification(
            fields=[NotificationField(f"Field {i}", str(i)) for i in range(12)],
            context="retry later",
        )

        blocks = build_slack_blocks(notification)

        assert len(blocks[2]["fields"]) == 10
        assert blocks[-1]["text"]["text"] == "*Context:* retry later"
