"""Tests for the Discord webhook notifier."""

import json
import unittest
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from episodeprocessor.errors import NotificationError
from episodeprocessor.notifier import DiscordWebhook

pytestmark = [pytest.mark.unit]

WEBHOOK = "https://discord.example.com/api/webhooks/1/token"


class TestBuildPayload(unittest.TestCase):
    """Test payload construction."""

    def test_plain_message(self):
        webhook = DiscordWebhook(WEBHOOK)
        self.assertEqual(webhook.build_payload("hello"), {"content": "hello"})

    def test_log_block_strips_ansi(self):
        webhook = DiscordWebhook(WEBHOOK)
        payload = webhook.build_payload("Failed", log="\x1b[31mbroken\x1b[0m\n")
        self.assertEqual(payload["content"], "Failed\n```\nbroken\n```")

    def test_ping_appends_mention(self):
        webhook = DiscordWebhook(WEBHOOK, ping="1234")
        self.assertEqual(webhook.build_payload("done", ping=True)["content"], "done\n<@1234>")
        self.assertEqual(webhook.build_payload("done")["content"], "done")

    def test_ping_without_user_is_ignored(self):
        webhook = DiscordWebhook(WEBHOOK)
        self.assertEqual(webhook.build_payload("done", ping=True)["content"], "done")

    def test_dict_passes_through(self):
        message = {"embeds": [{"title": "AA001_1"}]}
        self.assertIs(DiscordWebhook(WEBHOOK).build_payload(message, log="ignored"), message)


class TestPost(unittest.IsolatedAsyncioTestCase):
    """Test sending and editing."""

    async def test_disabled_is_noop(self):
        webhook = DiscordWebhook("")
        with patch.object(webhook, "_request", new=AsyncMock()) as request:
            self.assertIsNone(await webhook.send("hello"))
            self.assertIsNone(await webhook.edit("42", "hello"))
        request.assert_not_called()
        self.assertFalse(webhook.enabled)

    async def test_send_returns_message_id(self):
        webhook = DiscordWebhook(WEBHOOK)
        with patch.object(webhook, "_request", new=AsyncMock(return_value={"id": 42})) as request:
            message_id = await webhook.send("hello")

        self.assertEqual(message_id, "42")
        request.assert_awaited_once_with("POST", WEBHOOK, {"content": "hello"})

    async def test_edit_patches_message(self):
        webhook = DiscordWebhook(WEBHOOK)
        with patch.object(webhook, "_request", new=AsyncMock(return_value=None)) as request:
            message_id = await webhook.edit("42", "status", log="body")

        self.assertEqual(message_id, "42")
        request.assert_awaited_once_with(
            "PATCH", f"{WEBHOOK}/messages/42", {"content": "status\n```\nbody```"}
        )

    async def test_connection_error_is_recorded(self):
        webhook = DiscordWebhook(WEBHOOK)
        failing = AsyncMock(side_effect=aiohttp.ClientConnectionError("refused"))
        with patch.object(webhook, "_request", new=failing):
            self.assertIsNone(await webhook.send("hello"))

        self.assertEqual(len(webhook.errors), 1)
        self.assertIsInstance(webhook.errors[0], NotificationError)
        self.assertIn("refused", str(webhook.errors[0]))

    async def test_http_error_is_recorded(self):
        webhook = DiscordWebhook(WEBHOOK)
        failing = AsyncMock(side_effect=NotificationError("Webhook POST failed: 400 bad"))
        with patch.object(webhook, "_request", new=failing):
            self.assertIsNone(await webhook.send("hello"))
            self.assertIsNone(await webhook.send("again"))

        self.assertEqual([str(e) for e in webhook.errors], ["Webhook POST failed: 400 bad"] * 2)

    async def test_context_manager_opens_and_closes_session(self):
        async with DiscordWebhook(WEBHOOK) as webhook:
            self.assertIsNotNone(webhook._session)
        self.assertIsNone(webhook._session)

    async def test_malformed_response_body_is_recorded(self):
        webhook = DiscordWebhook(WEBHOOK)
        broken = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        with patch.object(webhook, "_request", new=broken):
            self.assertIsNone(await webhook.send("hello"))

        self.assertEqual(len(webhook.errors), 1)
        self.assertIsInstance(webhook.errors[0], NotificationError)

    async def test_non_mapping_response_body(self):
        webhook = DiscordWebhook(WEBHOOK)
        with patch.object(webhook, "_request", new=AsyncMock(return_value=["unexpected"])):
            self.assertIsNone(await webhook.send("hello"))
            self.assertEqual(await webhook.edit("42", "status"), "42")

        self.assertEqual(webhook.errors, [])
