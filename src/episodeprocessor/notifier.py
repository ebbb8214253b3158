"""
Discord webhook notifier for Episode Processor.
Sends and edits webhook messages; failures are collected instead of raised.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Union

import aiohttp

from .errors import NotificationError
from .logger import get_logger


ANSI_RE = re.compile(r'\x1b\[\d+m')

Message = Union[str, Dict[str, Any]]


class DiscordWebhook:
    """
    Discord webhook client.

    An empty webhook URL turns every call into a no-op returning None.
    """

    def __init__(self, webhook_url: str = "", ping: str = "", timeout: float = 30.0):
        """
        Args:
            webhook_url: Discord webhook URL, empty to disable.
            ping: User ID mentioned on messages posted with ping=True.
            timeout: Request timeout in seconds.
        """
        self.webhook_url = webhook_url
        self.ping = ping
        self.timeout = timeout
        self.errors: List[NotificationError] = []

        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = get_logger('discord')

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def connect(self) -> None:
        """Open a shared HTTP session."""
        if self._session is None and self.enabled:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self) -> None:
        """Close session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> 'DiscordWebhook':
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def build_payload(self, message: Message, log: Optional[str] = None, ping: bool = False) -> Dict[str, Any]:
        """Turn a text message (plus optional log block) into a webhook payload."""
        if not isinstance(message, str):
            return message

        content = message
        if log:
            content += "\n```\n" + ANSI_RE.sub('', log) + "```"
        if ping and self.ping:
            content += f"\n<@{self.ping}>"
        return {'content': content}

    async def post(
        self,
        message: Message,
        log: Optional[str] = None,
        ping: bool = False,
        message_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Post a new message, or edit `message_id`.

        Returns:
            Message ID, or None when disabled or on failure.
        """
        if not self.enabled:
            return None

        payload = self.build_payload(message, log, ping)
        url = self.webhook_url
        method = 'POST'
        if message_id:
            url += f"/messages/{message_id}"
            method = 'PATCH'

        try:
            data = await self._request(method, url, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, NotificationError) as e:
            error = e if isinstance(e, NotificationError) else NotificationError(f"Webhook {method} failed: {e}")
            self.errors.append(error)
            self._logger.warning(str(error))
            return None

        if isinstance(data, dict) and data.get('id') is not None:
            return str(data['id'])
        return message_id

    async def send(self, message: Message, log: Optional[str] = None, ping: bool = False) -> Optional[str]:
        return await self.post(message, log, ping)

    async def edit(self, message_id: str, message: Message, log: Optional[str] = None) -> Optional[str]:
        return await self.post(message, log, message_id=message_id)

    async def _request(self, method: str, url: str, payload: Dict[str, Any]) -> Optional[dict]:
        if self._session is not None:
            return await self._do_request(self._session, method, url, payload)

        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            return await self._do_request(session, method, url, payload)

    async def _do_request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        payload: Dict[str, Any]
    ) -> Optional[dict]:
        async with session.request(method, url, params={'wait': 'true'}, json=payload) as resp:
            if resp.status >= 400:
                text = await resp.text()
                raise NotificationError(f"Webhook {method} failed: {resp.status} {text[:200]}")
            if resp.status == 204:
                return None
            return await resp.json()
