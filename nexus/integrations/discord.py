"""
Discord Bridge - Outbound posting of agent replies to a Discord channel.
Supports a bot token + channel id or a webhook URL. Best-effort only: the
chat controllers log and swallow every failure.
"""

import asyncio
import logging
from typing import List, Optional

import requests

from ..core.config import DiscordConfig
from ..ai.errors import DiscordError

logger = logging.getLogger(__name__)

DISCORD_API = "https://discord.com/api/v10"
MESSAGE_LIMIT = 1900

def discord_chunks(text: str, limit: int = MESSAGE_LIMIT) -> List[str]:
    """Split text into pieces that fit Discord's message limit."""
    text = text or ""
    if len(text) <= limit:
        return [text]
    return [text[i:i + limit] for i in range(0, len(text), limit)]

class DiscordBridge:
    """Posts agent messages to Discord."""

    def __init__(self, config: DiscordConfig):
        self.config = config

    @property
    def bot_configured(self) -> bool:
        return bool(self.config.bot_token and self.config.channel_id)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.config.webhook_url)

    @property
    def available(self) -> bool:
        return self.config.enabled and (self.bot_configured or self.webhook_configured)

    def _post(self, url: str, payload: dict, headers: Optional[dict] = None):
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            raise DiscordError(f"Network error posting to Discord: {e}") from e

        if response.status_code == 429:
            raise DiscordError("Rate limited - please try again in a moment")
        if response.status_code >= 400:
            raise DiscordError(f"Failed to send message: {response.status_code}")

    def _send_message_sync(self, content: str, display_name: Optional[str]):
        if not self.bot_configured:
            raise DiscordError("Discord not properly configured")

        message = f"**{display_name}:** {content}" if display_name else content
        url = f"{DISCORD_API}/channels/{self.config.channel_id}/messages"
        headers = {'Authorization': f"Bot {self.config.bot_token}"}
        for chunk in discord_chunks(message):
            self._post(url, {'content': chunk}, headers=headers)

    def _send_webhook_sync(self, content: str, display_name: Optional[str], avatar_url: Optional[str]):
        if not self.webhook_configured:
            raise DiscordError("Discord webhook not configured")

        for chunk in discord_chunks(content):
            payload = {
                'content': chunk,
                'username': display_name or self.config.default_username,
            }
            if avatar_url:
                payload['avatar_url'] = avatar_url
            self._post(self.config.webhook_url, payload)

    async def send_message(self, content: str, display_name: Optional[str] = None):
        """Post through the bot API, prefixing the agent's name."""
        await asyncio.to_thread(self._send_message_sync, content, display_name)
        logger.debug(f"Discord message sent for {display_name}")

    async def send_webhook_message(self, content: str, display_name: Optional[str] = None,
                                   avatar_url: Optional[str] = None):
        """Post through the webhook with the agent as username."""
        await asyncio.to_thread(self._send_webhook_sync, content, display_name, avatar_url)
        logger.debug(f"Discord webhook message sent for {display_name}")

    async def forward(self, content: str, display_name: Optional[str] = None):
        """Forward an agent reply, preferring the webhook when both are configured."""
        if not self.available:
            raise DiscordError("Discord not properly configured")
        if self.webhook_configured:
            await self.send_webhook_message(content, display_name)
        else:
            await self.send_message(content, display_name)
