"""Discord handler — bridges discord.Client to the channel bridge.

Converts discord.Message into BridgeMessage for inbound delivery and exposes
send_text() for the outbound MCP tools.
"""

import asyncio
import inspect
import sys
from typing import List, Optional

import discord

from channel_bridge.ports.inbound import Attachment, BridgeMessage
from channel_bridge.ports.outbound import DataProvider, MessageCallback

DISCORD_MESSAGE_LIMIT = 2000


def _log(msg: str):
    print(msg, file=sys.stderr)


def attachment_type(content_type: Optional[str]) -> str:
    """Map a MIME type to the attachment kind the gateway understands."""
    major = (content_type or "").split("/", 1)[0].lower()
    if major in ("image", "audio", "video"):
        return major
    return "file"


def split_message(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> List[str]:
    chunks = []
    while text:
        chunks.append(text[:limit])
        text = text[limit:]
    return chunks


class _DiscordClient(discord.Client):
    """discord.Client that forwards every foreign message to its handler."""

    def __init__(self, handler: "DiscordChannelHandler", **discord_kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(intents=intents, **discord_kwargs)
        self._handler = handler

    async def on_ready(self):
        _log(f"[discord] logged in as {self.user}")

    async def on_message(self, message: discord.Message):
        # Ignore own messages
        if not self.user or message.author == self.user:
            return
        await self._handler.dispatch(message)


class DiscordChannelHandler:
    """BridgeHandler implementation for Discord."""

    def __init__(self, token: str, client: Optional[discord.Client] = None):
        self._token = token
        self.client = client if client is not None else _DiscordClient(self)
        self.data_provider: Optional[DataProvider] = None
        self._on_message: Optional[MessageCallback] = None
        self._task: Optional[asyncio.Task] = None

    def set_on_message(self, callback: MessageCallback) -> None:
        self._on_message = callback

    def set_data_provider(self, provider: DataProvider) -> None:
        self.data_provider = provider

    def to_bridge_message(self, message: discord.Message) -> BridgeMessage:
        """Convert a Discord message to platform-agnostic BridgeMessage."""
        channel = message.channel
        is_private = isinstance(channel, discord.DMChannel)
        user = self.client.user
        return BridgeMessage(
            chat_id=str(channel.id),
            chat_type="private" if is_private else "group",
            message_id=str(message.id),
            sender_id=str(message.author.id),
            sender_name=message.author.display_name,
            chat_name=None if is_private else getattr(channel, "name", None),
            text=message.content,
            is_private=is_private,
            mentions_self=bool(user and user.mentioned_in(message)),
            attachments=[
                Attachment(
                    type=attachment_type(a.content_type),
                    url=a.url,
                    mime=a.content_type,
                    name=a.filename,
                )
                for a in message.attachments
            ],
            timestamp=int(message.created_at.timestamp() * 1000),
        )

    async def dispatch(self, message: discord.Message) -> None:
        if self._on_message is None:
            return
        try:
            result = self._on_message(self.to_bridge_message(message))
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            _log(f"[discord] inbound message {message.id} failed: {e}")

    def _on_connection_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log(f"[discord] gateway connection crashed: {exc}")

    async def start(self) -> None:
        """Log in and wait until the gateway session is ready.

        Raises if login fails or the connection ends before becoming ready
        (bad token, privileged intents not enabled, ...).
        """
        await self.client.login(self._token)
        self._task = asyncio.create_task(self.client.connect())
        self._task.add_done_callback(self._on_connection_done)
        ready = asyncio.create_task(self.client.wait_until_ready())
        try:
            await asyncio.wait({self._task, ready}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not ready.done():
                ready.cancel()
        if ready.done() and not ready.cancelled() and ready.exception() is None:
            return
        exc = None if self._task.cancelled() else self._task.exception()
        if exc is not None:
            raise exc
        raise RuntimeError("discord gateway connection ended before ready")

    async def stop(self) -> None:
        await self.client.close()
        if self._task:
            self._task.cancel()
            self._task = None

    async def send_text(self, chat_id: str, text: str) -> int:
        """Send ``text`` to a channel or DM, split into Discord-sized chunks."""
        channel_id = int(chat_id)
        channel = self.client.get_channel(channel_id)
        if channel is None:
            channel = await self.client.fetch_channel(channel_id)
        chunks = split_message(text)
        for chunk in chunks:
            await channel.send(chunk)
        return len(chunks)
