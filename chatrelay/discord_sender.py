from __future__ import annotations

import discord

from .domain import InboundMessage, SendFailed
from .logger_factory import get_logger
from .sender import MessageSender
from .utils.logfmt import fmt

CONT_MARKER = " ....."
LEAD_MARKER = "..... "


def split_message(text: str, limit: int = 2000, max_parts: int = 3) -> list[str]:
    """Split ``text`` into at most ``max_parts`` chunks of at most ``limit`` characters.

    Cuts prefer the last space in the window (if it is past 60% of the window).
    Continued chunks are marked with ``.....``; whatever does not fit in the
    last part is truncated.
    """
    limit = max(1, int(limit))
    max_parts = max(1, int(max_parts))
    if not text or len(text) <= limit:
        return [text]
    parts: list[str] = []
    remaining = text
    for i in range(max_parts):
        lead = LEAD_MARKER if i > 0 else ""
        if len(lead) + len(remaining) <= limit:
            parts.append(lead + remaining)
            remaining = ""
            break
        if i == max_parts - 1:
            parts.append((lead + remaining)[:limit])
            remaining = ""
            break
        window = limit - len(lead) - len(CONT_MARKER)
        if window <= 0:
            window = limit
        cut = remaining.rfind(" ", 0, window)
        if cut < int(window * 0.6):
            cut = window
        head = remaining[:cut].rstrip()
        parts.append((lead + head + CONT_MARKER)[:limit])
        remaining = remaining[cut:].lstrip()
    return parts


class DiscordSender(MessageSender):
    def __init__(self, client: discord.Client, *, char_limit: int = 2000, max_parts: int = 3, logger=None):
        self.client = client
        self.char_limit = char_limit
        self.max_parts = max_parts
        self.log = logger or get_logger("DiscordSender")

    async def _channel(self, chat_id: int):
        channel = self.client.get_channel(chat_id)
        if channel is None:
            channel = await self.client.fetch_channel(chat_id)
        return channel

    async def send_reply(self, message: InboundMessage, text: str) -> int:
        try:
            channel = await self._channel(message.chat_id)
            reference = channel.get_partial_message(message.message_id) if message.message_id else None
            sent_id = 0
            for i, chunk in enumerate(split_message(text, self.char_limit, self.max_parts)):
                sent = await channel.send(
                    chunk,
                    reference=reference if i == 0 else None,
                    mention_author=False,
                )
                sent_id = sent_id or sent.id
        except (discord.HTTPException, discord.ClientException, AttributeError) as e:
            self.log.error(f"[send-failed] {fmt('chat', message.chat_id)} {fmt('msg', message.message_id)} {fmt('error', e)}")
            raise SendFailed(f"failed to send reply: {e}") from e
        return sent_id

    async def send_typing(self, chat_id: int) -> None:
        try:
            channel = await self._channel(chat_id)
            await channel.typing()
        except (discord.HTTPException, AttributeError) as e:
            self.log.debug(f"[typing-failed] {fmt('chat', chat_id)} {fmt('error', e)}")
