from __future__ import annotations

from typing import Optional

import discord
from discord import Intents
from discord.ext import commands

from .chat_locks import ChatLocks
from .command_registry import CommandRegistry
from .domain import InboundMessage
from .vision_utils import first_attachment_url


def _display_name(user) -> str:
    return str(getattr(user, "display_name", None) or getattr(user, "name", None) or getattr(user, "id", "unknown"))


async def _referenced_message(message: discord.Message) -> Optional[discord.Message]:
    ref = message.reference
    if ref is None or ref.message_id is None:
        return None
    if isinstance(ref.resolved, discord.Message):
        return ref.resolved
    try:
        return await message.channel.fetch_message(ref.message_id)
    except discord.HTTPException:
        return None


async def to_inbound(message: discord.Message, bot_user_id: Optional[int]) -> InboundMessage:
    """Reduce a Discord message to the fields the commands work with."""
    replied = await _referenced_message(message)
    image_url = first_attachment_url(message, "image")
    audio_url = first_attachment_url(message, "audio")
    quoted_text = ""
    reply_to_username = ""
    is_reply_to_bot = False
    if replied is not None:
        quoted_text = replied.content or ""
        is_reply_to_bot = bot_user_id is not None and replied.author.id == bot_user_id
        if not is_reply_to_bot:
            reply_to_username = _display_name(replied.author)
        # Media on the replied-to message counts when the reply itself has none
        image_url = image_url or first_attachment_url(replied, "image")
        audio_url = audio_url or first_attachment_url(replied, "audio")
    return InboundMessage(
        message_id=message.id,
        chat_id=message.channel.id,
        username=_display_name(message.author),
        text=message.content or "",
        quoted_text=quoted_text,
        reply_to_username=reply_to_username,
        is_reply_to_bot=is_reply_to_bot,
        image_url=image_url,
        audio_url=audio_url,
    )


class DiscordClientAdapter(commands.Bot):
    def __init__(self, registry: Optional[CommandRegistry], intents_cfg: dict, logger, locks: Optional[ChatLocks] = None):
        intents = Intents.default()
        if intents_cfg.get("message_content", True):
            intents.message_content = True
        intents.members = bool(intents_cfg.get("members", False))
        super().__init__(command_prefix=commands.when_mentioned, intents=intents, help_command=None)
        self.registry = registry
        self.log = logger
        # One message at a time per channel keeps a conversation's turns in arrival order
        self.chat_locks = locks if locks is not None else ChatLocks()

    async def on_ready(self):
        if self.user is not None:
            self.log.info(f"Logged in as {self.user} (ID: {self.user.id})")
        else:
            self.log.info("Logged in (user not available yet)")

    async def on_message(self, message: discord.Message):
        if self.user is not None and message.author.id == self.user.id:
            return
        if message.author.bot or self.registry is None:
            return
        if not (message.content or "").startswith("/"):
            return
        inbound = await to_inbound(message, self.user.id if self.user else None)
        async with self.chat_locks.hold(inbound.chat_id):
            await self.registry.handle(inbound)
