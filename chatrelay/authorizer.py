from __future__ import annotations

from typing import Iterable, Optional

from .domain import InboundMessage
from .logger_factory import get_logger
from .sender import MessageSender
from .utils.logfmt import fmt

FORBIDDEN = "You are not authorized to use this bot. Please contact @{admin} with this ID to get access: {chat_id}"


class ChatAuthorizer:
    """Allowlist of chat ids. An empty allowlist lets every chat through."""

    def __init__(self, allowed_chat_ids: Iterable[int], sender: Optional[MessageSender] = None, admin_username: str = "", logger=None):
        self.allowed = frozenset(int(c) for c in allowed_chat_ids)
        self.sender = sender
        self.admin_username = admin_username
        self.log = logger or get_logger("Authorizer")

    async def is_authorized(self, message: InboundMessage, sender: Optional[MessageSender] = None) -> bool:
        if not self.allowed or message.chat_id in self.allowed:
            return True
        self.log.info(f"[unauthorized] {fmt('chat', message.chat_id)} {fmt('user', message.username)}")
        notifier = sender or self.sender
        if notifier is not None:
            try:
                await notifier.send_reply(message, FORBIDDEN.format(admin=self.admin_username, chat_id=message.chat_id))
            except Exception as e:
                self.log.warning(f"[unauthorized-notify-failed] {fmt('chat', message.chat_id)} {fmt('error', e)}")
        return False
