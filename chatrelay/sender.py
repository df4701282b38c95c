from __future__ import annotations

from abc import ABC, abstractmethod

from .domain import InboundMessage, SendFailed


class MessageSender(ABC):
    """Outbound side of a chat transport."""

    @abstractmethod
    async def send_reply(self, message: InboundMessage, text: str) -> int:
        """Reply to ``message`` and return the id of the sent message.

        Raises ``SendFailed`` when the platform rejects the message.
        """
        ...

    @abstractmethod
    async def send_typing(self, chat_id: int) -> None:
        ...

    async def notify_error(self, err: Exception, message: InboundMessage) -> Exception:
        """Tell the user about ``err`` and hand it back for the caller to log.

        When the notification itself cannot be delivered the returned error is
        a ``SendFailed`` chained to ``err``.
        """
        try:
            await self.send_reply(message, f"error: {err}")
        except Exception as send_err:
            failed = SendFailed(f"failed to notify user about error: {send_err}")
            failed.__cause__ = err
            return failed
        return err
