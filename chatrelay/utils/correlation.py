from __future__ import annotations


def make_correlation_id(chat_id: str | int, message_id: str | int) -> str:
    """Return the id that ties command → generation → reply log lines together.

    Format: "<chatId>-<messageId>".
    """
    return f"{chat_id}-{message_id}"
