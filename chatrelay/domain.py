from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Author(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    # Failure notes recorded into a conversation's history
    SYSTEM = "system"


@dataclass(frozen=True)
class ModelEntry:
    keyword: str
    identifier: str
    priority: int = 0

    @property
    def is_fallback(self) -> bool:
        return self.priority > 0


@dataclass(frozen=True)
class Turn:
    author: Author
    text: str
    image_url: Optional[str] = None
    model: Optional[ModelEntry] = None


@dataclass
class InboundMessage:
    """A platform message already reduced to what the commands need.

    Transport adapters (Discord, HTTP) fill this in; nothing downstream
    touches platform objects.
    """
    message_id: int
    chat_id: int
    username: str
    text: str
    quoted_text: str = ""
    reply_to_username: str = ""
    is_reply_to_bot: bool = False
    image_url: str = ""
    audio_url: str = ""


@dataclass
class GenerationResult:
    text: str
    model: str
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    retries: int = 0


class ChatRelayError(Exception):
    """Base class for errors raised by chatrelay."""


class EmptyPrompt(ChatRelayError):
    def __init__(self, message: str = "empty prompt"):
        super().__init__(message)


class TranscriptionFailed(ChatRelayError):
    pass


class GenerationFailed(ChatRelayError):
    pass


class AllModelsExhausted(GenerationFailed):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"failed to get a response from any fallback model, attempts: {attempts}")


class ProviderError(ChatRelayError):
    """Error reported by the generation provider itself (as opposed to transport)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class SessionTypeInvariantViolation(ChatRelayError):
    pass


class SendFailed(ChatRelayError):
    pass


class CommandNotFound(ChatRelayError):
    pass
