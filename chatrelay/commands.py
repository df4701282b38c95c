from __future__ import annotations

import asyncio
from typing import Optional

from .command_registry import Command
from .domain import InboundMessage, SendFailed, TranscriptionFailed
from .llm.base import Transcriber
from .logger_factory import get_logger
from .model_catalog import ModelCatalog
from .sender import MessageSender
from .session_store import SessionStore
from .usage_ledger import UsageLedger
from .utils.logfmt import fmt


async def _reply(sender: MessageSender, message: InboundMessage, text: str) -> None:
    try:
        await sender.send_reply(message, text)
    except Exception as e:
        err = SendFailed(f"failed to send message: {e}")
        err.__cause__ = e
        returned = await sender.notify_error(err, message)
        raise returned


class ClearContextCommand(Command):
    def __init__(self, store: SessionStore, sender: MessageSender, command: str = "/clear", logger=None):
        self.store = store
        self.sender = sender
        self.command = command
        self.log = logger or get_logger("ClearContext")

    async def respond(self, message: InboundMessage) -> None:
        session = self.store.clear(message.chat_id)
        if session is None:
            self.log.debug(f"[clear-empty] {fmt('chat', message.chat_id)}")
            await _reply(self.sender, message, "no conversation context")
            return
        size = len(session.turns)
        plural = "" if size == 1 else "s"
        self.log.info(f"[clear] {fmt('chat', message.chat_id)} {fmt('turns', size)}")
        await _reply(self.sender, message, f"cleared conversation context with {size} message{plural}")


class SpentCommand(Command):
    def __init__(self, ledger: UsageLedger, sender: MessageSender, command: str = "/spent"):
        self.ledger = ledger
        self.sender = sender
        self.command = command

    async def respond(self, message: InboundMessage) -> None:
        spent = self.ledger.get_spent(message.chat_id)
        await _reply(self.sender, message, f"Spent today within ChatID {message.chat_id}: ${spent:.2f}.")


class ModelsCommand(Command):
    def __init__(self, catalog: ModelCatalog, sender: MessageSender, chat_command: str = "/chat", command: str = "/models"):
        self.catalog = catalog
        self.sender = sender
        self.chat_command = chat_command
        self.command = command

    def render(self) -> str:
        lines = [
            "You can choose the LLM you want to interact with by adding a #keyword to your prompts "
            f"in {self.chat_command} mode. Here's a list of currently active models:",
            "",
        ]
        for m in self.catalog.models:
            lines.append(f" - Model: {m.identifier}, Keyword: {m.keyword}")
        lines.append("")
        lines.append(f"Default: {self.catalog.default_model.identifier}")
        lines.append("Keep in mind that not every model has image recognition capabilities.")
        return "\n".join(lines)

    async def respond(self, message: InboundMessage) -> None:
        await _reply(self.sender, message, self.render())


class TranscribeCommand(Command):
    """Reply with the transcript of the voice message the command answers."""

    def __init__(
        self,
        transcriber: Optional[Transcriber],
        sender: MessageSender,
        command: str = "/transcribe",
        timeout: float = 120.0,
        logger=None,
    ):
        self.transcriber = transcriber
        self.sender = sender
        self.command = command
        self.timeout = timeout
        self.log = logger or get_logger("Transcribe")

    async def respond(self, message: InboundMessage) -> None:
        self.log.info(f"[transcribe-request] {fmt('chat', message.chat_id)} {fmt('msg', message.message_id)}")
        await self.sender.send_typing(message.chat_id)

        if not message.audio_url:
            await self.sender.notify_error(TranscriptionFailed("reply to an audio"), message)
            return

        try:
            if self.transcriber is None:
                raise RuntimeError("no transcriber configured")
            transcript = await asyncio.wait_for(self.transcriber.generate_from_audio(message.audio_url), timeout=self.timeout)
        except Exception as e:
            detail = f"timed out after {self.timeout:g}s" if isinstance(e, asyncio.TimeoutError) else str(e)
            err = TranscriptionFailed(f"failed to generate audio: {detail}")
            err.__cause__ = e
            raise await self.sender.notify_error(err, message)

        try:
            await self.sender.send_reply(message, transcript)
        except Exception as e:
            err = SendFailed(f"error sending transcript: {e}")
            err.__cause__ = e
            raise await self.sender.notify_error(err, message)
        self.log.debug(f"[transcribed-reply] {fmt('chat', message.chat_id)} {fmt('chars', len(transcript))}")
