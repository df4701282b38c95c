from __future__ import annotations

import asyncio
from typing import Optional

from .authorizer import ChatAuthorizer
from .command_registry import Command
from .config_service import BotConfig
from .dispatcher import GenerationDispatcher
from .domain import (
    Author,
    ChatRelayError,
    GenerationFailed,
    GenerationResult,
    InboundMessage,
    SendFailed,
    Turn,
)
from .logger_factory import get_logger, is_full_enabled
from .prompt_assembler import PromptAssembler
from .sender import MessageSender
from .session_store import Session, SessionStore
from .usage_ledger import UsageLedger
from .utils.correlation import make_correlation_id
from .utils.logfmt import fmt

DEBUG_TRAILER = (
    "debug: model: {model}\n"
    "c tokens: {completion} | total tokens: {total}\n"
    "convo size: {size} | cost: {cost:f}"
)


class PromptFailed(ChatRelayError):
    pass


class ChatCommand(Command):
    """The ``/chat`` command: one generation turn inside a per-chat session."""

    def __init__(
        self,
        *,
        config: BotConfig,
        store: SessionStore,
        assembler: PromptAssembler,
        dispatcher: GenerationDispatcher,
        ledger: UsageLedger,
        sender: MessageSender,
        authorizer: Optional[ChatAuthorizer] = None,
        logger=None,
    ):
        self.command = config.chat_command
        self.config = config
        self.store = store
        self.assembler = assembler
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.sender = sender
        self.authorizer = authorizer
        self.log = logger or get_logger("ChatCommand")
        self._background: set[asyncio.Task] = set()

    def _spawn(self, coro, label: str) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self.log.debug(f"[{label}-failed] {fmt('error', t.exception())}")

        task.add_done_callback(_done)

    async def _notify(self, err: Exception, message: InboundMessage) -> Exception:
        returned = await self.sender.notify_error(err, message)
        if isinstance(returned, SendFailed):
            raise returned
        return returned

    async def respond(self, message: InboundMessage) -> None:
        corr = make_correlation_id(message.chat_id, message.message_id)
        self.log.debug(
            f"[chat-request] {fmt('chat', message.chat_id)} {fmt('user', message.username)} "
            f"{fmt('image', bool(message.image_url))} {fmt('audio', bool(message.audio_url))} "
            f"{fmt('quoted', bool(message.quoted_text))} {fmt('correlation', corr)}"
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.response_timeout_seconds

        def remaining() -> float:
            return max(0.0, deadline - loop.time())

        if self.authorizer is not None and not await self.authorizer.is_authorized(message, sender=self.sender):
            return
        if not await self.ledger.check_limit(message.chat_id, message, sender=self.sender):
            self.log.debug(f"[chat-over-limit] {fmt('chat', message.chat_id)} {fmt('correlation', corr)}")
            return

        self._spawn(self.sender.send_typing(message.chat_id), "typing")

        try:
            assembled = await asyncio.wait_for(self.assembler.assemble(message), timeout=remaining())
        except asyncio.TimeoutError as e:
            err = PromptFailed("failed to extract prompt: timed out")
            err.__cause__ = e
            await self._notify(err, message)
            return
        except ChatRelayError as e:
            err = PromptFailed(f"failed to extract prompt: {e}")
            err.__cause__ = e
            await self._notify(err, message)
            self.log.info(f"[chat-prompt-rejected] {fmt('chat', message.chat_id)} {fmt('error', e)} {fmt('correlation', corr)}")
            return

        session = self.store.get_or_create(message.chat_id)
        # Armed before dispatch: a generation outliving the TTL finishes on a
        # session that has already expired, and the next message starts fresh.
        self.store.schedule_expiry(session)
        for turn in self.assembler.build_turns(message, assembled):
            self.store.append_turn(session, turn)

        requested = assembled.model if assembled.explicit_model else None
        try:
            result = await asyncio.wait_for(
                self.dispatcher.dispatch(list(session.turns), requested, correlation=corr),
                timeout=remaining(),
            )
        except (GenerationFailed, asyncio.TimeoutError) as e:
            if isinstance(e, asyncio.TimeoutError):
                err = GenerationFailed(f"failed to generate response: timed out after {self.config.response_timeout_seconds:g}s")
                err.__cause__ = e
            else:
                err = GenerationFailed(f"failed to generate response: {e}")
                err.__cause__ = e
            self.store.append_turn(session, Turn(author=Author.SYSTEM, text=str(err)))
            raise await self._notify(err, message)

        self.ledger.add_cost(message.chat_id, result.cost)
        self.store.append_turn(session, Turn(author=Author.ASSISTANT, text=result.text))
        self.store.schedule_expiry(session)

        try:
            await self.sender.send_reply(message, result.text)
        except SendFailed:
            raise
        except Exception as e:
            raise SendFailed(f"failed to send reply: {e}") from e

        if is_full_enabled():
            self.log.info(f"[payload-out] {fmt('reply', result.text[:1000])} {fmt('correlation', corr)}")

        if self.config.debug_replies:
            await self._send_debug_trailer(message, result, session)

    async def _send_debug_trailer(self, message: InboundMessage, result: GenerationResult, session: Session) -> None:
        text = DEBUG_TRAILER.format(
            model=result.model,
            completion=result.completion_tokens,
            total=result.total_tokens,
            size=len(session.turns),
            cost=result.cost,
        )
        try:
            await self.sender.send_reply(message, text)
        except Exception as e:
            self.log.warning(f"[debug-trailer-failed] {fmt('chat', message.chat_id)} {fmt('error', e)}")
