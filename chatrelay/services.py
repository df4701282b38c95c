from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .authorizer import ChatAuthorizer
from .chat_command import ChatCommand
from .chat_locks import ChatLocks
from .command_registry import CommandRegistry
from .commands import ClearContextCommand, ModelsCommand, SpentCommand, TranscribeCommand
from .config_service import BotConfig
from .dispatcher import GenerationDispatcher
from .llm.base import GenerationBackend, Transcriber
from .model_catalog import ModelCatalog
from .prompt_assembler import PromptAssembler
from .sender import MessageSender
from .session_store import SessionStore
from .usage_ledger import UsageLedger


@dataclass
class Core:
    """Transport-independent state shared by every command registry."""
    config: BotConfig
    catalog: ModelCatalog
    store: SessionStore
    ledger: UsageLedger
    assembler: PromptAssembler
    dispatcher: GenerationDispatcher
    authorizer: ChatAuthorizer
    transcriber: Optional[Transcriber] = None
    # Serializes messages of one chat across every transport
    locks: ChatLocks = field(default_factory=ChatLocks)

    async def start(self) -> None:
        self.ledger.start()

    async def close(self) -> None:
        await self.ledger.stop()
        await self.store.close()


def build_core(config: BotConfig, backend: GenerationBackend, transcriber: Optional[Transcriber] = None) -> Core:
    catalog = ModelCatalog(config.models, config.default_model)
    if not catalog.fallback_models():
        raise ValueError("no fallback model configured: give at least one model a priority > 0")
    return Core(
        config=config,
        catalog=catalog,
        store=SessionStore(config.session_ttl_seconds),
        ledger=UsageLedger(config.daily_spend_limit),
        assembler=PromptAssembler(catalog, transcriber, quote_with_image=config.quote_with_image),
        dispatcher=GenerationDispatcher(backend, catalog),
        authorizer=ChatAuthorizer(config.allowed_chat_ids, admin_username=config.admin_username),
        transcriber=transcriber,
    )


def build_registry(core: Core, sender: MessageSender) -> CommandRegistry:
    registry = CommandRegistry()
    registry.register(
        ChatCommand(
            config=core.config,
            store=core.store,
            assembler=core.assembler,
            dispatcher=core.dispatcher,
            ledger=core.ledger,
            sender=sender,
            authorizer=core.authorizer,
        )
    )
    registry.register(ModelsCommand(core.catalog, sender, chat_command=core.config.chat_command))
    registry.register(ClearContextCommand(core.store, sender))
    registry.register(SpentCommand(core.ledger, sender))
    registry.register(TranscribeCommand(core.transcriber, sender, timeout=core.config.response_timeout_seconds))
    return registry
