from __future__ import annotations

from abc import ABC, abstractmethod

from .domain import CommandNotFound, InboundMessage
from .logger_factory import get_logger
from .prompt_assembler import parse_command
from .utils.logfmt import fmt


class Command(ABC):
    command: str

    @abstractmethod
    async def respond(self, message: InboundMessage) -> None:
        ...


class CommandRegistry:
    def __init__(self, logger=None):
        self._commands: dict[str, Command] = {}
        self.log = logger or get_logger("CommandRegistry")

    def register(self, handler: Command) -> None:
        name = handler.command.lower()
        self.log.info(f"[command-registered] {fmt('command', name)} {fmt('handler', type(handler).__name__)}")
        self._commands[name] = handler

    def get(self, command: str) -> Command:
        handler = self._commands.get((command or "").lower())
        if handler is None:
            raise CommandNotFound(f"command not found: {command}")
        return handler

    def list_commands(self) -> list[str]:
        return list(self._commands)

    async def handle(self, message: InboundMessage) -> bool:
        """Route ``message`` to its command handler.

        Returns False when the text is not a registered command. Errors from
        the handler are logged here, the last stop before the transport.
        """
        cmd = parse_command(message.text)
        try:
            handler = self.get(cmd)
        except CommandNotFound:
            self.log.debug(f"[command-unknown] {fmt('command', cmd)} {fmt('chat', message.chat_id)}")
            return False
        try:
            await handler.respond(message)
        except Exception as e:
            self.log.error(
                f"[command-failed] {fmt('command', cmd)} {fmt('chat', message.chat_id)} "
                f"{fmt('msg', message.message_id)} {fmt('error', e)}",
                exc_info=e,
            )
        return True
