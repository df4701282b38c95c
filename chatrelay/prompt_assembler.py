from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .domain import Author, EmptyPrompt, InboundMessage, ModelEntry, TranscriptionFailed, Turn
from .llm.base import Transcriber
from .logger_factory import get_logger
from .model_catalog import ModelCatalog
from .utils.logfmt import fmt


def parse_command(text: str) -> str:
    """Return the command token of ``text`` lower-cased, without an ``@botname`` suffix."""
    parts = (text or "").split(" ", 1)
    command = parts[0]
    if "@" in command:
        command = command.split("@", 1)[0]
    return command.lower()


def parse_command_args(text: str) -> str:
    """Return everything after the first space of ``text`` or ``""`` when there is none."""
    idx = (text or "").find(" ")
    if idx == -1:
        return ""
    return text[idx + 1:]


@dataclass(frozen=True)
class AssembledPrompt:
    text: str
    model: ModelEntry
    # True when the user picked the model with a #keyword
    explicit_model: bool = False


class PromptAssembler:
    def __init__(
        self,
        catalog: ModelCatalog,
        transcriber: Optional[Transcriber] = None,
        *,
        quote_with_image: bool = False,
        logger=None,
    ):
        self.catalog = catalog
        self.transcriber = transcriber
        self.quote_with_image = quote_with_image
        self.log = logger or get_logger("PromptAssembler")

    async def assemble(self, message: InboundMessage) -> AssembledPrompt:
        prompt = parse_command_args(message.text)
        if not prompt.strip():
            raise EmptyPrompt()

        prompt, model = self.catalog.resolve(prompt)
        explicit = model is not None
        if model is None:
            model = self.catalog.default_model

        if message.audio_url:
            if self.transcriber is None:
                raise TranscriptionFailed("failed to generate transcript: no transcriber configured")
            try:
                transcript = await self.transcriber.generate_from_audio(message.audio_url)
            except Exception as e:
                raise TranscriptionFailed(f"failed to generate transcript: {e}") from e
            prompt += ": " + transcript

        text = f"{message.username}: {prompt}"
        self.log.debug(
            f"[prompt-assembled] {fmt('chat', message.chat_id)} {fmt('msg', message.message_id)} "
            f"{fmt('model', model.identifier)} {fmt('explicit', explicit)} {fmt('audio', bool(message.audio_url))}"
        )
        return AssembledPrompt(text=text, model=model, explicit_model=explicit)

    def build_turns(self, message: InboundMessage, assembled: AssembledPrompt) -> list[Turn]:
        """Turns to append for ``message``: optional quoted context, then the user turn."""
        turns: list[Turn] = []
        image = message.image_url or None
        if message.quoted_text and (image is None or self.quote_with_image):
            if message.is_reply_to_bot:
                turns.append(Turn(author=Author.ASSISTANT, text=message.quoted_text, model=assembled.model))
            else:
                who = message.reply_to_username or "unknown"
                turns.append(Turn(author=Author.USER, text=f"{who}: {message.quoted_text}", model=assembled.model))
        turns.append(Turn(author=Author.USER, text=assembled.text, image_url=image, model=assembled.model))
        return turns
