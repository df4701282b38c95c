import asyncio

import pytest

from chatrelay.command_registry import Command, CommandRegistry
from chatrelay.commands import ClearContextCommand, ModelsCommand, SpentCommand, TranscribeCommand
from chatrelay.domain import Author, InboundMessage, ModelEntry, TranscriptionFailed, Turn
from chatrelay.model_catalog import ModelCatalog
from chatrelay.sender import MessageSender
from chatrelay.session_store import SessionStore
from chatrelay.usage_ledger import UsageLedger


class FakeSender(MessageSender):
    def __init__(self):
        self.replies = []

    async def send_reply(self, message, text):
        self.replies.append(text)
        return len(self.replies)

    async def send_typing(self, chat_id):
        pass


def msg(text, chat_id=7):
    return InboundMessage(message_id=1, chat_id=chat_id, username='alice', text=text)


def test_clear_reports_message_count():
    store, sender = SessionStore(60), FakeSender()
    s = store.get_or_create(7)
    store.append_turn(s, Turn(Author.USER, 'a'))
    store.append_turn(s, Turn(Author.ASSISTANT, 'b'))
    asyncio.run(ClearContextCommand(store, sender).respond(msg('/clear')))
    assert sender.replies == ['cleared conversation context with 2 messages']
    assert store.get(7) is None


def test_clear_singular_and_empty():
    store, sender = SessionStore(60), FakeSender()
    store.append_turn(store.get_or_create(7), Turn(Author.USER, 'a'))
    cmd = ClearContextCommand(store, sender)
    asyncio.run(cmd.respond(msg('/clear')))
    asyncio.run(cmd.respond(msg('/clear')))
    assert sender.replies == ['cleared conversation context with 1 message', 'no conversation context']


def test_spent_formats_amount():
    ledger, sender = UsageLedger(5.0), FakeSender()
    ledger.add_cost(7, 1.5)
    asyncio.run(SpentCommand(ledger, sender).respond(msg('/spent')))
    assert sender.replies == ['Spent today within ChatID 7: $1.50.']


def test_models_lists_catalog():
    catalog = ModelCatalog([ModelEntry('gpt', 'openai/gpt-4.1', 1), ModelEntry('grok', 'x-ai/grok-3')],
                           ModelEntry('gpt', 'openai/gpt-4.1', 1))
    sender = FakeSender()
    asyncio.run(ModelsCommand(catalog, sender).respond(msg('/models')))
    text = sender.replies[0]
    assert ' - Model: openai/gpt-4.1, Keyword: gpt' in text
    assert ' - Model: x-ai/grok-3, Keyword: grok' in text
    assert '#keyword' in text


class Recorder(Command):
    def __init__(self, command, fail=False):
        self.command = command
        self.fail = fail
        self.seen = []

    async def respond(self, message):
        self.seen.append(message.text)
        if self.fail:
            raise RuntimeError('handler broke')


def test_registry_routes_by_command_token():
    reg = CommandRegistry()
    chat = Recorder('/chat')
    reg.register(chat)
    assert asyncio.run(reg.handle(msg('/CHAT@relay_bot hello'))) is True
    assert chat.seen == ['/CHAT@relay_bot hello']
    assert asyncio.run(reg.handle(msg('/nope'))) is False
    assert reg.list_commands() == ['/chat']


def test_registry_logs_handler_errors():
    reg = CommandRegistry()
    reg.register(Recorder('/boom', fail=True))
    assert asyncio.run(reg.handle(msg('/boom now'))) is True


class FakeTranscriber:
    def __init__(self, text='spoken words', error=None):
        self.text = text
        self.error = error
        self.urls = []

    async def generate_from_audio(self, audio_url):
        self.urls.append(audio_url)
        if self.error is not None:
            raise self.error
        return self.text


def test_transcribe_replies_with_transcript():
    sender, transcriber = FakeSender(), FakeTranscriber()
    m = InboundMessage(message_id=1, chat_id=7, username='alice', text='/transcribe', audio_url='https://cdn/v.ogg')
    asyncio.run(TranscribeCommand(transcriber, sender).respond(m))
    assert sender.replies == ['spoken words']
    assert transcriber.urls == ['https://cdn/v.ogg']


def test_transcribe_without_audio_asks_for_one():
    sender, transcriber = FakeSender(), FakeTranscriber()
    asyncio.run(TranscribeCommand(transcriber, sender).respond(msg('/transcribe')))
    assert sender.replies == ['error: reply to an audio']
    assert transcriber.urls == []


def test_transcribe_failure_is_notified_and_raised():
    sender = FakeSender()
    transcriber = FakeTranscriber(error=RuntimeError('whisper down'))
    m = InboundMessage(message_id=1, chat_id=7, username='alice', text='/transcribe', audio_url='https://cdn/v.ogg')
    with pytest.raises(TranscriptionFailed) as ei:
        asyncio.run(TranscribeCommand(transcriber, sender).respond(m))
    assert sender.replies == ['error: failed to generate audio: whisper down']
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_transcribe_without_transcriber_configured():
    sender = FakeSender()
    m = InboundMessage(message_id=1, chat_id=7, username='alice', text='/transcribe', audio_url='https://cdn/v.ogg')
    with pytest.raises(TranscriptionFailed):
        asyncio.run(TranscribeCommand(None, sender).respond(m))
    assert sender.replies == ['error: failed to generate audio: no transcriber configured']


def test_transcribe_is_registered():
    from chatrelay.config_service import BotConfig
    from chatrelay.services import build_core, build_registry

    entry = ModelEntry('gpt', 'openai/gpt-4.1', 1)
    core = build_core(BotConfig(models=(entry,), default_model=entry), backend=None, transcriber=FakeTranscriber())
    registry = build_registry(core, FakeSender())
    assert '/transcribe' in registry.list_commands()
