from __future__ import annotations

import itertools
from collections import defaultdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .domain import InboundMessage
from .logger_factory import get_logger
from .sender import MessageSender
from .services import Core, build_registry
from .utils.logfmt import fmt


class ChatIn(BaseModel):
    chat_id: int
    content: str
    user_name: str = "web-user"
    message_id: Optional[int] = None
    quoted_text: str = ""
    reply_to_username: str = ""
    is_reply_to_bot: bool = False
    image_url: str = ""
    audio_url: str = ""


class ChatOut(BaseModel):
    handled: bool
    message_id: int
    replies: list[str]


class TurnOut(BaseModel):
    author: str
    text: str
    image_url: Optional[str] = None
    model: Optional[str] = None


class WebSender(MessageSender):
    """Collects replies per request instead of pushing them to a chat platform."""

    def __init__(self):
        self._outbox: dict[tuple[int, int], list[str]] = defaultdict(list)
        self._ids = itertools.count(1)

    async def send_reply(self, message: InboundMessage, text: str) -> int:
        self._outbox[(message.chat_id, message.message_id)].append(text)
        return next(self._ids)

    async def send_typing(self, chat_id: int) -> None:
        return None

    def drain(self, chat_id: int, message_id: int) -> list[str]:
        return self._outbox.pop((chat_id, message_id), [])


def create_app(core: Core, *, bearer_token: Optional[str] = None) -> FastAPI:
    log = get_logger("http_app")
    sender = WebSender()
    registry = build_registry(core, sender)
    message_ids = itertools.count(1)

    def _check_auth(request: Request) -> None:
        if not bearer_token:
            return
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Bearer ") or auth.split(" ", 1)[1].strip() != bearer_token:
            raise HTTPException(status_code=401, detail="Unauthorized")

    app = FastAPI(title="chatrelay")

    @app.get("/health")
    async def health():
        return {"ok": True, "sessions": len(core.store)}

    @app.post("/chat", response_model=ChatOut)
    async def chat(inp: ChatIn, request: Request):
        _check_auth(request)
        message_id = inp.message_id if inp.message_id is not None else next(message_ids)
        inbound = InboundMessage(
            message_id=message_id,
            chat_id=inp.chat_id,
            username=inp.user_name,
            text=inp.content,
            quoted_text=inp.quoted_text,
            reply_to_username=inp.reply_to_username,
            is_reply_to_bot=inp.is_reply_to_bot,
            image_url=inp.image_url,
            audio_url=inp.audio_url,
        )
        async with core.locks.hold(inp.chat_id):
            handled = await registry.handle(inbound)
        replies = sender.drain(inp.chat_id, message_id)
        log.debug(f"[web-chat] {fmt('chat', inp.chat_id)} {fmt('handled', handled)} {fmt('replies', len(replies))}")
        return ChatOut(handled=handled, message_id=message_id, replies=replies)

    @app.get("/sessions/{chat_id}", response_model=list[TurnOut])
    async def session_turns(chat_id: int, request: Request):
        _check_auth(request)
        session = core.store.get(chat_id)
        if session is None:
            raise HTTPException(status_code=404, detail="no conversation context")
        return [
            TurnOut(
                author=t.author.value,
                text=t.text,
                image_url=t.image_url,
                model=t.model.identifier if t.model else None,
            )
            for t in list(session.turns)
        ]

    @app.delete("/sessions/{chat_id}")
    async def clear_session(chat_id: int, request: Request):
        _check_auth(request)
        session = core.store.clear(chat_id)
        return {"cleared": len(session.turns) if session is not None else 0}

    @app.get("/spent/{chat_id}")
    async def spent(chat_id: int, request: Request):
        _check_auth(request)
        return {
            "chat_id": chat_id,
            "spent": core.ledger.get_spent(chat_id),
            "limit": core.ledger.daily_limit,
            "resets_in_seconds": int(core.ledger.time_until_reset()),
        }

    @app.get("/models")
    async def models():
        return {
            "default": core.catalog.default_model.identifier,
            "models": [
                {"keyword": m.keyword, "identifier": m.identifier, "priority": m.priority}
                for m in core.catalog.models
            ],
        }

    return app
