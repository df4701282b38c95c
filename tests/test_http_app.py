from fastapi.testclient import TestClient

from chatrelay.config_service import BotConfig
from chatrelay.domain import ModelEntry
from chatrelay.http_app import create_app
from chatrelay.llm.base import GenerationBackend
from chatrelay.services import build_core

GPT = ModelEntry("gpt", "openai/gpt-4.1", 1)


class EchoBackend(GenerationBackend):
    def __init__(self):
        self.calls = []

    async def generate_from_prompt(self, turns, *, model):
        self.calls.append((model, [t.text for t in turns]))
        return {"text": f"echo {turns[-1].text}", "model": model, "usage": {"total_tokens": 5, "cost": 0.25}}


def make_app(bearer_token=None, daily_limit=1.0):
    config = BotConfig(models=(GPT,), default_model=GPT, session_ttl_seconds=3600, daily_spend_limit=daily_limit)
    backend = EchoBackend()
    core = build_core(config, backend)
    return create_app(core, bearer_token=bearer_token), core, backend


def test_chat_round_trip_and_session_inspection():
    app, core, backend = make_app()
    with TestClient(app) as c:
        r = c.post("/chat", json={"chat_id": 5, "content": "/chat hello", "user_name": "alice"})
        assert r.status_code == 200
        body = r.json()
        assert body["handled"] is True
        assert body["replies"] == ["echo alice: hello"]
        # per-chat lock released and dropped once the request is done
        assert len(core.locks) == 0

        turns = c.get("/sessions/5").json()
        assert [t["author"] for t in turns] == ["user", "assistant"]
        assert turns[0]["model"] == "openai/gpt-4.1"

        spent = c.get("/spent/5").json()
        assert spent["spent"] == 0.25
        assert spent["limit"] == 1.0

        assert c.get("/health").json() == {"ok": True, "sessions": 1}
        assert c.delete("/sessions/5").json() == {"cleared": 2}
        assert c.get("/sessions/5").status_code == 404


def test_other_commands_over_http():
    app, core, backend = make_app()
    with TestClient(app) as c:
        r = c.post("/chat", json={"chat_id": 6, "content": "/spent"})
        assert r.json()["replies"] == ["Spent today within ChatID 6: $0.00."]
        r = c.post("/chat", json={"chat_id": 6, "content": "/unknown"})
        assert r.json() == {"handled": False, "message_id": r.json()["message_id"], "replies": []}
        models = c.get("/models").json()
        assert models["default"] == "openai/gpt-4.1"


def test_over_limit_reply():
    app, core, backend = make_app(daily_limit=0.1)
    core.ledger.add_cost(7, 0.5)
    with TestClient(app) as c:
        r = c.post("/chat", json={"chat_id": 7, "content": "/chat hi"})
    assert r.json()["replies"][0].startswith("You have exceeded your daily spending limit: $0.10.")
    assert backend.calls == []


def test_bearer_token_required():
    app, _, _ = make_app(bearer_token="s3cret")
    with TestClient(app) as c:
        assert c.post("/chat", json={"chat_id": 1, "content": "/spent"}).status_code == 401
        r = c.post("/chat", json={"chat_id": 1, "content": "/spent"}, headers={"Authorization": "Bearer s3cret"})
        assert r.status_code == 200
        # health stays open
        assert c.get("/health").status_code == 200
