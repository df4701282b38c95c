from pathlib import Path

import pytest

from chatrelay.config_service import ConfigService
from chatrelay.domain import ModelEntry
from chatrelay.services import build_core

ROOT = Path(__file__).resolve().parents[1]


class NullBackend:
    async def generate_from_prompt(self, turns, *, model):
        return {"text": "", "model": model, "usage": {}}


def test_yaml_file_is_parsed(tmp_path):
    p = tmp_path / "config.yaml"
    p.write_text(
        "bot:\n"
        "  method: web\n"
        "  debug_replies: yes\n"
        "  allowed_chat_ids: [1, 2]\n"
        "chat:\n"
        "  command: talk\n"
        "  session_ttl_seconds: 30\n"
        "openrouter:\n"
        "  models:\n"
        "    - {keyword: a, identifier: prov/a, priority: 2}\n"
        "    - {keyword: b, identifier: prov/b}\n",
        encoding="utf-8",
    )
    cfg = ConfigService(p)
    assert cfg.bot_method() == "WEB"
    assert cfg.chat_command() == "/talk"
    bc = cfg.bot_config()
    assert bc.debug_replies is True
    assert bc.allowed_chat_ids == (1, 2)
    assert bc.session_ttl_seconds == 30.0
    assert bc.models == (ModelEntry("a", "prov/a", 2), ModelEntry("b", "prov/b", 0))
    # No explicit default: the first listed model
    assert bc.default_model == ModelEntry("a", "prov/a", 2)


def test_defaults_for_missing_sections():
    cfg = ConfigService.from_dict({"openrouter": {"models": [{"keyword": "x", "identifier": "p/x", "priority": 1}]}})
    assert cfg.bot_method() == "DISCORD"
    assert cfg.response_timeout_seconds() == 120.0
    assert cfg.daily_spend_limit() == 1.0
    assert cfg.discord_message_char_limit() == 2000
    assert cfg.http_auth_bearer_token() is None


@pytest.mark.parametrize(
    "entry",
    [
        {"identifier": "p/x"},
        {"keyword": "x"},
        {"keyword": "x", "identifier": "p/x", "priority": -1},
        {"keyword": "x", "identifier": "p/x", "priority": "high"},
        "p/x",
    ],
)
def test_invalid_model_entry(entry):
    cfg = ConfigService.from_dict({"openrouter": {"models": [entry]}})
    with pytest.raises(ValueError):
        cfg.models()


def test_no_models_and_no_default():
    with pytest.raises(ValueError):
        ConfigService.from_dict({}).default_model()


def test_example_config_builds_core():
    cfg = ConfigService(ROOT / "config.example.yaml")
    bc = cfg.bot_config()
    assert bc.default_model.keyword == "claude"
    core = build_core(bc, NullBackend())
    assert [m.keyword for m in core.catalog.fallback_models()] == ["gemini", "claude", "gpt"]


def test_build_core_requires_a_fallback_model():
    cfg = ConfigService.from_dict({"openrouter": {"models": [{"keyword": "x", "identifier": "p/x"}]}})
    with pytest.raises(ValueError):
        build_core(cfg.bot_config(), NullBackend())
