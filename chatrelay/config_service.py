from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import yaml

from .domain import ModelEntry


@dataclass
class Config:
    raw: dict


@dataclass(frozen=True)
class BotConfig:
    """Settings read once at startup and handed to each component's constructor."""
    models: tuple[ModelEntry, ...]
    default_model: ModelEntry
    session_ttl_seconds: float = 600.0
    response_timeout_seconds: float = 120.0
    daily_spend_limit: float = 1.0
    debug_replies: bool = False
    quote_with_image: bool = False
    chat_command: str = "/chat"
    system_prompt: str = ""
    system_prompt_path: str = ""
    admin_username: str = ""
    allowed_chat_ids: tuple[int, ...] = field(default_factory=tuple)


def _as_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _model_entry(raw, *, where: str) -> ModelEntry:
    if not isinstance(raw, dict):
        raise ValueError(f"{where}: expected a mapping, got {type(raw).__name__}")
    keyword = str(raw.get("keyword") or "").strip()
    identifier = str(raw.get("identifier") or "").strip()
    if not keyword or not identifier:
        raise ValueError(f"{where}: 'keyword' and 'identifier' are required")
    try:
        priority = int(raw.get("priority", raw.get("default", 0)) or 0)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{where}: priority must be an integer") from e
    if priority < 0:
        raise ValueError(f"{where}: priority must be >= 0")
    return ModelEntry(keyword=keyword, identifier=identifier, priority=priority)


class ConfigService:
    def __init__(self, path: str | Path):
        self._path = Path(path)
        with self._path.open("r", encoding="utf-8") as f:
            self._cfg = Config(raw=yaml.safe_load(f) or {})

    @classmethod
    def from_dict(cls, raw: dict) -> "ConfigService":
        inst = cls.__new__(cls)
        inst._path = Path("<memory>")
        inst._cfg = Config(raw=dict(raw or {}))
        return inst

    def _section(self, name: str) -> dict:
        sec = self._cfg.raw.get(name)
        return sec if isinstance(sec, dict) else {}

    # ---------- bot ----------
    def bot_method(self) -> str:
        m = str(self._section("bot").get("method", "DISCORD")).strip().upper()
        return m if m in ("DISCORD", "WEB", "BOTH") else "DISCORD"

    def log_level(self) -> str:
        return str(self._section("bot").get("log_level", "INFO"))

    def lib_log_level(self) -> str | None:
        v = self._section("bot").get("lib_log_level")
        return str(v) if v else None

    def log_console(self) -> bool:
        return _as_bool(self._section("bot").get("log_console"), False)

    def log_errors(self) -> bool:
        return _as_bool(self._section("bot").get("log_errors"), False)

    def debug_replies(self) -> bool:
        return _as_bool(self._section("bot").get("debug_replies"), False)

    def admin_username(self) -> str:
        return str(self._section("bot").get("admin_username") or "")

    def allowed_chat_ids(self) -> list[int]:
        raw = self._section("bot").get("allowed_chat_ids") or []
        if not isinstance(raw, (list, tuple)):
            raise ValueError("bot.allowed_chat_ids must be a list of integers")
        return [int(x) for x in raw]

    # ---------- chat ----------
    def chat_command(self) -> str:
        cmd = str(self._section("chat").get("command", "/chat")).strip().lower()
        return cmd if cmd.startswith("/") else f"/{cmd}"

    def session_ttl_seconds(self) -> float:
        return float(self._section("chat").get("session_ttl_seconds", 600))

    def response_timeout_seconds(self) -> float:
        return float(self._section("chat").get("response_timeout_seconds", 120))

    def system_prompt(self) -> str:
        return str(self._section("chat").get("system_prompt") or "")

    def system_prompt_path(self) -> str:
        return str(self._section("chat").get("system_prompt_path") or "")

    def quote_with_image(self) -> bool:
        return _as_bool(self._section("chat").get("quote_with_image"), False)

    # ---------- usage ----------
    def daily_spend_limit(self) -> float:
        return float(self._section("usage").get("daily_spend_limit", 1.0))

    # ---------- openrouter ----------
    def openrouter(self) -> dict:
        return self._section("openrouter")

    def models(self) -> list[ModelEntry]:
        raw = self.openrouter().get("models") or []
        if not isinstance(raw, list):
            raise ValueError("openrouter.models must be a list")
        return [_model_entry(m, where=f"openrouter.models[{i}]") for i, m in enumerate(raw)]

    def default_model(self) -> ModelEntry:
        raw = self.openrouter().get("default_model")
        if raw is None:
            models = self.models()
            if not models:
                raise ValueError("openrouter.default_model is required when no models are configured")
            return models[0]
        return _model_entry(raw, where="openrouter.default_model")

    # ---------- fal ----------
    def fal_whisper_url(self) -> str:
        return str(self._section("fal").get("whisper_url", "https://fal.run/fal-ai/whisper"))

    # ---------- discord ----------
    def discord_message_char_limit(self) -> int:
        return int(self._section("discord").get("message_char_limit", 2000))

    def max_response_messages(self) -> int:
        return int(self._section("discord").get("max_response_messages", 3))

    def discord_intents(self) -> dict:
        v = self._section("discord").get("intents")
        return v if isinstance(v, dict) else {"message_content": True}

    # ---------- http ----------
    def html_host(self) -> str:
        return str(self._section("http").get("host", "127.0.0.1"))

    def html_port(self) -> int:
        return int(self._section("http").get("port", 8000))

    def http_auth_bearer_token(self) -> str | None:
        v = self._section("http").get("bearer_token")
        return str(v) if v else None

    def bot_config(self) -> BotConfig:
        return BotConfig(
            models=tuple(self.models()),
            default_model=self.default_model(),
            session_ttl_seconds=self.session_ttl_seconds(),
            response_timeout_seconds=self.response_timeout_seconds(),
            daily_spend_limit=self.daily_spend_limit(),
            debug_replies=self.debug_replies(),
            quote_with_image=self.quote_with_image(),
            chat_command=self.chat_command(),
            system_prompt=self.system_prompt(),
            system_prompt_path=self.system_prompt_path(),
            admin_username=self.admin_username(),
            allowed_chat_ids=tuple(self.allowed_chat_ids()),
        )
