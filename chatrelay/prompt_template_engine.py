from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from jinja2 import BaseLoader, Environment, TemplateError

from .domain import ModelEntry
from .logger_factory import get_logger
from .utils.logfmt import fmt


class SystemPromptTemplate:
    """Jinja2 rendering of the system prompt sent ahead of every conversation.

    The template comes from ``path`` when that file exists (reloaded when its
    mtime changes), otherwise from the inline ``source`` string. Available
    variables: ``today`` (UTC date), ``chat_command``, ``default_model`` and
    ``models``.
    """

    def __init__(
        self,
        source: str = "",
        path: Optional[str] = None,
        *,
        chat_command: str = "/chat",
        models: Sequence[ModelEntry] = (),
        default_model: Optional[ModelEntry] = None,
    ):
        self.log = get_logger("PromptTemplate")
        self.env = Environment(loader=BaseLoader())
        self._inline = source or ""
        self._path = Path(path) if path else None
        self._mtime_ns = 0
        self._source = self._inline
        self.chat_command = chat_command
        self.models = list(models)
        self.default_model = default_model
        self._maybe_reload()

    def _maybe_reload(self) -> None:
        if self._path is None:
            return
        try:
            mtime = self._path.stat().st_mtime_ns
        except FileNotFoundError:
            if self._mtime_ns:
                self.log.warning(f"[prompt-file-missing] {fmt('path', str(self._path))}")
            self._mtime_ns = 0
            self._source = self._inline
            return
        if mtime != self._mtime_ns:
            self._source = self._path.read_text(encoding="utf-8")
            self._mtime_ns = mtime
            self.log.debug(f"[prompt-reload] {fmt('path', str(self._path))} {fmt('chars', len(self._source))}")

    def render(self, now: Optional[datetime] = None) -> str:
        self._maybe_reload()
        if not self._source:
            return ""
        now = now or datetime.now(timezone.utc)
        try:
            tmpl = self.env.from_string(self._source)
            return tmpl.render(
                today=now.date().isoformat(),
                chat_command=self.chat_command,
                default_model=self.default_model,
                models=self.models,
            ).strip()
        except TemplateError as e:
            # Broken templates are sent as raw text
            self.log.error(f"[prompt-render-failed] {fmt('error', e)}")
            return self._source.strip()
