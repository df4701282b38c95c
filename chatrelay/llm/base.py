from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ..domain import Turn


class GenerationBackend(ABC):
    @abstractmethod
    async def generate_from_prompt(self, turns: Sequence[Turn], *, model: str) -> dict:
        """Generate the next assistant message for ``turns`` with ``model``.

        Returns a dict with ``text``, ``model`` (the identifier the provider
        actually used) and ``usage`` (``completion_tokens``, ``total_tokens``,
        ``cost``).
        """
        ...


class Transcriber(ABC):
    @abstractmethod
    async def generate_from_audio(self, audio_url: str) -> str:
        ...
