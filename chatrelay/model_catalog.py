from __future__ import annotations

import re
from typing import Iterable, Sequence

from .domain import ModelEntry


class ModelCatalog:
    """Configured models, keyword lookup and fallback ordering."""

    def __init__(self, models: Iterable[ModelEntry], default_model: ModelEntry):
        self._models: tuple[ModelEntry, ...] = tuple(models)
        self.default_model = default_model
        # sorted() is stable: equal priorities keep registration order
        self._fallbacks: tuple[ModelEntry, ...] = tuple(
            sorted((m for m in self._models if m.is_fallback), key=lambda m: m.priority)
        )

    @property
    def models(self) -> Sequence[ModelEntry]:
        return self._models

    def fallback_models(self) -> Sequence[ModelEntry]:
        return self._fallbacks

    def find_by_keyword(self, keyword: str) -> ModelEntry | None:
        k = (keyword or "").lstrip("#").lower()
        for m in self._models:
            if m.keyword.lower() == k:
                return m
        return None

    def resolve(self, text: str) -> tuple[str, ModelEntry | None]:
        """Find the first configured ``#keyword`` in ``text``.

        Models are checked in configured order; the first one whose tag occurs
        anywhere in the text wins and only its first occurrence is removed.
        Returns the (possibly shortened) text and the matched entry, or the
        unchanged text and None.
        """
        for m in self._models:
            # Match on the original text: lower() may change its length
            match = re.search(re.escape("#" + m.keyword), text, re.IGNORECASE)
            if match is not None:
                return text[:match.start()] + text[match.end():], m
        return text, None

    def select(self, text: str) -> tuple[str, ModelEntry]:
        stripped, model = self.resolve(text)
        return stripped, model if model is not None else self.default_model
