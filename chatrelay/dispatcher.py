from __future__ import annotations

import time
from typing import Optional, Sequence

from .domain import AllModelsExhausted, GenerationFailed, GenerationResult, ModelEntry, Turn
from .llm.base import GenerationBackend
from .logger_factory import get_logger
from .model_catalog import ModelCatalog
from .utils.logfmt import fmt

# Substring OpenRouter puts in errors raised by the upstream provider
# rather than by the request itself
PROVIDER_ERROR_MARKER = "Provider returned error"


def is_transient_provider_error(err: BaseException) -> bool:
    return PROVIDER_ERROR_MARKER in str(err)


def _int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _float(value) -> float:
    try:
        return max(0.0, float(value or 0.0))
    except (TypeError, ValueError):
        return 0.0


class GenerationDispatcher:
    """Sends a turn sequence to the backend, walking the fallback list on provider errors.

    A model requested explicitly gets exactly one attempt. Otherwise the
    catalog's fallback models are tried in priority order and only errors
    carrying :data:`PROVIDER_ERROR_MARKER` move on to the next one. The
    response deadline belongs to the caller.
    """

    def __init__(self, backend: GenerationBackend, catalog: ModelCatalog, logger=None):
        self.backend = backend
        self.catalog = catalog
        self.log = logger or get_logger("Dispatcher")

    async def _call(self, turns: Sequence[Turn], model: str, attempt: int, correlation: Optional[str]) -> GenerationResult:
        start = time.monotonic()
        self.log.debug(f"[llm-start] {fmt('model', model)} {fmt('fallback_index', attempt)} {fmt('correlation', correlation)}")
        result = await self.backend.generate_from_prompt(turns, model=model)
        usage = (result or {}).get("usage") or {}
        dur_ms = int((time.monotonic() - start) * 1000)
        out = GenerationResult(
            text=str((result or {}).get("text") or ""),
            model=str((result or {}).get("model") or model),
            completion_tokens=_int(usage.get("completion_tokens")),
            total_tokens=_int(usage.get("total_tokens")),
            cost=_float(usage.get("cost")),
            retries=attempt,
        )
        self.log.info(
            f"[llm-finish] {fmt('model', out.model)} {fmt('duration_ms', dur_ms)} "
            f"{fmt('tokens_out', out.completion_tokens)} {fmt('total_tokens', out.total_tokens)} "
            f"{fmt('cost', out.cost)} {fmt('fallback_index', attempt)} {fmt('correlation', correlation)}"
        )
        return out

    async def dispatch(
        self,
        turns: Sequence[Turn],
        requested_model: Optional[ModelEntry | str] = None,
        *,
        correlation: Optional[str] = None,
    ) -> GenerationResult:
        if isinstance(requested_model, ModelEntry):
            requested = requested_model.identifier
        else:
            requested = requested_model or ""

        if requested:
            try:
                return await self._call(turns, requested, 0, correlation)
            except Exception as e:
                self.log.error(f"[llm-error] {fmt('model', requested)} {fmt('error', e)} {fmt('correlation', correlation)}")
                raise GenerationFailed(f"generation with {requested} failed: {e}") from e

        fallbacks = self.catalog.fallback_models()
        for idx, entry in enumerate(fallbacks):
            try:
                return await self._call(turns, entry.identifier, idx, correlation)
            except Exception as e:
                if is_transient_provider_error(e):
                    self.log.warning(
                        f"[llm-model-exhausted] {fmt('model', entry.identifier)} {fmt('fallback_index', idx)} "
                        f"{fmt('error', e)} {fmt('correlation', correlation)}"
                    )
                    continue
                self.log.error(f"[llm-error] {fmt('model', entry.identifier)} {fmt('error', e)} {fmt('correlation', correlation)}")
                raise GenerationFailed(f"generation with {entry.identifier} failed: {e}") from e

        self.log.error(f"[llm-fallback-exhausted] {fmt('attempts', len(fallbacks))} {fmt('correlation', correlation)}")
        raise AllModelsExhausted(len(fallbacks))
