from __future__ import annotations

import asyncio
import base64
import os
import random
from typing import Optional, Sequence

import httpx

from ..domain import Author, ProviderError, Turn
from ..logger_factory import get_logger
from ..prompt_template_engine import SystemPromptTemplate
from ..utils.logfmt import fmt
from ..vision_utils import sniff_image_mime
from .base import GenerationBackend


class OpenRouterClient(GenerationBackend):
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        system_prompt: str = "",
        prompt_template: Optional[SystemPromptTemplate] = None,
        base_url: str = "https://openrouter.ai/api/v1/chat/completions",
        concurrency: int = 2,
        timeout: float = 60.0,
        retry_attempts: int = 1,  # retries on 429/5xx/timeouts for the same model (total attempts = 1 + retries)
        x_title: Optional[str] = "chatrelay",
        http_referer: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.log = get_logger("OpenRouter")
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self.api_key:
            raise RuntimeError("Missing OPENROUTER_API_KEY in environment or constructor")
        self.system_prompt = system_prompt
        self.prompt_template = prompt_template
        self.base_url = base_url
        self.timeout = timeout
        self.retry_attempts = max(0, int(retry_attempts))
        self.x_title = x_title
        self.http_referer = http_referer
        self._sem = asyncio.Semaphore(max(1, int(concurrency)))
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _image_part(self, url: str) -> dict:
        try:
            r = await self._client.get(url)
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise RuntimeError(f"could not download image: {e}") from e
        data = r.content
        mime = sniff_image_mime(data, r.headers.get("content-type"))
        encoded = base64.b64encode(data).decode("ascii")
        return {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}}

    async def build_messages(self, turns: Sequence[Turn]) -> list[dict]:
        messages: list[dict] = []
        system = self.prompt_template.render() if self.prompt_template is not None else self.system_prompt
        if system:
            messages.append({"role": "system", "content": system})
        for turn in turns:
            if turn.author is Author.USER:
                if turn.image_url:
                    image = await self._image_part(turn.image_url)
                    messages.append({"role": "user", "content": [image, {"type": "text", "text": turn.text}]})
                else:
                    messages.append({"role": "user", "content": turn.text})
            else:
                # Failure notes are replayed as assistant text so the model sees them
                messages.append({"role": "assistant", "content": turn.text})
        return messages

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self.http_referer:
            headers["HTTP-Referer"] = self.http_referer
        if self.x_title:
            headers["X-Title"] = self.x_title
        return headers

    @staticmethod
    def _error_message(body) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        err = body.get("error")
        if isinstance(err, dict):
            msg = str(err.get("message") or "")
            raw = (err.get("metadata") or {}).get("raw") if isinstance(err.get("metadata"), dict) else None
            return f"{msg}: {raw}" if raw else msg
        if isinstance(err, str):
            return err
        return None

    async def generate_from_prompt(self, turns: Sequence[Turn], *, model: str) -> dict:
        payload = {
            "model": model,
            "messages": await self.build_messages(turns),
            "usage": {"include": True},
        }

        # Backoff + jitter for 429/5xx and timeouts on the same model
        attempts = 0
        max_attempts = 1 + self.retry_attempts
        last_exc: Optional[Exception] = None
        data: dict = {}
        async with self._sem:
            while attempts < max_attempts:
                attempts += 1
                try:
                    r = await self._client.post(self.base_url, json=payload, headers=self._headers())
                    r.raise_for_status()
                    data = r.json()
                    break
                except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError) as e:
                    last_exc = e
                    status = "timeout"
                except httpx.HTTPStatusError as e:
                    code = e.response.status_code
                    try:
                        message = self._error_message(e.response.json()) or e.response.text[:500]
                    except ValueError:
                        message = e.response.text[:500]
                    last_exc = ProviderError(f"OpenRouter HTTP error {code}: {message}", status_code=code)
                    if code not in (429, 500, 502, 503, 504):
                        raise last_exc from e
                    status = code

                if attempts < max_attempts:
                    backoff = 0.25 * (2 ** (attempts - 1))
                    delay = backoff + backoff * (0.5 + random.random() * 0.5)
                    self.log.info(
                        f"llm-retry {fmt('model', model)} {fmt('attempt', attempts)} "
                        f"{fmt('backoff_ms', int(delay * 1000))} {fmt('status', status)}"
                    )
                    await asyncio.sleep(delay)
            else:
                if isinstance(last_exc, ProviderError):
                    raise last_exc
                raise RuntimeError(f"OpenRouter retries exhausted: {last_exc}") from last_exc

        # Upstream provider failures can come back as 200 with an error object
        err_msg = self._error_message(data)
        if err_msg:
            code = (data.get("error") or {}).get("code") if isinstance(data.get("error"), dict) else None
            raise ProviderError(f"OpenRouter API error: {err_msg}", status_code=code if isinstance(code, int) else None)
        try:
            choice = data["choices"][0]
            text = (choice["message"]["content"] or "").strip()
        except (KeyError, IndexError, TypeError) as e:
            raise RuntimeError(f"OpenRouter response parse error: {str(data)[:500]}") from e
        choice_err = self._error_message(choice) if isinstance(choice, dict) else None
        if choice_err:
            raise ProviderError(f"OpenRouter API error: {choice_err}")

        usage = data.get("usage") or {}
        return {
            "text": text,
            "model": data.get("model") or model,
            "usage": {
                "prompt_tokens": usage.get("prompt_tokens"),
                "completion_tokens": usage.get("completion_tokens"),
                "total_tokens": usage.get("total_tokens"),
                "cost": usage.get("cost"),
            },
        }

    async def aclose(self):
        await self._client.aclose()
