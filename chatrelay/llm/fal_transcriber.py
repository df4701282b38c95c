from __future__ import annotations

import os
from typing import Optional

import httpx

from ..logger_factory import get_logger
from ..utils.logfmt import fmt
from .base import Transcriber


class FalTranscriber(Transcriber):
    """Speech-to-text through fal.ai's hosted whisper endpoint."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        whisper_url: str = "https://fal.run/fal-ai/whisper",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.log = get_logger("FalTranscriber")
        self.api_key = api_key or os.getenv("FAL_KEY")
        if not self.api_key:
            raise RuntimeError("Missing FAL_KEY in environment or constructor")
        self.whisper_url = whisper_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def generate_from_audio(self, audio_url: str) -> str:
        headers = {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            r = await self._client.post(self.whisper_url, json={"audio_url": audio_url}, headers=headers)
            r.raise_for_status()
            data = r.json()
        except httpx.HTTPStatusError as e:
            raise RuntimeError(f"fal whisper HTTP error {e.response.status_code}: {e.response.text[:300]}") from e
        except httpx.HTTPError as e:
            raise RuntimeError(f"error executing fal request: {e}") from e
        except ValueError as e:
            raise RuntimeError(f"error decoding fal response: {e}") from e
        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise RuntimeError("fal response carried no transcript text")
        self.log.debug(f"[transcribed] {fmt('chars', len(text))}")
        return text.strip()

    async def aclose(self):
        await self._client.aclose()
