from __future__ import annotations

import re
from typing import Optional

IMG_EXT_RE = re.compile(r"\.(png|jpe?g|gif|webp)(\?.*)?$", re.IGNORECASE)
AUDIO_EXT_RE = re.compile(r"\.(ogg|oga|mp3|m4a|wav|webm)(\?.*)?$", re.IGNORECASE)

_MAGIC = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def sniff_image_mime(data: bytes, declared: Optional[str] = None) -> str:
    """Best guess of an image's MIME type from its leading bytes.

    Falls back to the declared content type, then to ``application/octet-stream``.
    """
    for magic, mime in _MAGIC:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if declared:
        return declared.split(";", 1)[0].strip()
    return "application/octet-stream"


def _attachment_kind(att) -> Optional[str]:
    ctype = (getattr(att, "content_type", "") or "").lower()
    name = getattr(att, "filename", "") or ""
    url = str(getattr(att, "url", "") or "")
    if ctype.startswith("image/") or IMG_EXT_RE.search(name) or IMG_EXT_RE.search(url):
        return "image"
    # Discord voice messages carry a waveform and duration
    if ctype.startswith("audio/") or AUDIO_EXT_RE.search(name) or getattr(att, "duration", None) is not None:
        return "audio"
    return None


def first_attachment_url(message, kind: str) -> str:
    """URL of the first ``kind`` ("image" or "audio") attachment on a Discord message, or ""."""
    for att in getattr(message, "attachments", []) or []:
        if _attachment_kind(att) == kind:
            url = getattr(att, "url", None) or getattr(att, "proxy_url", None)
            if url:
                return str(url)
    return ""
