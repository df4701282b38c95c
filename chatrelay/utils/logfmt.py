from __future__ import annotations

import json
from typing import Any


def quote_value(value: Any) -> str:
    if value is None:
        return "NA"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return f"{value:.6f}".rstrip("0").rstrip(".") or "0"
    if isinstance(value, int):
        return str(value)
    try:
        s = json.dumps(str(value), ensure_ascii=False)
        return s
    except Exception:
        return f'"{str(value)}"'


def fmt(key: str, value: Any) -> str:
    return f"{key}={quote_value(value)}"
