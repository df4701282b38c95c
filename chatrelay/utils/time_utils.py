from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime | None = None) -> datetime:
    """Return the first UTC midnight strictly after ``now``."""
    current = (now or now_utc()).astimezone(timezone.utc)
    tomorrow = current + timedelta(days=1)
    return tomorrow.replace(hour=0, minute=0, second=0, microsecond=0)


def seconds_until(target: datetime, now: datetime | None = None) -> float:
    current = now or now_utc()
    return max(0.0, (target - current).total_seconds())


def format_duration(seconds: float) -> str:
    """Render a duration truncated to whole seconds, e.g. ``3h2m1s`` or ``45s``."""
    total = int(max(0, seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
