"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

PROCESS_STARTED_AT = time.monotonic()


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def fixed_offset(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def local_now(offset_minutes: int, now: datetime | None = None) -> datetime:
    """Wall-clock time at a fixed UTC offset, regardless of the host timezone."""

    return (now or utc_now()).astimezone(fixed_offset(offset_minutes))


def seconds_until_local_midnight(offset_minutes: int, now: datetime | None = None) -> float:
    local = local_now(offset_minutes, now)
    next_midnight = (local + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (next_midnight - local).total_seconds()


def format_uptime(seconds: float) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def process_uptime() -> float:
    return time.monotonic() - PROCESS_STARTED_AT


def local_date_parts(offset_minutes: int, now: datetime | None = None) -> tuple[str, str]:
    """Return ``(YYYY-MM-DD, "HH:MM (UTC+HH)")`` for the given offset."""

    local = local_now(offset_minutes, now)
    sign = "+" if offset_minutes >= 0 else "-"
    offset_hours = abs(offset_minutes) // 60
    return local.strftime("%Y-%m-%d"), f"{local:%H:%M} (UTC{sign}{offset_hours:02d})"


__all__ = [
    "PROCESS_STARTED_AT",
    "fixed_offset",
    "format_uptime",
    "local_date_parts",
    "local_now",
    "process_uptime",
    "seconds_until_local_midnight",
    "utc_now",
]
