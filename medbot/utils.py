"""Shared utility helpers for medbot."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def parse_timestamp(ts: str | None) -> datetime | None:
    """Parse SQLite TIMESTAMP string to timezone-aware datetime, or None."""
    if not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts)
        # Ensure timezone-aware (SQLite stores naive timestamps as UTC)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, TypeError):
        return None


def now_utc() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def format_duration(delta: timedelta) -> str:
    """Render a duration as a compact ``1d 2h 3m`` string."""
    total_minutes = max(int(delta.total_seconds() // 60), 0)
    days, rem = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(rem, 60)
    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)


def safe_format(template: str, *args: object, logger=None) -> str:
    """Fill ``{0}``-style placeholders; return the raw template if it does not fit."""
    try:
        return template.format(*args)
    except (KeyError, IndexError, ValueError) as e:
        if logger is not None:
            logger.warning("Template format error for %r: %s", template, e)
        return template
