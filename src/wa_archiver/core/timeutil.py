"""Timestamp helpers shared by the store, exports and logs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_store_ts(dt: datetime) -> str:
    """Format like the store's created_at default: ``2024-01-31T08:15:00.123Z``."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def parse_store_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_to_iso(seconds: int) -> str:
    """Unix seconds as an ISO-8601 UTC string with millisecond precision."""
    return to_store_ts(datetime.fromtimestamp(seconds, tz=timezone.utc))


def start_of_day(tz: tzinfo, now: datetime | None = None) -> datetime:
    """Local midnight of the current day in ``tz``."""
    local = (now or utc_now()).astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def day_bounds(tz: tzinfo, now: datetime | None = None) -> tuple[int, int]:
    """Inclusive unix-second bounds of the current day in ``tz``."""
    start = start_of_day(tz, now)
    end = start + timedelta(days=1)
    return int(start.timestamp()), int(end.timestamp()) - 1


def format_duration(seconds: float) -> str:
    """``90061`` -> ``"1d 1h 1m 1s"``; zero units are left out."""
    total = max(0, int(seconds))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
