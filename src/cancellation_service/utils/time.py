"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return to_iso(utc_now())


def to_iso(value: datetime) -> str:
    """Render an instant as a UTC ISO-8601 string with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Raises ``ValueError`` for anything that is not ISO-8601.
    """
    candidate = value.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_instant(value: datetime | str) -> str:
    """Accept a datetime or ISO string and return a UTC ISO string."""
    if isinstance(value, datetime):
        return to_iso(value)
    return to_iso(parse_iso(value))


def trailing_window(days: int, *, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return ``(now - days, now)``."""
    end = now or utc_now()
    return end - timedelta(days=days), end
