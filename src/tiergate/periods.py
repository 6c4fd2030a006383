"""Calendar period helpers for usage counters.

Three different period semantics are used by the ledger: a sliding window
(a fixed duration ending now), the ISO-8601 week and the UTC calendar month.
The week and month helpers below compute wall-clock boundaries; the sliding
window needs nothing more than ``now - window`` and lives in the ledger.

All functions work on timezone-aware UTC datetimes. Naive datetimes are
treated as UTC.
"""

import math
from datetime import UTC, datetime, timedelta

_LAST_MS = timedelta(milliseconds=1)


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(to_utc(value).timestamp() * 1000)


def iso_week_id(now: datetime) -> str:
    """ISO week identifier in ``{iso_year}-{week:02}`` form, e.g. ``2025-01``.

    The year is the ISO year (the year holding the week's Thursday), which
    differs from the calendar year around New Year.
    """
    iso_year, iso_week, _ = to_utc(now).isocalendar()
    return f"{iso_year}-{iso_week:02d}"


def end_of_iso_week(now: datetime) -> datetime:
    """Sunday 23:59:59.999 UTC of the ISO week containing ``now``."""
    current = to_utc(now)
    monday = (current - timedelta(days=current.weekday())).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return monday + timedelta(days=7) - _LAST_MS


def month_id(now: datetime) -> str:
    current = to_utc(now)
    return f"{current.year}-{current.month:02d}"


def start_of_next_month(now: datetime) -> datetime:
    current = to_utc(now)
    if current.month == 12:  # noqa: PLR2004
        return datetime(current.year + 1, 1, 1, tzinfo=UTC)
    return datetime(current.year, current.month + 1, 1, tzinfo=UTC)


def end_of_month(now: datetime) -> datetime:
    """Last millisecond of the UTC calendar month containing ``now``."""
    return start_of_next_month(now) - _LAST_MS


def expire_at_seconds(boundary: datetime) -> int:
    """EXPIREAT value for a period whose last millisecond is ``boundary``.

    The key lives until the instant after the boundary (the start of the next
    period), rounded up to whole seconds.
    """
    return math.ceil((to_utc(boundary) + _LAST_MS).timestamp())
