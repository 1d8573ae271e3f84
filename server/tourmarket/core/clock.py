"""Calendar helpers for travel dates."""

from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], date]


def utc_today() -> date:
    """Current calendar date in UTC."""
    return datetime.now(timezone.utc).date()


def utc_now() -> datetime:
    """Current timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def normalize_travel_date(value: object) -> date:
    """
    Reduce a client-supplied travel date to a bare calendar date.

    Datetimes keep the calendar date they were written in; the time of day
    and any UTC offset are discarded so that the same trip never shifts to a
    neighbouring day depending on the caller's timezone.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("travel date must not be empty")
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    raise ValueError(f"unsupported travel date value: {value!r}")
