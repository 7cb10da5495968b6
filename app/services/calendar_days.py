from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Union

from app.errors import InvalidDateError

DateLike = Union[date, datetime, str]

_LAST_MILLISECOND_OF_DAY = timedelta(days=1) - timedelta(milliseconds=1)


@dataclass(frozen=True)
class DayRange:
    start: datetime
    end: datetime


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse(value: DateLike, field: str) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = f"{raw[:-1]}+00:00"
        try:
            return as_utc(datetime.fromisoformat(raw))
        except ValueError:
            raise InvalidDateError(field, value) from None
    raise InvalidDateError(field, value)


def normalize_day(value: DateLike, *, field: str = "date") -> datetime:
    """Pin a date-like value to 00:00:00.000 UTC of its calendar day."""
    parsed = _parse(value, field)
    return datetime.combine(parsed.date(), time.min, tzinfo=timezone.utc)


def day_key(value: DateLike, *, field: str = "date") -> date:
    return normalize_day(value, field=field).date()


def day_range(value: DateLike, *, field: str = "date") -> DayRange:
    start = normalize_day(value, field=field)
    return DayRange(start=start, end=start + _LAST_MILLISECOND_OF_DAY)
