"""Date and timestamp utilities"""

from datetime import date, datetime, timedelta, timezone
from typing import Union

from billing_settlement.domain.exceptions import ValidationError

TimestampLike = Union[datetime, date, str, int]


def add_days(from_date: date, days: int) -> date:
    """Add calendar days to a date"""
    return from_date + timedelta(days=days)


def utc_now() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


def normalize_timestamp(value: TimestampLike) -> datetime:
    """
    Normalize any accepted timestamp representation to one canonical instant.

    Canonical form: timezone-aware UTC datetime truncated to milliseconds.

    Accepts:
    - datetime (naive values are taken as UTC)
    - date (midnight UTC)
    - ISO-8601 string, with or without a trailing "Z"
    - int epoch milliseconds
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid timestamp: {value!r}")

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, int):
        dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid ISO timestamp: {value!r}") from e
    else:
        raise ValidationError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def to_date(value: TimestampLike) -> date:
    """Calendar date of a timestamp-like value (UTC for instants)"""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return normalize_timestamp(value).date()


def fiscal_year(on: date, start_month: int = 7) -> int:
    """
    Fiscal year containing a date, named after the calendar year it ends in.

    With a July start, 2025-07-01 through 2026-06-30 is fiscal year 2026.
    """
    if start_month > 1 and on.month >= start_month:
        return on.year + 1
    return on.year


def fiscal_year_start(year: int, start_month: int = 7) -> date:
    """First day of a fiscal year"""
    if start_month > 1:
        return date(year - 1, start_month, 1)
    return date(year, 1, 1)
