"""Datetime parsing and formatting shared by report and planner code."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from chatledger.errors import InvalidRequest

ONE_MILLISECOND = timedelta(milliseconds=1)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_datetime(value: object) -> datetime | None:
    """Coerce a stored or user-supplied value into an aware UTC datetime.

    Naive datetimes are treated as UTC, which is how the Mongo driver returns
    them by default. Unparsable values yield ``None``.
    """

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return to_datetime(parsed)
    return None


def parse_datetime(value: object, field_name: str) -> datetime:
    parsed = to_datetime(value)
    if parsed is None:
        raise InvalidRequest(f"{field_name} must be a valid datetime string")
    return parsed


def parse_date_range(start: object, end: object) -> tuple[datetime, datetime]:
    """Validate an ordered ``[start, end]`` range, raising ``InvalidRequest``."""

    started = parse_datetime(start, "dateRange.start")
    ended = parse_datetime(end, "dateRange.end")
    if started > ended:
        raise InvalidRequest("dateRange.start must be before or equal to dateRange.end")
    return started, ended


def to_store_datetime(value: datetime) -> datetime:
    """Naive UTC datetime as stored by the Mongo driver."""

    return value.astimezone(timezone.utc).replace(tzinfo=None)


def format_iso(value: datetime | None) -> str:
    """Millisecond precision ISO-8601 with a ``Z`` suffix, or ``""``."""

    if value is None:
        return ""
    value = value.astimezone(timezone.utc)
    millis = value.microsecond // 1000
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{millis:03d}Z"


def epoch_ms(value: datetime) -> int:
    return (value - EPOCH) // ONE_MILLISECOND


def next_month_start(value: datetime) -> datetime:
    if value.month == 12:
        return datetime(value.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(value.year, value.month + 1, 1, tzinfo=timezone.utc)
