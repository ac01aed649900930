from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from socialpulse.utils.errors import InvalidQueryError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        # Handle potential Z suffix or offset
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise InvalidQueryError(f"Invalid date format: {value}") from e
    return ensure_utc(dt)


def validate_range(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    if start is None or end is None:
        raise InvalidQueryError("Both startDate and endDate are required")
    start, end = ensure_utc(start), ensure_utc(end)
    if start > end:
        raise InvalidQueryError("startDate must not be after endDate")
    return start, end


def start_of_day(dt: datetime) -> datetime:
    dt = ensure_utc(dt)
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(dt: datetime) -> datetime:
    """Monday 00:00 UTC of the week containing dt."""
    day = start_of_day(dt)
    return day - timedelta(days=day.weekday())


def start_of_month(dt: datetime) -> datetime:
    return start_of_day(dt).replace(day=1)


def add_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1)
    return dt.replace(month=dt.month + 1)


def previous_month(dt: datetime) -> datetime:
    return start_of_month(dt) - timedelta(days=1)


def iso_day(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d") if dt else ""
