"""Time helpers. All stored timestamps are naive UTC."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def format_date(value: datetime) -> str:
    """e.g. Monday, March 3, 2025"""
    return f"{value.strftime('%A, %B')} {value.day}, {value.year}"


def format_time(value: datetime) -> str:
    """e.g. 9:30 AM"""
    return value.strftime("%I:%M %p").lstrip("0")


def format_slot(start: datetime, end: datetime) -> str:
    return f"{format_time(start)} - {format_time(end)}"


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
