"""UTC time helpers shared by the repositories and the evaluator."""

from datetime import date, datetime, time, timezone
from typing import Callable, Optional


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return to_utc(value).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value))


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(to_utc(value).date(), time.min, tzinfo=timezone.utc)


def day_of(value: datetime) -> date:
    return to_utc(value).date()
