"""Time and day-boundary utilities.

All scheduling runs on the server's wall clock. Every day comparison goes
through ``to_midnight`` so no date object is ever mutated in place.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def local_now(tz: str = "") -> datetime:
    """Current wall-clock time as a naive datetime.

    Args:
        tz: Optional IANA zone name; empty means the server's local time.
    """
    if tz:
        return datetime.now(ZoneInfo(tz)).replace(tzinfo=None)
    return datetime.now()


def to_midnight(value: date | datetime) -> datetime:
    """Truncate a date or datetime to midnight of the same day."""
    if isinstance(value, datetime):
        return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)
    return datetime.combine(value, time.min)


def format_hhmm(dt: datetime) -> str:
    """Format a datetime as zero-padded HH:MM."""
    return dt.strftime("%H:%M")


def is_valid_hhmm(value: str) -> bool:
    """Check that a string is a 24-hour HH:MM time."""
    if len(value) != 5 or value[2] != ":":
        return False
    try:
        time.fromisoformat(value)
    except ValueError:
        return False
    return True


def same_day(a: datetime | None, b: datetime) -> bool:
    """True when both values fall on the same calendar day."""
    return a is not None and to_midnight(a) == to_midnight(b)


def same_month(a: datetime | None, b: datetime) -> bool:
    """True when both values fall in the same calendar month of the same year."""
    return a is not None and (a.year, a.month) == (b.year, b.month)


def seconds_until_next_minute(now: datetime) -> float:
    """Seconds left until the next HH:MM boundary."""
    next_minute = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
    return (next_minute - now).total_seconds()
