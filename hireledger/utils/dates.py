import calendar
from datetime import datetime, timezone
from typing import Optional, Tuple, Union


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every datetime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_datetime(value: Union[datetime, str, None]) -> Optional[datetime]:
    """SQLite hands back datetimes as ISO strings; PostgreSQL as datetime."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_bounds(value: datetime) -> Tuple[datetime, datetime]:
    """First and last instant of the calendar month containing value."""
    last_day = calendar.monthrange(value.year, value.month)[1]
    start = datetime(value.year, value.month, 1)
    end = datetime(value.year, value.month, last_day, 23, 59, 59, 999999)
    return start, end


def parse_month(value: str) -> datetime:
    """Parse 'YYYY-MM' into the first day of that month."""
    return datetime.strptime(value, "%Y-%m")
