from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
MONTH_NAMES = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class Granularity(str, Enum):
    day = "day"
    month = "month"
    year = "year"
    range = "range"


@dataclass(frozen=True)
class Bucket:
    label: str
    start: date
    end: date
    granularity: Granularity = Granularity.range
    selectable: bool = True

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Bucket start must not be after its end")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def local_today(tz: Optional[str] = None) -> date:
    zone = ZoneInfo(tz or get_settings().timezone)
    return datetime.now(zone).date()


def local_day(value: object, tz: Optional[ZoneInfo] = None) -> date:
    """Normalise a timestamp to the calendar day it falls on locally.

    Naive datetimes are taken to be local already; aware ones are converted to
    ``tz`` first. Plain dates and ISO strings are accepted too. Anything else
    raises ValueError.
    """
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"Unparseable timestamp {value!r}") from exc
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            zone = tz or ZoneInfo(get_settings().timezone)
            value = value.astimezone(zone)
        return value.date()
    if isinstance(value, date):
        return value
    raise ValueError(f"Unsupported timestamp {value!r}")


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    month_index = (year * 12) + (month - 1) + count
    return month_index // 12, (month_index % 12) + 1


def day_bucket(day: date, label: Optional[str] = None) -> Bucket:
    return Bucket(label or day.isoformat(), day, day, Granularity.day)


def month_bucket(year: int, month: int, today: Optional[date] = None) -> Bucket:
    start = date(year, month, 1)
    end = date(year, month, days_in_month(year, month))
    selectable = today is None or start <= today
    return Bucket(MONTH_NAMES[month - 1], start, end, Granularity.month, selectable)


def year_bucket(year: int, today: Optional[date] = None) -> Bucket:
    start = date(year, 1, 1)
    selectable = today is None or start <= today
    return Bucket(str(year), start, date(year, 12, 31), Granularity.year, selectable)


def range_bucket(start: date, end: date, label: Optional[str] = None) -> Bucket:
    return Bucket(label or f"{start.isoformat()}..{end.isoformat()}", start, end)


def generate_daily_window(n: int, anchor: date) -> list[Bucket]:
    """Return ``n`` single-day buckets, oldest first, the newest being ``anchor``.

    The two newest are labelled "today" and "yesterday", the rest by weekday.
    """
    if n < 0:
        raise ValueError("Window length must not be negative")
    buckets: list[Bucket] = []
    for offset in range(n - 1, -1, -1):
        day = anchor - timedelta(days=offset)
        if offset == 0:
            label = "today"
        elif offset == 1:
            label = "yesterday"
        else:
            label = WEEKDAY_NAMES[day.weekday()]
        buckets.append(day_bucket(day, label))
    return buckets


def generate_month_buckets(year: int, today: Optional[date] = None) -> list[Bucket]:
    """All twelve months of ``year``; months after ``today`` are not selectable."""
    return [month_bucket(year, month, today) for month in range(1, 13)]


def generate_month_days(year: int, month: int) -> list[Bucket]:
    return [
        day_bucket(date(year, month, day), f"{day:02d}")
        for day in range(1, days_in_month(year, month) + 1)
    ]


def generate_month_trend(n: int, anchor: date) -> list[Bucket]:
    """The ``n`` calendar months ending with the month of ``anchor``."""
    buckets: list[Bucket] = []
    for offset in range(n - 1, -1, -1):
        year, month = add_months(anchor.year, anchor.month, -offset)
        buckets.append(month_bucket(year, month, anchor))
    return buckets


def generate_year_buckets(
    first_year: int, last_year: int, today: Optional[date] = None
) -> list[Bucket]:
    if first_year > last_year:
        raise ValueError("First year must not be after last year")
    return [year_bucket(year, today) for year in range(first_year, last_year + 1)]


def previous_bucket(bucket: Bucket) -> Bucket:
    """The bucket of the same shape immediately before ``bucket``."""
    if bucket.granularity == Granularity.month:
        year, month = add_months(bucket.start.year, bucket.start.month, -1)
        return month_bucket(year, month)
    if bucket.granularity == Granularity.year:
        return year_bucket(bucket.start.year - 1)
    end = bucket.start - timedelta(days=1)
    start = end - timedelta(days=bucket.days - 1)
    if bucket.granularity == Granularity.day:
        return day_bucket(start)
    return range_bucket(start, end)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
    window_days: int = 7,
) -> Period:
    today = today or local_today()
    if not period or period == "all":
        return Period("all", date(1970, 1, 1), today)
    if period == "last_7_days":
        window = generate_daily_window(window_days, today)
        return Period("last_7_days", window[0].start, window[-1].end)
    if period == "last_month":
        bucket = previous_bucket(month_bucket(today.year, today.month))
        return Period("last_month", bucket.start, bucket.end)
    if period == "this_year":
        bucket = year_bucket(today.year)
        return Period("this_year", bucket.start, bucket.end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)

    # this month
    bucket = month_bucket(today.year, today.month)
    return Period("this_month", bucket.start, bucket.end)
