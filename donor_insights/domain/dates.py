"""
Resolução de intervalos de datas.

Turns a symbolic range name ("last7days", "custom", ...) into concrete
calendar bounds, validates custom bounds, classifies ranges as standard
or large and provides the day/week/chunk helpers the engine builds on.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterator, Mapping, Optional, TypeVar
from zoneinfo import ZoneInfo

from donor_insights.core.config import settings
from donor_insights.core.errors import CalendarError, ValidationError

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

V = TypeVar("V")


class RangeName(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7days"
    LAST_14_DAYS = "last14days"
    LAST_30_DAYS = "last30days"
    THIS_WEEK = "thisweek"
    LAST_WEEK = "lastweek"
    THIS_MONTH = "thismonth"
    LAST_MONTH = "lastmonth"
    THIS_YEAR = "thisyear"
    LAST_YEAR = "lastyear"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str | "RangeName") -> "RangeName":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip())
        except ValueError as exc:
            raise ValidationError(
                "unknown_range", f"Unknown date range: {value!r}."
            ) from exc


class RangeClass(str, Enum):
    STANDARD = "standard"
    LARGE = "large"


_YEAR_RANGES = frozenset({RangeName.THIS_YEAR, RangeName.LAST_YEAR})


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar bounds; start <= end."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise CalendarError(
                f"Invalid period: {self.start.isoformat()} is after {self.end.isoformat()}",
                {"start": self.start.isoformat(), "end": self.end.isoformat()},
            )

    @property
    def days(self) -> int:
        """Number of calendar days, both ends included."""
        return (self.end - self.start).days + 1

    @property
    def span_days(self) -> int:
        return (self.end - self.start).days

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.end, time(23, 59, 59))

    def iter_days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# -----------------------------------------------------------------------------
# 1) "Hoje" no fuso configurado
# -----------------------------------------------------------------------------


def today_in(tz: Optional[ZoneInfo] = None) -> date:
    return datetime.now(tz or settings.tzinfo).date()


def parse_iso_date(value: str) -> date:
    """Parse a strict ``YYYY-MM-DD`` string."""
    value = (value or "").strip()
    if not _ISO_DATE.match(value):
        raise ValueError(f"Not a YYYY-MM-DD date: {value!r}")
    return date.fromisoformat(value)


# -----------------------------------------------------------------------------
# 2) Validação e resolução
# -----------------------------------------------------------------------------


def validate_custom_dates(
    custom_from: Optional[str],
    custom_to: Optional[str],
    *,
    today: Optional[date] = None,
    max_days: Optional[int] = None,
) -> DateRange:
    """
    Validate explicit custom bounds.

    Checks run in a fixed order so the caller always gets the first
    problem: missing dates, bad format, inverted range, future end,
    span over the allowed maximum.
    """
    today = today or today_in()
    max_days = settings.MAX_CUSTOM_RANGE_DAYS if max_days is None else max_days

    if not (custom_from or "").strip() or not (custom_to or "").strip():
        raise ValidationError(
            "missing_dates", "Please select both start and end dates for custom range."
        )

    try:
        start = parse_iso_date(custom_from)
        end = parse_iso_date(custom_to)
    except ValueError as exc:
        raise ValidationError(
            "invalid_format", "Invalid date format provided. Please use YYYY-MM-DD format."
        ) from exc

    if start > end:
        raise ValidationError("invalid_range", "Start date must be before end date.")

    if end > today:
        raise ValidationError("future_date", "End date cannot be in the future.")

    if (end - start).days > max_days:
        raise ValidationError(
            "range_too_large",
            f"Date range cannot exceed {max_days} days.",
            {"days": (end - start).days},
        )

    return DateRange(start, end)


def _month_start(day: date) -> date:
    return day.replace(day=1)


def resolve_date_range(
    range_name: str | RangeName,
    custom_from: Optional[str] = None,
    custom_to: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> DateRange:
    """Map a symbolic range name to concrete inclusive bounds anchored on *today*."""
    name = RangeName.parse(range_name)
    today = today or today_in()

    if name is RangeName.CUSTOM:
        return validate_custom_dates(custom_from, custom_to, today=today)

    if name is RangeName.TODAY:
        return DateRange(today, today)
    if name is RangeName.YESTERDAY:
        yesterday = today - timedelta(days=1)
        return DateRange(yesterday, yesterday)
    if name is RangeName.LAST_7_DAYS:
        return DateRange(today - timedelta(days=6), today)
    if name is RangeName.LAST_14_DAYS:
        return DateRange(today - timedelta(days=13), today)
    if name is RangeName.LAST_30_DAYS:
        return DateRange(today - timedelta(days=29), today)
    if name is RangeName.THIS_WEEK:
        return DateRange(week_start(today), today)
    if name is RangeName.LAST_WEEK:
        monday = week_start(today) - timedelta(days=7)
        return DateRange(monday, monday + timedelta(days=6))
    if name is RangeName.THIS_MONTH:
        return DateRange(_month_start(today), today)
    if name is RangeName.LAST_MONTH:
        last_day = _month_start(today) - timedelta(days=1)
        return DateRange(_month_start(last_day), last_day)
    if name is RangeName.THIS_YEAR:
        return DateRange(date(today.year, 1, 1), today)
    # LAST_YEAR
    return DateRange(date(today.year - 1, 1, 1), date(today.year - 1, 12, 31))


def classify(
    date_range: DateRange,
    range_name: Optional[str | RangeName] = None,
    *,
    large_days: Optional[int] = None,
) -> RangeClass:
    """Year ranges and anything spanning more than ``large_days`` are large."""
    large_days = settings.LARGE_RANGE_DAYS if large_days is None else large_days
    if range_name is not None and RangeName.parse(range_name) in _YEAR_RANGES:
        return RangeClass.LARGE
    if date_range.span_days > large_days:
        return RangeClass.LARGE
    return RangeClass.STANDARD


def execution_time_limit(range_name: str | RangeName, date_range: DateRange) -> int:
    """Seconds a request over this range is expected to need."""
    name = RangeName.parse(range_name)
    if name in _YEAR_RANGES:
        return 120
    if name in (RangeName.LAST_30_DAYS, RangeName.THIS_MONTH, RangeName.LAST_MONTH):
        return 60
    if name is RangeName.CUSTOM:
        span = date_range.span_days
        if span > 180:
            return 120
        if span > 60:
            return 90
        if span > 30:
            return 60
    return 30


# -----------------------------------------------------------------------------
# 3) Dias, semanas e janelas
# -----------------------------------------------------------------------------


def week_start(day: date) -> date:
    """Monday of the ISO week containing *day*."""
    return day - timedelta(days=day.weekday())


def day_keys(date_range: DateRange) -> list[str]:
    """Every ISO date in the range, in order."""
    try:
        return [d.isoformat() for d in date_range.iter_days()]
    except (OverflowError, ValueError) as exc:
        raise CalendarError(f"Could not enumerate days: {exc}", date_range.to_dict()) from exc


def to_weekly(daily: Mapping[str, V]) -> dict[str, V]:
    """
    Collapse an ordered daily series into weekly sums.

    A bucket opens at the first date and at every Monday; its key is the
    date that opened it. The last (possibly partial) bucket is flushed at
    the end of the series.
    """
    weekly: dict[str, V] = {}
    bucket_key: Optional[str] = None
    bucket_total = 0

    for key, value in daily.items():
        is_monday = date.fromisoformat(key).weekday() == 0
        if is_monday and bucket_key is not None:
            weekly[bucket_key] = bucket_total
            bucket_total = 0
        if bucket_key is None or is_monday:
            bucket_key = key
        bucket_total = bucket_total + value

    if bucket_key is not None:
        weekly[bucket_key] = bucket_total

    return weekly


def chunk_range(date_range: DateRange, chunk_days: Optional[int] = None) -> list[DateRange]:
    """Split into consecutive windows of ``chunk_days`` days; the last one is truncated."""
    chunk_days = settings.CHUNK_DAYS if chunk_days is None else chunk_days
    if chunk_days <= 0:
        raise CalendarError("chunk_days must be positive", {"chunk_days": chunk_days})

    chunks: list[DateRange] = []
    current = date_range.start
    step = timedelta(days=chunk_days - 1)
    while current <= date_range.end:
        chunk_end = min(current + step, date_range.end)
        chunks.append(DateRange(current, chunk_end))
        current = chunk_end + timedelta(days=1)
    return chunks
