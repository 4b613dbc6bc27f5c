"""Calendar helpers shared by analytics and partner payments.

All calendar dates are derived in settings.TIMEZONE and handled as
`datetime.date`; the ISO string form (YYYY-MM-DD) is the storage key.

Pay periods do not follow calendar months: a period runs from the
PAY_PERIOD_START_DAY (21st) of one month through the day before it (20th)
in the next month, both inclusive.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional
from zoneinfo import ZoneInfo

from config.settings import settings
from rakuado.errors import ValidationError

PERIOD_KINDS = {"current": 0, "previous": 1}


def local_now(now: Optional[datetime] = None) -> datetime:
    """`now` (or the wall clock) converted to the configured zone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(settings.TIMEZONE))


def local_today(now: Optional[datetime] = None) -> date:
    return local_now(now).date()


def epoch_ms(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int(now.timestamp() * 1000)


def iso(d: date) -> str:
    return d.isoformat()


def parse_date(value) -> date:
    """Parse YYYY-MM-DD (or pass through a date). Raises ValidationError."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")


def date_range(start: date, end: date) -> Iterator[date]:
    """Every day from start through end, inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def week_start(d: date) -> date:
    """The Sunday on or before `d`."""
    return d - timedelta(days=(d.weekday() + 1) % 7)


def month_start(d: date) -> date:
    return d.replace(day=1)


def next_month_start(d: date) -> date:
    year, month = _shift_month(d.year, d.month, 1)
    return date(year, month, 1)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


@dataclass(frozen=True)
class PayPeriod:
    start: date
    end: date

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def key(self) -> str:
        """Identifier used by payment confirmations."""
        return f"{iso(self.start)}_{iso(self.end)}"

    @property
    def month_label(self) -> str:
        return f"{self.start.year}年{self.start.month}月"

    def to_dict(self, name: Optional[str] = None) -> dict:
        data = {"startDate": iso(self.start), "endDate": iso(self.end)}
        if name is not None:
            data = {"name": name, **data}
        return data


def get_custom_month_period(periods_back: int = 0, now: Optional[datetime] = None) -> PayPeriod:
    """Pay period containing `now`, or `periods_back` periods before it.

    Before the start day the active period began in the previous month.
    """
    if periods_back < 0:
        raise ValidationError("periods_back must be >= 0")
    start_day = settings.PAY_PERIOD_START_DAY
    today = local_today(now)

    anchor = 0 if today.day >= start_day else -1
    year, month = _shift_month(today.year, today.month, anchor - periods_back)
    start = date(year, month, start_day)
    end_year, end_month = _shift_month(year, month, 1)
    end = date(end_year, end_month, start_day) - timedelta(days=1)
    return PayPeriod(start=start, end=end)


def resolve_period(kind: str, now: Optional[datetime] = None) -> PayPeriod:
    """Map a named period ("current" / "previous") to its dates."""
    if kind not in PERIOD_KINDS:
        raise ValidationError(f"Invalid period {kind!r}. Use \"current\" or \"previous\"")
    return get_custom_month_period(PERIOD_KINDS[kind], now=now)
