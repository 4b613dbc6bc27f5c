"""Read-only queries over the daily analytics series."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.db.repository import AnalyticsRepository
from rakuado.errors import ValidationError
from rakuado.services.periods import (
    PERIOD_KINDS, date_range, get_custom_month_period, iso, local_today, resolve_period,
)

# granularity → number of most recent records returned
ROLLUP_LIMITS = {"day": 7, "week": 4, "month": 12}


def pct_change(current: int, previous: int) -> float:
    """Percentage change rounded to 1 decimal; 0 when there is no baseline."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 1)


def ctr(views: int, clicks: int) -> float:
    if not views:
        return 0.0
    return round(clicks / views * 100, 2)


async def get_period(session: AsyncSession, kind: str = "current", site: str = "all",
                     now: Optional[datetime] = None) -> dict:
    """One {date, views, clicks} per day of the pay period, zero-filled."""
    period = resolve_period(kind, now)
    repo = AnalyticsRepository(session)
    by_date = {d.key: d for d in await repo.daily_between(period.start, period.end)}

    data = []
    for day in date_range(period.start, period.end):
        record = by_date.get(iso(day))
        counts = record.counts(site) if record else {"views": 0, "clicks": 0}
        data.append({"date": iso(day), **counts})

    return {
        "period": kind,
        "site": site,
        "data": data,
        "periodInfo": {**period.to_dict(kind), "totalDays": period.total_days},
    }


async def get_sites(session: AsyncSession) -> list[str]:
    """Domains present in the most recent daily record."""
    latest = await AnalyticsRepository(session).latest_daily()
    return sorted(latest.sites) if latest else []


async def _period_totals(repo: AnalyticsRepository, start, end) -> dict:
    views = clicks = 0
    for record in await repo.daily_between(start, end):
        views += record.views
        clicks += record.clicks
    return {"views": views, "clicks": clicks, "ctr": ctr(views, clicks)}


async def get_summary(session: AsyncSession, kind: str = "current",
                      now: Optional[datetime] = None) -> dict:
    """Period totals against the period before it, plus today against yesterday."""
    period = resolve_period(kind, now)
    before = get_custom_month_period(PERIOD_KINDS[kind] + 1, now)

    repo = AnalyticsRepository(session)
    totals = await _period_totals(repo, period.start, period.end)
    previous = await _period_totals(repo, before.start, before.end)

    today = local_today(now)
    today_record = await repo.get_daily(today)
    yesterday_record = await repo.get_daily(today - timedelta(days=1))
    today_counts = today_record.counts() if today_record else {"views": 0, "clicks": 0}
    yesterday_counts = yesterday_record.counts() if yesterday_record else {"views": 0, "clicks": 0}

    return {
        "period": period.to_dict(kind),
        "totals": totals,
        "previousPeriod": {**previous, **before.to_dict()},
        "change": {
            "views": pct_change(totals["views"], previous["views"]),
            "clicks": pct_change(totals["clicks"], previous["clicks"]),
        },
        "today": {"date": iso(today), **today_counts},
        "yesterday": {"date": iso(today - timedelta(days=1)), **yesterday_counts},
        "dailyChange": {
            "views": pct_change(today_counts["views"], yesterday_counts["views"]),
            "clicks": pct_change(today_counts["clicks"], yesterday_counts["clicks"]),
        },
    }


async def get_rollups(session: AsyncSession, granularity: str = "day", site: str = "all") -> dict:
    """Most recent daily/weekly/monthly records, oldest first."""
    if granularity not in ROLLUP_LIMITS:
        raise ValidationError(f"Invalid granularity {granularity!r}. Use day, week or month")
    records = await AnalyticsRepository(session).recent(granularity, ROLLUP_LIMITS[granularity])
    return {
        "granularity": granularity,
        "site": site,
        "data": [{"date": r.key, **r.counts(site)} for r in records],
    }
