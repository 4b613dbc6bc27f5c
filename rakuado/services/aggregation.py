"""
Rakuado Daily Aggregation
---
Turns cumulative snapshots into per-day activity and rolls those days up
into weekly and monthly totals.

Stages, each committed on its own so a failure in one never loses the work
of the ones before it:
1. daily      — delta between the day's snapshot and the previous day's
2. weekly     — sum of the daily records of the enclosing Sunday-start week
3. monthly    — sum of the daily records of the enclosing calendar month
4. retention  — prune records older than the configured windows

Every write replaces a record by its date, so any stage can be re-run for
any day. The scheduled job closes yesterday from its last stored snapshot
and then opens today from a fresh one; a missed run is healed by the next.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from rakuado.db.repository import AnalyticsRepository
from rakuado.errors import ValidationError
from rakuado.models import Activity
from rakuado.services.periods import (
    date_range, iso, local_today, month_start, next_month_start, week_start,
)
from rakuado.services.snapshots import build_snapshot

logger = logging.getLogger(__name__)

STAGES = ("daily", "weekly", "monthly", "retention")
MAX_BACKFILL_DAYS = 366


def compute_daily_delta(day: str, today: Activity, previous: Activity) -> Activity:
    """Per-day activity: today's snapshot minus the previous one, clamped at 0.

    Sites whose delta is zero for both views and clicks are omitted.
    """
    daily = Activity(
        key=day,
        views=max(0, today.views - previous.views),
        clicks=max(0, today.clicks - previous.clicks),
    )
    for domain in sorted(today.sites):
        current, before = today.site(domain), previous.site(domain)
        views = max(0, current["views"] - before["views"])
        clicks = max(0, current["clicks"] - before["clicks"])
        if views or clicks:
            daily.sites[domain] = {"views": views, "clicks": clicks}
    return daily


def sum_activity(key: str, records: list[Activity]) -> Activity:
    total = Activity(key=key)
    for record in records:
        total.add(record)
    return total


@dataclass
class AggregationResult:
    """Outcome of one aggregation run."""
    date: str
    completed_stages: list[str] = field(default_factory=list)
    failed_stages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    daily: Optional[dict] = None
    pruned: dict[str, int] = field(default_factory=dict)
    started_at: str = ""
    completed_at: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed_stages

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "ok": self.ok,
            "completedStages": self.completed_stages,
            "failedStages": self.failed_stages,
            "errors": self.errors,
            "daily": self.daily,
            "pruned": self.pruned,
            "durationMs": self.duration_ms,
        }


async def _snapshot_pair(repo: AnalyticsRepository, day: date, today: date,
                         now: datetime) -> tuple[Activity, Activity]:
    """The day's snapshot (fresh if it is today) and the previous day's stored one."""
    if day == today:
        snapshot = await build_snapshot(repo.session, now)
    else:
        snapshot = await repo.get_snapshot(day) or Activity(key=iso(day))
    previous_day = day - timedelta(days=1)
    previous = await repo.get_snapshot(previous_day) or Activity(key=iso(previous_day))
    return snapshot, previous


async def rebuild_week(session: AsyncSession, start: date) -> Activity:
    """Recompute the weekly rollup starting on Sunday `start`. Caller commits."""
    repo = AnalyticsRepository(session)
    days = await repo.daily_between(start, start + timedelta(days=7), end_inclusive=False)
    weekly = sum_activity(iso(start), days)
    await repo.save_weekly(weekly)
    return weekly


async def rebuild_month(session: AsyncSession, start: date) -> Activity:
    """Recompute the monthly rollup starting on the 1st `start`. Caller commits."""
    repo = AnalyticsRepository(session)
    days = await repo.daily_between(start, next_month_start(start), end_inclusive=False)
    monthly = sum_activity(iso(start), days)
    await repo.save_monthly(monthly)
    return monthly


async def prune_old_data(session: AsyncSession, today: date) -> dict[str, int]:
    """Delete records older than each granularity's retention window."""
    repo = AnalyticsRepository(session)
    windows = {
        "snapshot": settings.SNAPSHOT_RETENTION_DAYS,
        "day": settings.DAILY_RETENTION_DAYS,
        "week": settings.WEEKLY_RETENTION_DAYS,
        "month": settings.MONTHLY_RETENTION_DAYS,
    }
    return {
        granularity: await repo.delete_older_than(granularity, today - timedelta(days=days))
        for granularity, days in windows.items()
    }


async def aggregate_day(
    session: AsyncSession,
    day: Optional[date] = None,
    now: Optional[datetime] = None,
    stages: tuple[str, ...] = STAGES,
) -> AggregationResult:
    """Run the aggregation stages for `day` (default: today).

    For today the snapshot is built fresh from the rolling log and stored in
    the same transaction as the daily delta. For past days the stored
    snapshot is used, falling back to zeros when none was captured.
    """
    now = now or datetime.now(timezone.utc)
    today = local_today(now)
    day = day or today
    if day > today:
        raise ValidationError(f"Cannot aggregate a future date: {iso(day)}")
    unknown = set(stages) - set(STAGES)
    if unknown:
        raise ValidationError(f"Unknown stage(s): {', '.join(sorted(unknown))}")

    started = datetime.now(timezone.utc)
    result = AggregationResult(date=iso(day), started_at=started.isoformat())
    repo = AnalyticsRepository(session)

    async def run(stage: str, action) -> None:
        if stage not in stages:
            return
        try:
            await action()
            await session.commit()
            result.completed_stages.append(stage)
        except Exception as e:
            await session.rollback()
            result.failed_stages.append(stage)
            result.errors.append(f"{stage}: {e}")
            logger.exception(f"Aggregation {iso(day)}: {stage} stage failed")

    async def daily_stage() -> None:
        snapshot, previous = await _snapshot_pair(repo, day, today, now)
        daily = compute_daily_delta(iso(day), snapshot, previous)
        await repo.save_daily(daily)
        if day == today:
            await repo.save_snapshot(snapshot)
        result.daily = daily.to_dict()

    async def weekly_stage() -> None:
        await rebuild_week(session, week_start(day))

    async def monthly_stage() -> None:
        await rebuild_month(session, month_start(day))

    async def retention_stage() -> None:
        result.pruned = await prune_old_data(session, today)

    await run("daily", daily_stage)
    await run("weekly", weekly_stage)
    await run("monthly", monthly_stage)
    await run("retention", retention_stage)

    end = datetime.now(timezone.utc)
    result.completed_at = end.isoformat()
    result.duration_ms = int((end - started).total_seconds() * 1000)
    logger.info(
        f"Aggregation {result.date} finished in {result.duration_ms}ms: "
        f"completed={result.completed_stages} failed={result.failed_stages}"
    )
    return result


async def run_daily_aggregation(session: AsyncSession, now: Optional[datetime] = None) -> list[AggregationResult]:
    """Scheduled job: finalise yesterday, then open today."""
    now = now or datetime.now(timezone.utc)
    today = local_today(now)
    closing = await aggregate_day(session, today - timedelta(days=1), now=now,
                                  stages=("daily", "weekly", "monthly"))
    opening = await aggregate_day(session, today, now=now)
    return [closing, opening]


async def repair_day(session: AsyncSession, day: date, now: Optional[datetime] = None) -> dict:
    """Recompute a past day's delta from stored snapshots, keeping an audit trail.

    The replaced record is saved in `previous_value` alongside `repaired_at`,
    then the enclosing week and month are rebuilt.
    """
    now = now or datetime.now(timezone.utc)
    today = local_today(now)
    if day >= today:
        raise ValidationError("Only past days can be repaired; use sync-today for today")

    repo = AnalyticsRepository(session)
    existing = await repo.get_daily(day)
    previous_value = existing.to_dict() if existing else None

    snapshot, previous = await _snapshot_pair(repo, day, today, now)
    daily = compute_daily_delta(iso(day), snapshot, previous)
    await repo.save_daily(daily, repaired_at=now, previous_value=previous_value)
    await rebuild_week(session, week_start(day))
    await rebuild_month(session, month_start(day))
    await session.commit()

    logger.info(f"Repaired daily record {iso(day)}: views={daily.views} clicks={daily.clicks}")
    return {
        "date": iso(day),
        "previous": previous_value,
        "current": daily.to_dict(),
        "repairedAt": now.isoformat(),
    }


async def backfill_days(session: AsyncSession, start: date, end: date) -> dict:
    """Create zero daily records for missing dates in [start, end], then rebuild rollups.

    Existing daily records are left untouched.
    """
    if start > end:
        raise ValidationError("startDate must be on or before endDate")
    span = (end - start).days + 1
    if span > MAX_BACKFILL_DAYS:
        raise ValidationError(f"Range too large: {span} days (max {MAX_BACKFILL_DAYS})")

    repo = AnalyticsRepository(session)
    created: list[str] = []
    for day in date_range(start, end):
        if await repo.insert_daily_if_missing(Activity(key=iso(day))):
            created.append(iso(day))

    weeks = sorted({week_start(d) for d in date_range(start, end)})
    months = sorted({month_start(d) for d in date_range(start, end)})
    for w in weeks:
        await rebuild_week(session, w)
    for m in months:
        await rebuild_month(session, m)
    await session.commit()

    logger.info(f"Backfilled {len(created)} daily records between {iso(start)} and {iso(end)}")
    return {
        "startDate": iso(start),
        "endDate": iso(end),
        "created": created,
        "existing": span - len(created),
        "weeksRebuilt": [iso(w) for w in weeks],
        "monthsRebuilt": [iso(m) for m in months],
    }
