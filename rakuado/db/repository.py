"""Analytics repository — reads and key-based upserts over the dated tables.

Every write is a replace-by-date, never an increment, so re-running any
aggregation stage is safe.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import delete, null, select
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.db.analytics_tables import (
    AnalyticsDailyRow, AnalyticsMonthlyRow, AnalyticsSnapshotRow, AnalyticsWeeklyRow,
)
from rakuado.db.upsert import dialect_insert, replace_by_key
from rakuado.models import Activity
from rakuado.services.periods import iso


class AnalyticsRepository:
    """Store interface for snapshots, daily deltas and weekly/monthly rollups.

    Wraps one AsyncSession; callers own the transaction (commit/rollback).
    Writes are core upserts that bypass the identity map, so reads always
    repopulate loaded rows.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Snapshots ────────────────────────────────────────────────────────

    async def get_snapshot(self, day: date) -> Optional[Activity]:
        row = await self.session.get(AnalyticsSnapshotRow, iso(day), populate_existing=True)
        if row is None:
            return None
        return Activity.from_row(row.date, row, captured_at_ms=row.captured_at_ms or 0)

    async def save_snapshot(self, snapshot: Activity) -> None:
        await replace_by_key(self.session, AnalyticsSnapshotRow, ["date"], {
            "date": snapshot.key,
            "captured_at_ms": snapshot.captured_at_ms or 0,
            **snapshot.row_values(),
            "updated_at": datetime.now(timezone.utc),
        })

    # ── Daily deltas ─────────────────────────────────────────────────────

    async def get_daily_row(self, day: date) -> Optional[AnalyticsDailyRow]:
        return await self.session.get(AnalyticsDailyRow, iso(day), populate_existing=True)

    async def get_daily(self, day: date) -> Optional[Activity]:
        row = await self.get_daily_row(day)
        return Activity.from_row(row.date, row) if row else None

    async def save_daily(self, daily: Activity, **audit) -> None:
        """Replace the daily record. Repair audit columns are cleared unless passed."""
        await replace_by_key(self.session, AnalyticsDailyRow, ["date"], {
            "date": daily.key,
            **daily.row_values(),
            "updated_at": datetime.now(timezone.utc),
            "repaired_at": None,
            "previous_value": null(),
            **audit,
        })

    async def insert_daily_if_missing(self, daily: Activity) -> bool:
        """Insert a daily record unless one exists. Returns True if inserted."""
        stmt = dialect_insert(self.session, AnalyticsDailyRow).values(
            date=daily.key, **daily.row_values(), updated_at=datetime.now(timezone.utc),
        ).on_conflict_do_nothing(index_elements=["date"])
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def daily_between(self, start: date, end: date, *, end_inclusive: bool = True) -> list[Activity]:
        """Daily records with start <= date <= end (or < end), oldest first."""
        upper = (AnalyticsDailyRow.date <= iso(end)) if end_inclusive else (AnalyticsDailyRow.date < iso(end))
        rows = (await self.session.execute(
            select(AnalyticsDailyRow)
            .where(AnalyticsDailyRow.date >= iso(start), upper)
            .order_by(AnalyticsDailyRow.date)
            .execution_options(populate_existing=True)
        )).scalars().all()
        return [Activity.from_row(r.date, r) for r in rows]

    async def latest_daily(self) -> Optional[Activity]:
        row = (await self.session.execute(
            select(AnalyticsDailyRow).order_by(AnalyticsDailyRow.date.desc()).limit(1)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        return Activity.from_row(row.date, row) if row else None

    async def recent(self, granularity: str, limit: int) -> list[Activity]:
        """Most recent `limit` records of a granularity, oldest first."""
        table, column = _ROLLUP_TABLES[granularity]
        key = getattr(table, column)
        rows = (await self.session.execute(
            select(table).order_by(key.desc()).limit(limit)
            .execution_options(populate_existing=True)
        )).scalars().all()
        return [Activity.from_row(getattr(r, column), r) for r in reversed(rows)]

    # ── Rollups ──────────────────────────────────────────────────────────

    async def save_weekly(self, weekly: Activity) -> None:
        await replace_by_key(self.session, AnalyticsWeeklyRow, ["week_start"], {
            "week_start": weekly.key, **weekly.row_values(),
            "updated_at": datetime.now(timezone.utc),
        })

    async def save_monthly(self, monthly: Activity) -> None:
        await replace_by_key(self.session, AnalyticsMonthlyRow, ["month_start"], {
            "month_start": monthly.key, **monthly.row_values(),
            "updated_at": datetime.now(timezone.utc),
        })

    async def get_weekly(self, start: date) -> Optional[Activity]:
        row = await self.session.get(AnalyticsWeeklyRow, iso(start), populate_existing=True)
        return Activity.from_row(row.week_start, row) if row else None

    async def get_monthly(self, start: date) -> Optional[Activity]:
        row = await self.session.get(AnalyticsMonthlyRow, iso(start), populate_existing=True)
        return Activity.from_row(row.month_start, row) if row else None

    # ── Retention ────────────────────────────────────────────────────────

    async def delete_older_than(self, granularity: str, cutoff: date) -> int:
        table, column = _ROLLUP_TABLES[granularity]
        result = await self.session.execute(
            delete(table).where(getattr(table, column) < iso(cutoff))
        )
        return result.rowcount or 0


_ROLLUP_TABLES = {
    "snapshot": (AnalyticsSnapshotRow, "date"),
    "day": (AnalyticsDailyRow, "date"),
    "week": (AnalyticsWeeklyRow, "week_start"),
    "month": (AnalyticsMonthlyRow, "month_start"),
}
