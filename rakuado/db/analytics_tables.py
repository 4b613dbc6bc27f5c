"""Analytics time-series tables: cumulative snapshots, daily deltas, rollups.

Every table is keyed by an ISO calendar date string (YYYY-MM-DD) so that
upsert-by-date is the only write the aggregation pipeline needs.
"""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, String, BigInteger, DateTime, JSON

from rakuado.db.tables import Base


class _Totals:
    """Shared columns: aggregate views/clicks + per-site breakdown."""
    total_views = Column(BigInteger, nullable=False, default=0)
    total_clicks = Column(BigInteger, nullable=False, default=0)
    sites = Column(JSON, nullable=False, default=dict)  # {domain: {"views": n, "clicks": n}}
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AnalyticsSnapshotRow(_Totals, Base):
    """Cumulative picture as of the latest capture on `date`."""
    __tablename__ = "analytics_snapshots"

    date = Column(String(10), primary_key=True)
    captured_at_ms = Column(BigInteger, nullable=False)


class AnalyticsDailyRow(_Totals, Base):
    """Non-negative activity delta for one calendar day."""
    __tablename__ = "analytics_daily"

    date = Column(String(10), primary_key=True)

    # Audit trail written by the repair operation
    repaired_at = Column(DateTime(timezone=True), nullable=True)
    previous_value = Column(JSON, nullable=True)


class AnalyticsWeeklyRow(_Totals, Base):
    """Sum of daily deltas for the Sunday-aligned week starting `week_start`."""
    __tablename__ = "analytics_weekly"

    week_start = Column(String(10), primary_key=True)


class AnalyticsMonthlyRow(_Totals, Base):
    """Sum of daily deltas for the calendar month starting `month_start`."""
    __tablename__ = "analytics_monthly"

    month_start = Column(String(10), primary_key=True)
