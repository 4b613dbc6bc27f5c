"""Snapshot builder — cumulative per-domain picture of popup activity, one per date.

The snapshot reads only the rolling referrer log, never the lifetime popup
totals: per-domain attribution exists only there, and the aggregate total
is summed from the same entries so total and per-site values agree.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.db.repository import AnalyticsRepository
from rakuado.models import Activity
from rakuado.services.counters import read_rolling_log
from rakuado.services.periods import epoch_ms, iso, local_today

logger = logging.getLogger(__name__)


async def build_snapshot(session: AsyncSession, now: Optional[datetime] = None) -> Activity:
    """Sum the live rolling log per domain and overall. Read-only."""
    now = now or datetime.now(timezone.utc)
    snapshot = Activity(key=iso(local_today(now)), captured_at_ms=epoch_ms(now))
    for entry in await read_rolling_log(session, now):
        acc = snapshot.sites.setdefault(entry.domain, {"views": 0, "clicks": 0})
        acc["views"] += entry.views
        acc["clicks"] += entry.clicks
    snapshot.views = sum(s["views"] for s in snapshot.sites.values())
    snapshot.clicks = sum(s["clicks"] for s in snapshot.sites.values())
    return snapshot


async def capture_snapshot(session: AsyncSession, now: Optional[datetime] = None) -> Activity:
    """Build today's snapshot and persist it (idempotent within a day)."""
    snapshot = await build_snapshot(session, now)
    await AnalyticsRepository(session).save_snapshot(snapshot)
    await session.commit()
    logger.info(
        "Snapshot %s captured: %d views, %d clicks across %d sites",
        snapshot.key, snapshot.views, snapshot.clicks, len(snapshot.sites),
    )
    return snapshot
