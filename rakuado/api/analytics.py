"""
Analytics endpoints.

Reads:
- GET  /api/analytics/data       — per-day series for a pay period
- GET  /api/analytics/sites      — domains seen in the latest daily record
- GET  /api/analytics/summary    — period and day-over-day comparison
- GET  /api/analytics/rollups    — recent daily/weekly/monthly records

Operations (admin):
- POST /api/analytics/initialize — backfill zero daily records for a range
- POST /api/analytics/sync-today — snapshot + daily delta for today now
- POST /api/analytics/run-now    — run a pipeline stage with a timeout
- POST /api/analytics/repair     — recompute one past day with an audit trail
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.auth import require_admin
from rakuado.db.engine import get_session
from rakuado.services import aggregation, analytics_query
from rakuado.services.periods import parse_date
from rakuado.services.scheduler import run_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"], dependencies=[Depends(require_admin)])


class RangeRequest(BaseModel):
    startDate: str
    endDate: str


class RepairRequest(BaseModel):
    date: str


class RunNowRequest(BaseModel):
    stage: str = "aggregate"
    date: Optional[str] = None
    timeout: Optional[float] = Field(None, gt=0, le=600)


@router.get("/data")
async def analytics_data(
    period: str = Query("current", description="current | previous"),
    site: str = Query("all", description='Domain, or "all" for every site'),
    session: AsyncSession = Depends(get_session),
):
    return await analytics_query.get_period(session, period, site)


@router.get("/sites")
async def analytics_sites(session: AsyncSession = Depends(get_session)):
    return {"sites": await analytics_query.get_sites(session)}


@router.get("/summary")
async def analytics_summary(
    period: str = Query("current", description="current | previous"),
    session: AsyncSession = Depends(get_session),
):
    return await analytics_query.get_summary(session, period)


@router.get("/rollups")
async def analytics_rollups(
    granularity: str = Query("day", description="day | week | month"),
    site: str = Query("all"),
    session: AsyncSession = Depends(get_session),
):
    return await analytics_query.get_rollups(session, granularity, site)


@router.post("/initialize")
async def initialize(req: RangeRequest, session: AsyncSession = Depends(get_session)):
    """Create zero-valued daily records for every missing date in the range."""
    result = await aggregation.backfill_days(session, parse_date(req.startDate), parse_date(req.endDate))
    return {"success": True, **result}


@router.post("/sync-today")
async def sync_today(session: AsyncSession = Depends(get_session)):
    """Capture today's snapshot and recompute today's delta and rollups immediately."""
    result = await aggregation.aggregate_day(session)
    return {"success": result.ok, "result": result.to_dict()}


@router.post("/run-now")
async def run_stage_now(req: RunNowRequest, session: AsyncSession = Depends(get_session)):
    """Operational recovery: run `snapshot` or `aggregate` (optionally for a past date)."""
    day = parse_date(req.date) if req.date else None
    try:
        outcome = await run_now(req.stage, day=day, timeout=req.timeout, session=session)
    except asyncio.TimeoutError:
        logger.error(f"run-now {req.stage} timed out")
        raise HTTPException(504, f"Stage {req.stage!r} did not finish within the timeout")
    ok = outcome.get("result", {}).get("ok", True)
    return {"success": ok, **outcome}


@router.post("/repair")
async def repair(req: RepairRequest, session: AsyncSession = Depends(get_session)):
    """Recompute one past day's delta from its stored snapshots."""
    result = await aggregation.repair_day(session, parse_date(req.date))
    return {"success": True, **result}
