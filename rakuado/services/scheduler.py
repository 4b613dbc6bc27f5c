"""Background jobs using APScheduler.

- hourly        capture today's snapshot
- daily 00:01   close yesterday and open today (daily/weekly/monthly + retention)
- daily 01:00   recalculate current-period partner payments (logged only)
- 25th 09:00    generate payment notice drafts for the previous pay period

Jobs open their own session and never raise: failures are logged and the
next tick retries. Overlapping runs are harmless since every aggregation
write replaces a record by its date.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

import rakuado.db.engine as db
from config.settings import settings
from rakuado.errors import ValidationError
from rakuado.services.aggregation import aggregate_day, run_daily_aggregation
from rakuado.services.partner_emails import generate_drafts_for_period
from rakuado.services.partner_payment import recalculate
from rakuado.services.periods import get_custom_month_period
from rakuado.services.snapshots import capture_snapshot

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)

RUN_NOW_STAGES = ("snapshot", "aggregate")


async def scheduled_snapshot():
    logger.info("Scheduled snapshot starting...")
    try:
        async with db.async_session() as session:
            await capture_snapshot(session)
    except Exception:
        logger.exception("Scheduled snapshot failed")


async def scheduled_daily_aggregation():
    logger.info("Scheduled daily aggregation starting...")
    try:
        async with db.async_session() as session:
            results = await run_daily_aggregation(session)
        for result in results:
            if result.failed_stages:
                logger.error(f"Aggregation {result.date} failed stages: {result.errors}")
    except Exception:
        logger.exception("Scheduled daily aggregation failed")


async def scheduled_partner_recalculation():
    logger.info("Scheduled partner recalculation starting...")
    try:
        async with db.async_session() as session:
            report = await recalculate(session, "current")
        for row in report["results"]:
            logger.info(f"  {row['domain']}: {row['daysActive']} active days, {row['amount']:,}")
    except Exception:
        logger.exception("Scheduled partner recalculation failed")


async def scheduled_draft_generation():
    logger.info("Scheduled payment notice draft generation starting...")
    try:
        async with db.async_session() as session:
            await generate_drafts_for_period(session, get_custom_month_period(1))
    except Exception:
        logger.exception("Scheduled draft generation failed")


async def run_now(stage: str, day: Optional[date] = None,
                  timeout: Optional[float] = None, session=None) -> dict:
    """Run a pipeline stage immediately, bounded by `timeout` seconds.

    Raises asyncio.TimeoutError when the deadline passes; stages that had
    already committed stay committed, the interrupted one is rolled back.
    """
    if stage not in RUN_NOW_STAGES:
        raise ValidationError(f"Invalid stage {stage!r}. Use one of: {', '.join(RUN_NOW_STAGES)}")
    timeout = timeout or settings.RUN_NOW_TIMEOUT_SECONDS

    async def work(s) -> dict:
        if stage == "snapshot":
            snapshot = await capture_snapshot(s)
            return {"stage": stage, "snapshot": snapshot.to_dict()}
        result = await aggregate_day(s, day)
        return {"stage": stage, "result": result.to_dict()}

    started = datetime.now(timezone.utc)
    if session is not None:
        outcome = await asyncio.wait_for(work(session), timeout=timeout)
    else:
        async with db.async_session() as s:
            outcome = await asyncio.wait_for(work(s), timeout=timeout)
    outcome["durationMs"] = int((datetime.now(timezone.utc) - started).total_seconds() * 1000)
    return outcome


def start_scheduler():
    """Register the cron jobs and start the scheduler."""
    scheduler.add_job(
        scheduled_snapshot,
        trigger=CronTrigger(minute=0),
        id="hourly_snapshot",
        name="Hourly analytics snapshot",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_daily_aggregation,
        trigger=CronTrigger(hour=0, minute=1),
        id="daily_aggregation",
        name="Daily analytics aggregation",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_partner_recalculation,
        trigger=CronTrigger(hour=1, minute=0),
        id="partner_recalculation",
        name="Partner active-day recalculation",
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_draft_generation,
        trigger=CronTrigger(day=25, hour=9, minute=0),
        id="partner_email_drafts",
        name="Partner payment notice drafts",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started ({settings.TIMEZONE}) with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Gracefully shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
