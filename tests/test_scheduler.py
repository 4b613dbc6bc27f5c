"""Tests for scheduled jobs and manual stage runs."""
import asyncio
from datetime import timedelta

import pytest

from rakuado.db.repository import AnalyticsRepository
from rakuado.errors import ValidationError
from rakuado.services import scheduler
from rakuado.services.counters import create_popup, increment_view
from rakuado.services.periods import local_today


async def test_start_registers_jobs():
    scheduler.start_scheduler()
    try:
        ids = {job.id for job in scheduler.scheduler.get_jobs()}
        assert ids == {"hourly_snapshot", "daily_aggregation", "partner_recalculation", "partner_email_drafts"}
    finally:
        scheduler.stop_scheduler()


async def test_scheduled_snapshot_writes_todays_snapshot(session):
    popup = await create_popup(session)
    await increment_view(session, popup.id, "a.jp")

    await scheduler.scheduled_snapshot()

    stored = await AnalyticsRepository(session).get_snapshot(local_today())
    assert stored.views == 1


async def test_scheduled_aggregation_opens_today(session):
    await scheduler.scheduled_daily_aggregation()
    repo = AnalyticsRepository(session)
    assert await repo.get_daily(local_today()) is not None
    assert await repo.get_daily(local_today() - timedelta(days=1)) is not None


async def test_scheduled_jobs_swallow_failures(monkeypatch, caplog):
    async def broken(*args, **kwargs):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(scheduler, "capture_snapshot", broken)
    monkeypatch.setattr(scheduler, "recalculate", broken)
    monkeypatch.setattr(scheduler, "generate_drafts_for_period", broken)

    await scheduler.scheduled_snapshot()
    await scheduler.scheduled_partner_recalculation()
    await scheduler.scheduled_draft_generation()

    assert "Scheduled snapshot failed" in caplog.text


async def test_scheduled_draft_generation(make_partner, session):
    await make_partner()
    await scheduler.scheduled_draft_generation()
    from rakuado.services.partner_emails import list_drafts
    drafts = await list_drafts(session, "previous")
    assert len(drafts["drafts"]) == 1


async def test_run_now_aggregate_past_day(session, make_record):
    yesterday = local_today() - timedelta(days=1)
    await make_record("snapshot", yesterday.isoformat(), views=9)

    outcome = await scheduler.run_now("aggregate", day=yesterday, session=session)

    assert outcome["stage"] == "aggregate"
    assert outcome["result"]["daily"]["total"]["views"] == 9


async def test_run_now_opens_its_own_session():
    outcome = await scheduler.run_now("snapshot")
    assert outcome["snapshot"]["total"] == {"views": 0, "clicks": 0}


async def test_run_now_rejects_unknown_stage():
    with pytest.raises(ValidationError):
        await scheduler.run_now("retention")


async def test_run_now_timeout(monkeypatch):
    async def slow(session):
        await asyncio.sleep(5)

    monkeypatch.setattr(scheduler, "capture_snapshot", slow)
    with pytest.raises(asyncio.TimeoutError):
        await scheduler.run_now("snapshot", timeout=0.05)
