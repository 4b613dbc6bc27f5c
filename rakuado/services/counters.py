"""Popup counter store — live view/click totals plus the rolling referrer log.

Written synchronously on every popup view/click. Both writes are single SQL
statements (`x = x + 1` and an ON CONFLICT upsert) so concurrent requests
for the same popup/domain never lose increments.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from rakuado.db.tables import PopupCounterRow, PopupReferrerRow
from rakuado.db.upsert import dialect_insert
from rakuado.errors import NotFoundError, ValidationError
from rakuado.services.periods import epoch_ms

logger = logging.getLogger(__name__)

UNKNOWN_DOMAIN = "unknown"


def clean_domain(domain: Optional[str]) -> str:
    """Strip scheme, leading www. and trailing slash: https://www.a.jp/ → a.jp"""
    if not domain:
        return ""
    cleaned = re.sub(r"^https?://", "", domain.strip())
    cleaned = re.sub(r"^www\.", "", cleaned)
    return re.sub(r"/$", "", cleaned)


def parse_popup_id(value) -> int:
    try:
        popup_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid popup id: {value!r}")
    if popup_id <= 0:
        raise ValidationError(f"Invalid popup id: {value!r}")
    return popup_id


def window_cutoff_ms(now: Optional[datetime] = None) -> int:
    """Referrer entries last updated before this instant are expired."""
    return epoch_ms(now) - settings.ROLLING_WINDOW_HOURS * 3600 * 1000


@dataclass
class ReferrerActivity:
    popup_id: int
    domain: str
    views: int
    clicks: int
    last_updated_at_ms: int


async def create_popup(
    session: AsyncSession, image_url: str | None = None, target_url: str | None = None,
) -> PopupCounterRow:
    last_order = (await session.execute(select(func.max(PopupCounterRow.order)))).scalar() or 0
    popup = PopupCounterRow(image_url=image_url, target_url=target_url, order=last_order + 1)
    session.add(popup)
    await session.commit()
    return popup


async def increment_view(session: AsyncSession, popup_id, domain: str | None,
                         now: Optional[datetime] = None) -> None:
    await _record(session, popup_id, domain, views=1, clicks=0, now=now)


async def increment_click(session: AsyncSession, popup_id, domain: str | None,
                          now: Optional[datetime] = None) -> None:
    await _record(session, popup_id, domain, views=0, clicks=1, now=now)


async def _record(session: AsyncSession, popup_id, domain: str | None, *,
                  views: int, clicks: int, now: Optional[datetime]) -> None:
    popup_id = parse_popup_id(popup_id)
    domain = clean_domain(domain) or UNKNOWN_DOMAIN
    now_ms = epoch_ms(now)
    cutoff_ms = window_cutoff_ms(now)

    result = await session.execute(
        update(PopupCounterRow)
        .where(PopupCounterRow.id == popup_id)
        .values(
            views_total=PopupCounterRow.views_total + views,
            clicks_total=PopupCounterRow.clicks_total + clicks,
        )
    )
    if result.rowcount == 0:
        await session.rollback()
        raise NotFoundError(f"Popup {popup_id} not found")

    stmt = dialect_insert(session, PopupReferrerRow).values(
        popup_id=popup_id, domain=domain, views=views, clicks=clicks,
        last_updated_at_ms=now_ms,
    )
    # A stale entry restarts its window instead of accumulating
    stale = PopupReferrerRow.last_updated_at_ms < cutoff_ms
    stmt = stmt.on_conflict_do_update(
        index_elements=["popup_id", "domain"],
        set_={
            "views": case((stale, stmt.excluded.views), else_=PopupReferrerRow.views + stmt.excluded.views),
            "clicks": case((stale, stmt.excluded.clicks), else_=PopupReferrerRow.clicks + stmt.excluded.clicks),
            "last_updated_at_ms": stmt.excluded.last_updated_at_ms,
        },
    )
    await session.execute(stmt)
    await session.commit()


async def read_rolling_log(session: AsyncSession, now: Optional[datetime] = None) -> list[ReferrerActivity]:
    """All referrer entries still inside the rolling window."""
    rows = (await session.execute(
        select(PopupReferrerRow)
        .where(PopupReferrerRow.last_updated_at_ms >= window_cutoff_ms(now))
        .order_by(PopupReferrerRow.popup_id, PopupReferrerRow.domain)
        .execution_options(populate_existing=True)
    )).scalars().all()
    return [
        ReferrerActivity(
            popup_id=r.popup_id, domain=r.domain, views=r.views or 0,
            clicks=r.clicks or 0, last_updated_at_ms=r.last_updated_at_ms,
        )
        for r in rows
    ]


async def list_popups(session: AsyncSession, now: Optional[datetime] = None) -> list[dict]:
    """Popups with lifetime totals and their last-24h activity."""
    popups = (await session.execute(
        select(PopupCounterRow).order_by(PopupCounterRow.order, PopupCounterRow.id)
        .execution_options(populate_existing=True)
    )).scalars().all()
    recent: dict[int, dict] = {}
    for entry in await read_rolling_log(session, now):
        acc = recent.setdefault(entry.popup_id, {"views24h": 0, "clicks24h": 0, "domains": []})
        acc["views24h"] += entry.views
        acc["clicks24h"] += entry.clicks
        acc["domains"].append(entry.domain)
    return [
        {
            "id": p.id,
            "imageUrl": p.image_url,
            "targetUrl": p.target_url,
            "order": p.order,
            "viewsTotal": p.views_total or 0,
            "clicksTotal": p.clicks_total or 0,
            **recent.get(p.id, {"views24h": 0, "clicks24h": 0, "domains": []}),
        }
        for p in popups
    ]
