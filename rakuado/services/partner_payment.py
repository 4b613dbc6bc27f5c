"""
Partner Payment Engine
---
Prorates each partner's fixed monthly fee by the number of days their domain
actually showed popup activity during a pay period.

A day is active when the partner's domain has views > 0 or clicks > 0 in that
day's daily delta record. The amount is monthlyAmount * daysActive / totalDays,
rounded half-up to a whole currency unit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, or_, and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.db.partner_tables import PartnerPaymentConfirmationRow, PartnerRow
from rakuado.db.repository import AnalyticsRepository
from rakuado.db.upsert import replace_by_key
from rakuado.errors import ValidationError
from rakuado.services.partners import get_partner, list_partners
from rakuado.services.periods import PayPeriod, get_custom_month_period, iso, resolve_period

logger = logging.getLogger(__name__)

# Partner statuses that never earn a payment
NON_PAYING_STATUSES = ("stopped", "inactive", "pending")
MAX_HISTORY_MONTHS = 24


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def prorate(monthly_amount: int, total_days: int, days_active: int) -> int:
    """monthly_amount * days_active / total_days, rounded half-up."""
    if total_days <= 0 or days_active <= 0:
        return 0
    return round_half_up(Decimal(monthly_amount) * days_active / total_days)


def daily_rate(monthly_amount: int, total_days: int) -> int:
    """Per-day rate for display (the amount itself is prorated unrounded)."""
    if total_days <= 0:
        return 0
    return round_half_up(Decimal(monthly_amount) / total_days)


@dataclass
class PaymentCalculation:
    amount: int
    days_active: int
    total_days: int
    status: str
    daily_rate: int = 0
    inactive_days: int = 0

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "daysActive": self.days_active,
            "totalDays": self.total_days,
            "status": self.status,
            "dailyRate": self.daily_rate,
            "inactiveDays": self.inactive_days,
        }


async def count_active_days(session: AsyncSession, domain: str, start: date, end: date) -> int:
    """Days in [start, end] where `domain` had any views or clicks."""
    if start > end:
        return 0
    records = await AnalyticsRepository(session).daily_between(start, end)
    active = 0
    for record in records:
        counts = record.site(domain)
        if counts["views"] > 0 or counts["clicks"] > 0:
            active += 1
    return active


def partner_status(partner: PartnerRow) -> str:
    return partner.status or ("stopped" if partner.stop_date else "active")


async def calculate_payment(
    session: AsyncSession,
    partner: PartnerRow,
    period: PayPeriod,
    inactive_days_override: Optional[int] = None,
) -> PaymentCalculation:
    """Prorated payment for one partner over one pay period.

    `inactive_days_override` replaces the analytics-derived activity with a
    manually supplied number of inactive days.
    """
    status = partner_status(partner)
    if status in NON_PAYING_STATUSES:
        return PaymentCalculation(amount=0, days_active=0, total_days=0, status=status)
    if partner.start_date > period.end:
        return PaymentCalculation(amount=0, days_active=0, total_days=0, status="not_started")
    if partner.stop_date and partner.stop_date < period.start:
        return PaymentCalculation(amount=0, days_active=0, total_days=0, status="stopped")

    effective_start = max(partner.start_date, period.start)
    effective_end = min(partner.stop_date or period.end, period.end)
    total_days = period.total_days

    if inactive_days_override is not None:
        if not 0 <= inactive_days_override <= total_days:
            raise ValidationError(f"inactiveDays must be between 0 and {total_days}")
        days_active = total_days - inactive_days_override
    else:
        days_active = await count_active_days(session, partner.domain, effective_start, effective_end)

    status = "partial" if days_active < total_days else "active"
    if partner.stop_date and partner.stop_date <= period.end:
        status = "stopped"

    return PaymentCalculation(
        amount=prorate(partner.monthly_amount, total_days, days_active),
        days_active=days_active,
        total_days=total_days,
        status=status,
        daily_rate=daily_rate(partner.monthly_amount, total_days),
        inactive_days=total_days - days_active,
    )


# ── Confirmations ─────────────────────────────────────────────────────────────

async def get_confirmations(session: AsyncSession, period_key: str) -> dict[str, bool]:
    """partnerId → confirmed for one period key."""
    if not period_key:
        raise ValidationError("Missing periodKey")
    rows = (await session.execute(
        select(PartnerPaymentConfirmationRow)
        .where(PartnerPaymentConfirmationRow.period_key == period_key)
    )).scalars().all()
    return {r.partner_id: bool(r.confirmed) for r in rows}


async def confirm_payment(session: AsyncSession, partner_id: str, period_key: str, confirmed: bool) -> bool:
    """Mark (or unmark) a partner's payment for a period as paid."""
    if not partner_id or not period_key:
        raise ValidationError("Missing required fields: partnerId, periodKey")
    await get_partner(session, partner_id)

    if confirmed:
        await replace_by_key(session, PartnerPaymentConfirmationRow, ["partner_id", "period_key"], {
            "partner_id": partner_id,
            "period_key": period_key,
            "confirmed": True,
            "confirmed_at": datetime.now(timezone.utc),
        })
    else:
        await session.execute(
            delete(PartnerPaymentConfirmationRow).where(
                PartnerPaymentConfirmationRow.partner_id == partner_id,
                PartnerPaymentConfirmationRow.period_key == period_key,
            )
        )
    await session.commit()
    return confirmed


# ── Period reports ────────────────────────────────────────────────────────────

async def calculate_all(session: AsyncSession, kind: str = "current",
                        now: Optional[datetime] = None) -> dict:
    """Per-partner payment breakdown for a named period plus the grand total."""
    period = resolve_period(kind, now)
    confirmations = await get_confirmations(session, period.key)

    payments = []
    for partner in await list_partners(session):
        calculation = await calculate_payment(session, partner, period)
        payments.append({
            "partnerId": partner.id,
            "domain": partner.domain,
            "name": partner.name,
            "nameKatakana": partner.name_katakana,
            "monthlyAmount": partner.monthly_amount,
            "paymentCycle": partner.payment_cycle,
            **calculation.to_dict(),
            "bankInfo": partner.bank_info or {},
            "paymentConfirmed": confirmations.get(partner.id, False),
        })

    return {
        "period": period.to_dict(kind),
        "periodKey": period.key,
        "payments": payments,
        "totalPayment": sum(p["amount"] for p in payments),
    }


async def recalculate(session: AsyncSession, kind: str = "current",
                      now: Optional[datetime] = None) -> dict:
    """Recompute active days and amounts for every partner. Nothing is persisted."""
    period = resolve_period(kind, now)
    results = []
    for partner in await list_partners(session):
        calculation = await calculate_payment(session, partner, period)
        results.append({
            "partnerId": partner.id,
            "domain": partner.domain,
            "name": partner.name,
            "daysActive": calculation.days_active,
            "amount": calculation.amount,
        })
    logger.info(f"Recalculated {len(results)} partner payments for {period.key}")
    return {"period": period.to_dict(kind), "results": results}


async def payment_history(session: AsyncSession, months: int = 6,
                          now: Optional[datetime] = None) -> list[dict]:
    """Payments per partner for the last `months` pay periods, newest first."""
    if not 1 <= months <= MAX_HISTORY_MONTHS:
        raise ValidationError(f"months must be between 1 and {MAX_HISTORY_MONTHS}")
    partners = await list_partners(session)
    periods = []
    for back in range(months):
        period = get_custom_month_period(back, now)
        payments = []
        for partner in partners:
            calculation = await calculate_payment(session, partner, period)
            payments.append({
                "partnerId": partner.id,
                "domain": partner.domain,
                "name": partner.name,
                "amount": calculation.amount,
                "status": calculation.status,
            })
        periods.append({
            "periodName": period.month_label,
            **period.to_dict(),
            "payments": payments,
            "total": sum(p["amount"] for p in payments),
        })
    return periods


async def public_summary(session: AsyncSession, kind: str = "current",
                         now: Optional[datetime] = None) -> dict:
    """Expected payments for active partners only. Exposes no contact or bank data."""
    period = resolve_period(kind, now)
    rows = (await session.execute(
        select(PartnerRow)
        .where(or_(
            PartnerRow.status == "active",
            and_(PartnerRow.status.is_(None), PartnerRow.stop_date.is_(None)),
        ))
        .order_by(PartnerRow.order)
    )).scalars().all()

    partners = []
    for partner in rows:
        calculation = await calculate_payment(session, partner, period)
        partners.append({
            "domain": partner.domain,
            "name": partner.name,
            "period": {"start": iso(period.start), "end": iso(period.end)},
            "monthlyPrice": partner.monthly_amount,
            "expectedPayment": calculation.amount,
            "daysActive": calculation.days_active,
            "totalDaysInPeriod": calculation.total_days,
            "status": calculation.status,
        })

    return {
        "period": kind,
        "periodDates": {"start": iso(period.start), "end": iso(period.end)},
        "partners": partners,
        "totalExpectedPayment": sum(p["expectedPayment"] for p in partners),
    }
