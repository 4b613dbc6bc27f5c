"""
Partner payment notices — draft generation, manual edits, and sending.

Draft states: draft | no_data | sent | error.
- generate: creates or refreshes a draft per partner; sent drafts are skipped
- update:   inactiveDays override recomputes the amount and resets to draft
- send:     requires data and a recipient; success → sent, failure → error
A sent draft is never recalculated, edited or re-sent.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from rakuado.db.partner_tables import PartnerEmailDraftRow
from rakuado.errors import ConflictError, DeliveryError, NotFoundError, ValidationError
from rakuado.services.mailer import EmailMessage
from rakuado.services.partner_payment import calculate_payment, prorate
from rakuado.services.partners import list_partners
from rakuado.services.periods import PayPeriod, iso, resolve_period

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No analytics data available for this period"
NO_EMAIL_MESSAGE = "Partner email not configured"

_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
_jinja_env.filters["yen"] = lambda amount: f"{amount or 0:,}円"


def draft_to_dict(draft: PartnerEmailDraftRow) -> dict:
    return {
        "id": draft.id,
        "partnerId": draft.partner_id,
        "partnerName": draft.partner_name,
        "partnerEmail": draft.partner_email,
        "domain": draft.domain,
        "periodStart": draft.period_start,
        "periodEnd": draft.period_end,
        "periodMonth": draft.period_month,
        "paymentCycle": draft.payment_cycle,
        "monthlyAmount": draft.monthly_amount,
        "totalDays": draft.total_days,
        "activeDays": draft.active_days,
        "inactiveDays": draft.inactive_days,
        "paymentAmount": draft.payment_amount,
        "bankInfo": draft.bank_info or {},
        "notes": draft.notes,
        "status": draft.status,
        "hasData": draft.has_data,
        "errorMessage": draft.error_message,
        "sentAt": draft.sent_at.isoformat() if draft.sent_at else None,
        "createdAt": draft.created_at.isoformat() if draft.created_at else None,
        "updatedAt": draft.updated_at.isoformat() if draft.updated_at else None,
    }


def render_payment_notice(draft: PartnerEmailDraftRow) -> EmailMessage:
    """Plain-text and HTML payment notice for one draft."""
    context = {
        "app_name": settings.MAILTRAP_FROM_NAME,
        "draft": draft,
        "bank": draft.bank_info or {},
    }
    subject = _jinja_env.get_template("payment_notice_subject.txt").render(**context).strip()
    return EmailMessage(
        to=draft.partner_email,
        subject=subject,
        text=_jinja_env.get_template("payment_notice.txt").render(**context).strip(),
        html=_jinja_env.get_template("payment_notice.html").render(subject=subject, **context),
    )


async def get_draft(session: AsyncSession, draft_id: str) -> PartnerEmailDraftRow:
    draft = await session.get(PartnerEmailDraftRow, draft_id)
    if draft is None:
        raise NotFoundError("Draft not found")
    return draft


async def list_drafts(session: AsyncSession, kind: str = "current",
                      now: Optional[datetime] = None) -> dict:
    period = resolve_period(kind, now)
    drafts = (await session.execute(
        select(PartnerEmailDraftRow)
        .where(
            PartnerEmailDraftRow.period_start == iso(period.start),
            PartnerEmailDraftRow.period_end == iso(period.end),
        )
        .order_by(PartnerEmailDraftRow.created_at.desc())
    )).scalars().all()
    return {"period": period.to_dict(kind), "drafts": [draft_to_dict(d) for d in drafts]}


async def generate_drafts_for_period(session: AsyncSession, period: PayPeriod) -> dict:
    """Create or refresh one draft per partner for `period`. Sent drafts are left alone."""
    created, updated, skipped = [], [], []
    now = datetime.now(timezone.utc)

    for partner in await list_partners(session):
        existing = (await session.execute(
            select(PartnerEmailDraftRow).where(
                PartnerEmailDraftRow.partner_id == partner.id,
                PartnerEmailDraftRow.period_start == iso(period.start),
                PartnerEmailDraftRow.period_end == iso(period.end),
            )
        )).scalar_one_or_none()

        if existing is not None and existing.status == "sent":
            skipped.append({"partnerId": partner.id, "partnerName": partner.name, "reason": "Already sent"})
            continue

        calculation = await calculate_payment(session, partner, period)
        has_data = calculation.days_active > 0 or calculation.status in ("active", "partial")

        draft = existing or PartnerEmailDraftRow(
            partner_id=partner.id,
            period_start=iso(period.start),
            period_end=iso(period.end),
            created_at=now,
        )
        draft.period_month = period.month_label
        draft.partner_name = partner.name
        draft.partner_email = partner.email or ""
        draft.domain = partner.domain
        draft.payment_cycle = partner.payment_cycle or "当月"
        draft.monthly_amount = partner.monthly_amount
        draft.bank_info = dict(partner.bank_info or {})
        draft.notes = partner.notes or ""
        draft.total_days = calculation.total_days
        draft.active_days = calculation.days_active
        draft.inactive_days = calculation.inactive_days
        draft.payment_amount = calculation.amount
        draft.has_data = has_data
        draft.status = "draft" if has_data else "no_data"
        draft.error_message = None if has_data else NO_DATA_MESSAGE
        draft.updated_at = now

        if existing is None:
            session.add(draft)
            await session.flush()
            created.append({"partnerId": partner.id, "partnerName": partner.name, "draftId": draft.id})
        else:
            updated.append({"partnerId": partner.id, "partnerName": partner.name, "draftId": draft.id})

    await session.commit()
    logger.info(
        f"Drafts for {period.key}: created={len(created)} updated={len(updated)} skipped={len(skipped)}"
    )
    return {
        "summary": {"created": len(created), "updated": len(updated), "skipped": len(skipped)},
        "draftsCreated": created,
        "draftsUpdated": updated,
        "draftsSkipped": skipped,
    }


async def generate_drafts(session: AsyncSession, kind: str = "current",
                          now: Optional[datetime] = None) -> dict:
    period = resolve_period(kind, now)
    result = await generate_drafts_for_period(session, period)
    return {"period": period.to_dict(kind), **result}


_UNSET = object()


async def update_draft(session: AsyncSession, draft_id: str,
                       inactive_days: Optional[int] = None, notes=_UNSET) -> PartnerEmailDraftRow:
    """Apply a manual inactive-days override and/or new notes."""
    draft = await get_draft(session, draft_id)
    if draft.status == "sent":
        raise ConflictError("Cannot update a draft that has already been sent")

    if inactive_days is not None:
        if draft.total_days == 0:
            raise ConflictError("Partner has no payable days in this period")
        if not 0 <= inactive_days <= draft.total_days:
            raise ValidationError(f"inactiveDays must be between 0 and {draft.total_days}")
        draft.inactive_days = inactive_days
        draft.active_days = draft.total_days - inactive_days
        draft.payment_amount = prorate(draft.monthly_amount, draft.total_days, draft.active_days)
        draft.has_data = True
        draft.status = "draft"
        draft.error_message = None
    if notes is not _UNSET:
        draft.notes = notes or ""
    draft.updated_at = datetime.now(timezone.utc)

    await session.commit()
    await session.refresh(draft)
    return draft


async def _mark_error(session: AsyncSession, draft: PartnerEmailDraftRow, message: str) -> None:
    draft.status = "error"
    draft.error_message = message
    draft.updated_at = datetime.now(timezone.utc)
    await session.commit()


async def _deliver(session: AsyncSession, draft: PartnerEmailDraftRow, mailer) -> None:
    """Send and record the outcome on the draft.

    Any mailer failure marks the draft `error` and surfaces as DeliveryError.
    """
    try:
        await mailer.send(render_payment_notice(draft))
    except DeliveryError as e:
        await _mark_error(session, draft, e.message)
        logger.warning(f"Payment notice to {draft.partner_email} failed: {e.message}")
        raise
    except Exception as e:
        message = str(e) or type(e).__name__
        await _mark_error(session, draft, message)
        logger.exception(f"Payment notice to {draft.partner_email} failed unexpectedly")
        raise DeliveryError(message) from e
    draft.status = "sent"
    draft.sent_at = datetime.now(timezone.utc)
    draft.error_message = None
    draft.updated_at = draft.sent_at
    await session.commit()


async def send_draft(session: AsyncSession, draft_id: str, mailer) -> PartnerEmailDraftRow:
    draft = await get_draft(session, draft_id)
    if draft.status == "sent":
        raise ConflictError("Email has already been sent")
    if not draft.has_data:
        raise ConflictError("Cannot send email without data. Please update inactive days first.")
    if not draft.partner_email:
        await _mark_error(session, draft, NO_EMAIL_MESSAGE)
        raise ValidationError(NO_EMAIL_MESSAGE)

    await _deliver(session, draft, mailer)
    await session.refresh(draft)
    return draft


@dataclass
class BatchSendResult:
    sent: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped}


async def send_batch(session: AsyncSession, draft_ids: list[str], mailer,
                     delay: Optional[float] = None) -> BatchSendResult:
    """Validate every draft first, then send the valid ones one at a time.

    A `delay` pause (EMAIL_SEND_DELAY_SECONDS by default) separates sends.
    One failed send never stops the rest of the batch.
    """
    if not draft_ids:
        raise ValidationError("draftIds array is required")
    delay = settings.EMAIL_SEND_DELAY_SECONDS if delay is None else delay

    result = BatchSendResult()
    valid: list[PartnerEmailDraftRow] = []
    for draft_id in dict.fromkeys(draft_ids):
        draft = await session.get(PartnerEmailDraftRow, draft_id)
        if draft is None:
            result.failed.append({"draftId": draft_id, "error": "Draft not found"})
        elif draft.status == "sent":
            result.skipped.append({"draftId": draft_id, "partnerName": draft.partner_name,
                                   "reason": "Already sent"})
        elif not draft.has_data:
            result.skipped.append({"draftId": draft_id, "partnerName": draft.partner_name,
                                   "reason": "No data available"})
        elif not draft.partner_email:
            await _mark_error(session, draft, NO_EMAIL_MESSAGE)
            result.failed.append({"draftId": draft_id, "partnerName": draft.partner_name,
                                  "error": NO_EMAIL_MESSAGE})
        else:
            valid.append(draft)

    for i, draft in enumerate(valid):
        if i and delay:
            await asyncio.sleep(delay)
        try:
            await _deliver(session, draft, mailer)
            result.sent.append({"draftId": draft.id, "partnerName": draft.partner_name})
        except DeliveryError as e:
            result.failed.append({"draftId": draft.id, "partnerName": draft.partner_name,
                                  "error": e.message})

    logger.info(
        f"Batch send: sent={len(result.sent)} failed={len(result.failed)} skipped={len(result.skipped)}"
    )
    return result


async def delete_draft(session: AsyncSession, draft_id: str) -> None:
    draft = await get_draft(session, draft_id)
    await session.delete(draft)
    await session.commit()
