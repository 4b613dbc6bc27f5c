"""Partner back office: CRUD, payment calculation, confirmations, public summary."""
from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.auth import require_admin
from rakuado.db.engine import get_session
from rakuado.services import partner_payment, partners

router = APIRouter(prefix="/api/partners", tags=["Partners"])

admin = [Depends(require_admin)]


class PartnerFields(BaseModel):
    domain: Optional[str] = None
    name: Optional[str] = None
    nameKatakana: Optional[str] = None
    monthlyAmount: Optional[Union[int, str]] = None
    paymentCycle: Optional[str] = None
    startDate: Optional[str] = None
    stopDate: Optional[str] = None
    status: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    order: Optional[int] = None
    bankName: Optional[str] = None
    bankBranch: Optional[str] = None
    accountType: Optional[str] = None
    accountNumber: Optional[str] = None
    accountHolder: Optional[str] = None


class PeriodRequest(BaseModel):
    period: str = "current"


class ConfirmRequest(BaseModel):
    partnerId: str
    periodKey: str
    confirmed: bool = True


# ── Payments (declared before /{partner_id} so the paths don't collide) ──────

@router.get("/payments/calculate", dependencies=admin)
async def calculate_payments(
    period: str = Query("current", description="current | previous"),
    session: AsyncSession = Depends(get_session),
):
    return {"success": True, **await partner_payment.calculate_all(session, period)}


@router.post("/payments/recalculate", dependencies=admin)
async def recalculate_payments(req: PeriodRequest, session: AsyncSession = Depends(get_session)):
    """Recompute active days for every partner without persisting anything."""
    return {
        "success": True,
        "message": "Active days recalculated successfully",
        **await partner_payment.recalculate(session, req.period),
    }


@router.get("/payments/history", dependencies=admin)
async def payment_history(
    months: int = Query(6, ge=1, le=partner_payment.MAX_HISTORY_MONTHS),
    session: AsyncSession = Depends(get_session),
):
    return {"success": True, "periods": await partner_payment.payment_history(session, months)}


@router.post("/payments/confirm", dependencies=admin)
async def confirm_payment(req: ConfirmRequest, session: AsyncSession = Depends(get_session)):
    confirmed = await partner_payment.confirm_payment(session, req.partnerId, req.periodKey, req.confirmed)
    return {"success": True, "confirmed": confirmed}


@router.get("/payments/confirmations", dependencies=admin)
async def payment_confirmations(
    periodKey: str = Query("", description="YYYY-MM-DD_YYYY-MM-DD"),
    session: AsyncSession = Depends(get_session),
):
    return {"success": True, "confirmations": await partner_payment.get_confirmations(session, periodKey)}


@router.get("/public/summary")
async def public_summary(
    period: str = Query("current", description="current | previous"),
    session: AsyncSession = Depends(get_session),
):
    """Unauthenticated: active partners' expected payments, no contact or bank data."""
    return await partner_payment.public_summary(session, period)


# ── CRUD ──────────────────────────────────────────────────────────────────────

@router.get("", dependencies=admin)
async def list_partners(session: AsyncSession = Depends(get_session)):
    rows = await partners.list_partners(session)
    return {"success": True, "partners": [partners.partner_to_dict(p) for p in rows]}


@router.post("", status_code=201, dependencies=admin)
async def create_partner(req: PartnerFields, session: AsyncSession = Depends(get_session)):
    partner = await partners.create_partner(session, req.model_dump(exclude_unset=True))
    return {"success": True, "message": "Partner created successfully",
            "partner": partners.partner_to_dict(partner)}


@router.get("/{partner_id}", dependencies=admin)
async def get_partner(partner_id: str, session: AsyncSession = Depends(get_session)):
    partner = await partners.get_partner(session, partner_id)
    return {"success": True, "partner": partners.partner_to_dict(partner)}


@router.put("/{partner_id}", dependencies=admin)
async def update_partner(partner_id: str, req: PartnerFields, session: AsyncSession = Depends(get_session)):
    partner = await partners.update_partner(session, partner_id, req.model_dump(exclude_unset=True))
    return {"success": True, "message": "Partner updated successfully",
            "partner": partners.partner_to_dict(partner)}


@router.delete("/{partner_id}", dependencies=admin)
async def delete_partner(partner_id: str, session: AsyncSession = Depends(get_session)):
    await partners.delete_partner(session, partner_id)
    return {"success": True, "message": "Partner deleted successfully"}
