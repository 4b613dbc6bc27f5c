"""Partner records — admin CRUD and serialisation."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.db.partner_tables import PartnerRow
from rakuado.errors import NotFoundError, ValidationError
from rakuado.services.counters import clean_domain
from rakuado.services.periods import iso, parse_date

logger = logging.getLogger(__name__)

PARTNER_STATUSES = ("active", "stopped", "inactive", "pending")
PAYMENT_CYCLES = ("当月", "翌月")

# request field → bank_info key
BANK_FIELDS = {
    "bankName": "bankName",
    "bankBranch": "branchName",
    "accountType": "accountType",
    "accountNumber": "accountNumber",
    "accountHolder": "accountHolder",
}

# request field → column
_SCALAR_FIELDS = {
    "name": "name",
    "nameKatakana": "name_katakana",
    "paymentCycle": "payment_cycle",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "notes": "notes",
    "order": "order",
}


def partner_to_dict(partner: PartnerRow) -> dict:
    return {
        "id": partner.id,
        "order": partner.order,
        "domain": partner.domain,
        "name": partner.name,
        "nameKatakana": partner.name_katakana,
        "monthlyAmount": partner.monthly_amount,
        "paymentCycle": partner.payment_cycle,
        "startDate": iso(partner.start_date),
        "stopDate": iso(partner.stop_date) if partner.stop_date else None,
        "status": partner.status,
        "email": partner.email,
        "phone": partner.phone,
        "address": partner.address,
        "bankInfo": partner.bank_info or {},
        "notes": partner.notes,
        "createdAt": partner.created_at.isoformat() if partner.created_at else None,
        "updatedAt": partner.updated_at.isoformat() if partner.updated_at else None,
    }


def _check_status(status: Optional[str]) -> Optional[str]:
    if status is not None and status not in PARTNER_STATUSES:
        raise ValidationError(f"Invalid status {status!r}. Use one of: {', '.join(PARTNER_STATUSES)}")
    return status


def _check_amount(amount) -> int:
    try:
        value = int(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid monthlyAmount: {amount!r}")
    if value < 0:
        raise ValidationError("monthlyAmount must be >= 0")
    return value


async def list_partners(session: AsyncSession) -> list[PartnerRow]:
    result = await session.execute(select(PartnerRow).order_by(PartnerRow.order, PartnerRow.created_at))
    return list(result.scalars().all())


async def get_partner(session: AsyncSession, partner_id: str) -> PartnerRow:
    partner = await session.get(PartnerRow, partner_id)
    if partner is None:
        raise NotFoundError("Partner not found")
    return partner


async def create_partner(session: AsyncSession, data: dict) -> PartnerRow:
    """Create a partner. Requires domain, name, monthlyAmount and startDate."""
    missing = [f for f in ("domain", "name", "monthlyAmount", "startDate") if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Required fields: {', '.join(missing)}")
    domain = clean_domain(data["domain"])
    if not domain:
        raise ValidationError("Invalid domain")

    last_order = (await session.execute(select(func.max(PartnerRow.order)))).scalar() or 0
    stop_date = parse_date(data["stopDate"]) if data.get("stopDate") else None
    partner = PartnerRow(
        order=last_order + 1,
        domain=domain,
        name=data["name"],
        name_katakana=data.get("nameKatakana") or "",
        monthly_amount=_check_amount(data["monthlyAmount"]),
        payment_cycle=data.get("paymentCycle") or "当月",
        start_date=parse_date(data["startDate"]),
        stop_date=stop_date,
        status=_check_status(data.get("status")) or ("stopped" if stop_date else "active"),
        email=data.get("email") or "",
        phone=data.get("phone") or "",
        address=data.get("address") or "",
        bank_info={
            "bankName": data.get("bankName") or "",
            "branchName": data.get("bankBranch") or "",
            "accountType": data.get("accountType") or "普通",
            "accountNumber": data.get("accountNumber") or "",
            "accountHolder": data.get("accountHolder") or "",
        },
        notes=data.get("notes") or "",
    )
    session.add(partner)
    await session.commit()
    logger.info(f"Partner created: {partner.name} ({partner.domain})")
    return partner


async def update_partner(session: AsyncSession, partner_id: str, data: dict) -> PartnerRow:
    """Apply the fields present in `data`; absent fields are left unchanged."""
    partner = await get_partner(session, partner_id)

    for field, column in _SCALAR_FIELDS.items():
        if field in data and data[field] is not None:
            setattr(partner, column, data[field])
    if "domain" in data and data["domain"] is not None:
        domain = clean_domain(data["domain"])
        if not domain:
            raise ValidationError("Invalid domain")
        partner.domain = domain
    if "monthlyAmount" in data and data["monthlyAmount"] is not None:
        partner.monthly_amount = _check_amount(data["monthlyAmount"])
    if "startDate" in data and data["startDate"]:
        partner.start_date = parse_date(data["startDate"])
    if "stopDate" in data:
        partner.stop_date = parse_date(data["stopDate"]) if data["stopDate"] else None
    if "status" in data:
        partner.status = _check_status(data["status"])

    bank_info = dict(partner.bank_info or {})
    for field, key in BANK_FIELDS.items():
        if field in data and data[field] is not None:
            bank_info[key] = data[field]
    partner.bank_info = bank_info
    partner.updated_at = datetime.now(timezone.utc)

    await session.commit()
    await session.refresh(partner)
    return partner


async def delete_partner(session: AsyncSession, partner_id: str) -> None:
    partner = await get_partner(session, partner_id)
    await session.delete(partner)
    await session.commit()
    logger.info(f"Partner deleted: {partner_id}")
