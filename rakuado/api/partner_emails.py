"""Partner payment notice drafts — generate, review, edit, send."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.auth import require_admin
from rakuado.db.engine import get_session
from rakuado.services import partner_emails
from rakuado.services.mailer import get_mailer

router = APIRouter(prefix="/api/partner-emails", tags=["Partner Emails"], dependencies=[Depends(require_admin)])


class GenerateRequest(BaseModel):
    period: str = "current"


class UpdateDraftRequest(BaseModel):
    inactiveDays: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class BatchSendRequest(BaseModel):
    draftIds: list[str] = Field(default_factory=list)


@router.get("/drafts")
async def list_drafts(
    period: str = Query("current", description="current | previous"),
    session: AsyncSession = Depends(get_session),
):
    return {"success": True, **await partner_emails.list_drafts(session, period)}


@router.post("/generate")
async def generate_drafts(req: GenerateRequest, session: AsyncSession = Depends(get_session)):
    result = await partner_emails.generate_drafts(session, req.period)
    return {"success": True, "message": "Email drafts generated successfully", **result}


@router.get("/draft/{draft_id}")
async def get_draft(draft_id: str, session: AsyncSession = Depends(get_session)):
    draft = await partner_emails.get_draft(session, draft_id)
    return {"success": True, "draft": partner_emails.draft_to_dict(draft)}


@router.put("/draft/{draft_id}")
async def update_draft(draft_id: str, req: UpdateDraftRequest, session: AsyncSession = Depends(get_session)):
    """Override inactive days (recomputes the amount) and/or edit notes."""
    changes = req.model_dump(exclude_unset=True)
    kwargs = {"inactive_days": changes.get("inactiveDays")}
    if "notes" in changes:
        kwargs["notes"] = changes["notes"]
    draft = await partner_emails.update_draft(session, draft_id, **kwargs)
    return {"success": True, "message": "Draft updated successfully",
            "draft": partner_emails.draft_to_dict(draft)}


@router.delete("/draft/{draft_id}")
async def delete_draft(draft_id: str, session: AsyncSession = Depends(get_session)):
    await partner_emails.delete_draft(session, draft_id)
    return {"success": True, "message": "Draft deleted successfully"}


@router.post("/send/{draft_id}")
async def send_draft(draft_id: str, session: AsyncSession = Depends(get_session),
                     mailer=Depends(get_mailer)):
    draft = await partner_emails.send_draft(session, draft_id, mailer)
    return {"success": True, "message": "Email sent successfully",
            "draft": partner_emails.draft_to_dict(draft)}


@router.post("/send-batch")
async def send_batch(req: BatchSendRequest, session: AsyncSession = Depends(get_session),
                     mailer=Depends(get_mailer)):
    result = await partner_emails.send_batch(session, req.draftIds, mailer)
    return {"success": True, "message": "Batch email sending completed", "results": result.to_dict()}
