"""Referral popup counters — view/click registration from the embed widget."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from rakuado.auth import require_admin
from rakuado.db.engine import get_session
from rakuado.services import counters

router = APIRouter(prefix="/api/referral", tags=["Referral"])


class CreatePopupRequest(BaseModel):
    imageUrl: Optional[str] = None
    targetUrl: Optional[str] = None


@router.post("/popups", status_code=201, dependencies=[Depends(require_admin)])
async def create_popup(req: CreatePopupRequest, session: AsyncSession = Depends(get_session)):
    popup = await counters.create_popup(session, req.imageUrl, req.targetUrl)
    return {"success": True, "popup": {"id": popup.id, "order": popup.order,
                                       "imageUrl": popup.image_url, "targetUrl": popup.target_url}}


@router.get("/popups", dependencies=[Depends(require_admin)])
async def list_popups(session: AsyncSession = Depends(get_session)):
    """Popups with lifetime totals and activity in the rolling 24h window."""
    return {"success": True, "popups": await counters.list_popups(session)}


@router.api_route("/register-view", methods=["GET", "POST"])
async def register_view(
    popup: str = Query(..., description="Popup id"),
    domain: Optional[str] = Query(None, description="Embedding site"),
    session: AsyncSession = Depends(get_session),
):
    await counters.increment_view(session, popup, domain)
    return {"success": True}


@router.api_route("/register-click", methods=["GET", "POST"])
async def register_click(
    popup: str = Query(..., description="Popup id"),
    domain: Optional[str] = Query(None, description="Embedding site"),
    session: AsyncSession = Depends(get_session),
):
    await counters.increment_click(session, popup, domain)
    return {"success": True}
