"""Partner (paid blog placement) tables: partners, invoice email drafts, confirmations."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, Date, DateTime, Boolean, JSON, Text,
    Index, UniqueConstraint
)

from rakuado.db.tables import Base


class PartnerRow(Base):
    """A partner site paid a fixed monthly fee, prorated by active days."""
    __tablename__ = "partners"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order = Column(Integer, nullable=False, default=1)  # display rank
    domain = Column(String(255), nullable=False, index=True)  # normalized, see clean_domain()
    name = Column(String(200), nullable=False)
    name_katakana = Column(String(200), nullable=False, default="")
    monthly_amount = Column(Integer, nullable=False)
    payment_cycle = Column(String(20), nullable=False, default="当月")  # 当月 or 翌月
    start_date = Column(Date, nullable=False)
    stop_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=True)  # active, stopped, inactive, pending

    email = Column(String(320), nullable=False, default="")
    phone = Column(String(50), nullable=False, default="")
    address = Column(String(500), nullable=False, default="")
    bank_info = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PartnerEmailDraftRow(Base):
    """Payment notice for one partner and one pay period.

    status: draft | no_data | sent | error. A sent draft is frozen.
    """
    __tablename__ = "partner_email_drafts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    partner_id = Column(String(36), nullable=False, index=True)
    period_start = Column(String(10), nullable=False)
    period_end = Column(String(10), nullable=False)
    period_month = Column(String(20), nullable=False, default="")

    # Denormalized from the partner at generation time
    partner_name = Column(String(200), nullable=False)
    partner_email = Column(String(320), nullable=False, default="")
    domain = Column(String(255), nullable=False)
    payment_cycle = Column(String(20), nullable=False, default="当月")
    monthly_amount = Column(Integer, nullable=False, default=0)
    bank_info = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=False, default="")

    # Payment calculation
    total_days = Column(Integer, nullable=False, default=0)
    active_days = Column(Integer, nullable=False, default=0)
    inactive_days = Column(Integer, nullable=False, default=0)
    payment_amount = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="draft")
    has_data = Column(Boolean, nullable=False, default=False)
    error_message = Column(String(1000), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("partner_id", "period_start", "period_end", name="uq_draft_partner_period"),
        Index("ix_drafts_period", "period_start", "period_end"),
    )


class PartnerPaymentConfirmationRow(Base):
    """Marks a partner's payment for a period (`YYYY-MM-DD_YYYY-MM-DD`) as paid out."""
    __tablename__ = "partner_payment_confirmations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    partner_id = Column(String(36), nullable=False)
    period_key = Column(String(21), nullable=False, index=True)
    confirmed = Column(Boolean, nullable=False, default=True)
    confirmed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("partner_id", "period_key", name="uq_confirmation_partner_period"),
    )
