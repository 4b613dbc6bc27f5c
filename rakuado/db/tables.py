"""SQLAlchemy ORM models for Rakuado referral popups."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, Integer, BigInteger, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class PopupCounterRow(Base):
    """One referral popup with its lifetime view/click totals."""
    __tablename__ = "popup_counters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    image_url = Column(String(2000), nullable=True)
    target_url = Column(String(2000), nullable=True)
    order = Column(Integer, nullable=False, default=0)

    # Only ever incremented in SQL (views_total = views_total + 1)
    views_total = Column(BigInteger, nullable=False, default=0)
    clicks_total = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    referrers = relationship(
        "PopupReferrerRow", back_populates="popup", cascade="all, delete-orphan",
    )


class PopupReferrerRow(Base):
    """Rolling per-domain activity for a popup (the "refery" log).

    One row per (popup, domain). A write to a row whose last update is older
    than the rolling window restarts its counts from zero; readers must
    filter on last_updated_at_ms themselves.
    """
    __tablename__ = "popup_referrers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    popup_id = Column(Integer, ForeignKey("popup_counters.id", ondelete="CASCADE"), nullable=False)
    domain = Column(String(255), nullable=False)
    views = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    last_updated_at_ms = Column(BigInteger, nullable=False)

    popup = relationship("PopupCounterRow", back_populates="referrers")

    __table_args__ = (
        UniqueConstraint("popup_id", "domain", name="uq_popup_referrer_domain"),
        Index("ix_popup_referrers_updated", "last_updated_at_ms"),
    )
