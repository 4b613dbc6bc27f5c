"""Popup counters, analytics time series, partners and payment notice drafts.

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "3f9c2a7d1b40"
down_revision = None
branch_labels = None
depends_on = None

_DATED_TABLES = {
    "analytics_snapshots": "date",
    "analytics_daily": "date",
    "analytics_weekly": "week_start",
    "analytics_monthly": "month_start",
}


def _totals_columns():
    return [
        sa.Column("total_views", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("total_clicks", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("sites", sa.JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    op.create_table(
        "popup_counters",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("image_url", sa.String(2000)),
        sa.Column("target_url", sa.String(2000)),
        sa.Column("order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("views_total", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("clicks_total", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "popup_referrers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("popup_id", sa.Integer, sa.ForeignKey("popup_counters.id", ondelete="CASCADE"),
                  nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("clicks", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_updated_at_ms", sa.BigInteger, nullable=False),
        sa.UniqueConstraint("popup_id", "domain", name="uq_popup_referrer_domain"),
    )
    op.create_index("ix_popup_referrers_updated", "popup_referrers", ["last_updated_at_ms"])

    op.create_table(
        "analytics_snapshots",
        sa.Column("date", sa.String(10), primary_key=True),
        sa.Column("captured_at_ms", sa.BigInteger, nullable=False),
        *_totals_columns(),
    )
    op.create_table(
        "analytics_daily",
        sa.Column("date", sa.String(10), primary_key=True),
        sa.Column("repaired_at", sa.DateTime(timezone=True)),
        sa.Column("previous_value", sa.JSON),
        *_totals_columns(),
    )
    op.create_table(
        "analytics_weekly",
        sa.Column("week_start", sa.String(10), primary_key=True),
        *_totals_columns(),
    )
    op.create_table(
        "analytics_monthly",
        sa.Column("month_start", sa.String(10), primary_key=True),
        *_totals_columns(),
    )

    op.create_table(
        "partners",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order", sa.Integer, nullable=False, server_default="1"),
        sa.Column("domain", sa.String(255), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("name_katakana", sa.String(200), nullable=False, server_default=""),
        sa.Column("monthly_amount", sa.Integer, nullable=False),
        sa.Column("payment_cycle", sa.String(20), nullable=False, server_default="当月"),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("stop_date", sa.Date),
        sa.Column("status", sa.String(20)),
        sa.Column("email", sa.String(320), nullable=False, server_default=""),
        sa.Column("phone", sa.String(50), nullable=False, server_default=""),
        sa.Column("address", sa.String(500), nullable=False, server_default=""),
        sa.Column("bank_info", sa.JSON, nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "partner_email_drafts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("partner_id", sa.String(36), nullable=False, index=True),
        sa.Column("period_start", sa.String(10), nullable=False),
        sa.Column("period_end", sa.String(10), nullable=False),
        sa.Column("period_month", sa.String(20), nullable=False, server_default=""),
        sa.Column("partner_name", sa.String(200), nullable=False),
        sa.Column("partner_email", sa.String(320), nullable=False, server_default=""),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("payment_cycle", sa.String(20), nullable=False, server_default="当月"),
        sa.Column("monthly_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("bank_info", sa.JSON, nullable=False),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("total_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("inactive_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payment_amount", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("has_data", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.String(1000)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("partner_id", "period_start", "period_end", name="uq_draft_partner_period"),
    )
    op.create_index("ix_drafts_period", "partner_email_drafts", ["period_start", "period_end"])
    op.create_table(
        "partner_payment_confirmations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("partner_id", sa.String(36), nullable=False),
        sa.Column("period_key", sa.String(21), nullable=False, index=True),
        sa.Column("confirmed", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("partner_id", "period_key", name="uq_confirmation_partner_period"),
    )


def downgrade() -> None:
    op.drop_table("partner_payment_confirmations")
    op.drop_index("ix_drafts_period", table_name="partner_email_drafts")
    op.drop_table("partner_email_drafts")
    op.drop_table("partners")
    for table in reversed(list(_DATED_TABLES)):
        op.drop_table(table)
    op.drop_index("ix_popup_referrers_updated", table_name="popup_referrers")
    op.drop_table("popup_referrers")
    op.drop_table("popup_counters")
