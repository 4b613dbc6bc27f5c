"""Tests for partner payment proration."""
from datetime import date

import pytest

from rakuado.errors import ValidationError
from rakuado.services.partner_payment import (
    calculate_payment, count_active_days, daily_rate, prorate,
)
from rakuado.services.periods import PayPeriod, date_range, iso

JANUARY = PayPeriod(date(2026, 1, 21), date(2026, 2, 20))  # 31 days
DOMAIN = "blog.example.jp"


async def _active_every_day(make_record, start=JANUARY.start, end=JANUARY.end, domain=DOMAIN):
    for day in date_range(start, end):
        await make_record("daily", iso(day), views=10, clicks=1,
                          sites={domain: {"views": 10, "clicks": 1}})


class TestProration:

    def test_full_period_pays_monthly_amount(self):
        assert prorate(10000, 31, 31) == 10000
        assert prorate(7777, 28, 28) == 7777

    def test_no_active_days_pays_nothing(self):
        assert prorate(10000, 31, 0) == 0

    def test_partial_period(self):
        # 10000 * 28 / 31 = 9032.26
        assert prorate(10000, 31, 28) == 9032
        assert daily_rate(10000, 31) == 323

    def test_rounds_half_up(self):
        assert prorate(5, 2, 1) == 3
        assert daily_rate(15, 2) == 8

    def test_zero_total_days(self):
        assert prorate(10000, 0, 0) == 0
        assert daily_rate(10000, 0) == 0


class TestActiveDays:

    async def test_counts_days_with_views_or_clicks(self, session, make_record):
        await make_record("daily", "2026-01-21", views=5, sites={DOMAIN: {"views": 5, "clicks": 0}})
        await make_record("daily", "2026-01-22", views=0, clicks=2, sites={DOMAIN: {"views": 0, "clicks": 2}})
        await make_record("daily", "2026-01-23", views=9, sites={"other.jp": {"views": 9, "clicks": 0}})
        await make_record("daily", "2026-01-24")
        assert await count_active_days(session, DOMAIN, JANUARY.start, JANUARY.end) == 2

    async def test_range_is_inclusive(self, session, make_record):
        await _active_every_day(make_record, date(2026, 1, 20), date(2026, 1, 22))
        assert await count_active_days(session, DOMAIN, date(2026, 1, 21), date(2026, 1, 22)) == 2

    async def test_reversed_range(self, session):
        assert await count_active_days(session, DOMAIN, date(2026, 2, 1), date(2026, 1, 1)) == 0


class TestCalculatePayment:

    async def test_active_whole_period(self, session, make_record, make_partner):
        await _active_every_day(make_record)
        partner = await make_partner()
        result = await calculate_payment(session, partner, JANUARY)
        assert result.amount == 10000
        assert result.days_active == result.total_days == 31
        assert result.status == "active"
        assert result.inactive_days == 0

    async def test_no_analytics_is_partial_with_zero_amount(self, session, make_partner):
        partner = await make_partner()
        result = await calculate_payment(session, partner, JANUARY)
        assert result.amount == 0
        assert result.days_active == 0
        assert result.status == "partial"
        assert result.inactive_days == 31

    async def test_inactive_days_override(self, session, make_partner):
        partner = await make_partner()
        result = await calculate_payment(session, partner, JANUARY, inactive_days_override=3)
        assert result.days_active == 28
        assert result.daily_rate == 323
        assert result.amount == 9032
        assert result.status == "partial"

    async def test_override_out_of_range(self, session, make_partner):
        partner = await make_partner()
        with pytest.raises(ValidationError):
            await calculate_payment(session, partner, JANUARY, inactive_days_override=32)

    @pytest.mark.parametrize("status", ["stopped", "inactive", "pending"])
    async def test_non_paying_status_is_terminal(self, session, make_record, make_partner, status):
        await _active_every_day(make_record)
        partner = await make_partner(status=status)
        result = await calculate_payment(session, partner, JANUARY)
        assert (result.amount, result.days_active, result.total_days) == (0, 0, 0)
        assert result.status == status

    async def test_stop_date_without_status_means_stopped(self, session, make_record, make_partner):
        await _active_every_day(make_record)
        partner = await make_partner(stop_date=date(2026, 2, 10))
        result = await calculate_payment(session, partner, JANUARY)
        assert result.amount == 0
        assert result.status == "stopped"

    async def test_not_started(self, session, make_partner):
        partner = await make_partner(start_date=date(2026, 3, 1))
        result = await calculate_payment(session, partner, JANUARY)
        assert result.amount == 0
        assert result.status == "not_started"

    async def test_stopped_before_period(self, session, make_partner):
        partner = await make_partner(status="active", stop_date=date(2026, 1, 1))
        result = await calculate_payment(session, partner, JANUARY)
        assert result.amount == 0
        assert result.status == "stopped"

    async def test_stop_within_period_counts_until_stop(self, session, make_record, make_partner):
        await _active_every_day(make_record)
        partner = await make_partner(status="active", stop_date=date(2026, 2, 10))
        result = await calculate_payment(session, partner, JANUARY)
        # Jan 21 .. Feb 10 inclusive
        assert result.days_active == 21
        assert result.amount == prorate(10000, 31, 21)
        assert result.status == "stopped"

    async def test_started_mid_period_counts_from_start(self, session, make_record, make_partner):
        await _active_every_day(make_record)
        partner = await make_partner(start_date=date(2026, 2, 1))
        result = await calculate_payment(session, partner, JANUARY)
        assert result.days_active == 20
        assert result.total_days == 31
        assert result.status == "partial"

    async def test_to_dict_shape(self, session, make_partner):
        partner = await make_partner()
        data = (await calculate_payment(session, partner, JANUARY, inactive_days_override=0)).to_dict()
        assert data == {
            "amount": 10000, "daysActive": 31, "totalDays": 31,
            "status": "active", "dailyRate": 323, "inactiveDays": 0,
        }
