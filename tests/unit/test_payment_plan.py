"""Unit tests for payment-plan arithmetic."""

import datetime as dt

import pytest

from enrollment.services.payment_plan import (
    InstallmentProgress,
    add_interval,
    projected_end_date,
    subscription_interval,
)

JAN_31 = dt.datetime(2025, 1, 31, 12, 0, tzinfo=dt.UTC)


class TestAddInterval:
    def test_month_clamps_to_end_of_month(self):
        assert add_interval(JAN_31, "month", 1).date() == dt.date(2025, 2, 28)

    def test_leap_year(self):
        start = dt.datetime(2024, 1, 31, tzinfo=dt.UTC)
        assert add_interval(start, "month", 1).date() == dt.date(2024, 2, 29)

    def test_crosses_year_boundary(self):
        start = dt.datetime(2025, 11, 15, tzinfo=dt.UTC)
        assert add_interval(start, "month", 3).date() == dt.date(2026, 2, 15)

    def test_year(self):
        start = dt.datetime(2024, 2, 29, tzinfo=dt.UTC)
        assert add_interval(start, "year", 1).date() == dt.date(2025, 2, 28)

    @pytest.mark.parametrize(("unit", "days"), [("day", 10), ("week", 70)])
    def test_fixed_length_units(self, unit, days):
        assert add_interval(JAN_31, unit, 10) == JAN_31 + dt.timedelta(days=days)

    def test_keeps_time_of_day(self):
        assert add_interval(JAN_31, "month", 2).hour == 12

    def test_unknown_unit(self):
        with pytest.raises(ValueError, match="fortnight"):
            add_interval(JAN_31, "fortnight", 1)


class TestProjectedEndDate:
    def test_three_monthly_installments(self):
        start = dt.datetime(2025, 1, 1, tzinfo=dt.UTC)
        assert projected_end_date(start, "month", 1, 3).date() == dt.date(2025, 4, 1)

    def test_every_two_weeks(self):
        start = dt.datetime(2025, 1, 1, tzinfo=dt.UTC)
        assert projected_end_date(start, "week", 2, 4).date() == dt.date(2025, 2, 26)


class TestSubscriptionInterval:
    def test_from_plan(self):
        assert subscription_interval({"plan": {"interval": "week", "interval_count": 2}}) == (
            "week",
            2,
        )

    def test_from_first_item(self):
        subscription = {
            "items": {"data": [{"price": {"recurring": {"interval": "year", "interval_count": 1}}}]}
        }
        assert subscription_interval(subscription) == ("year", 1)

    def test_default_monthly(self):
        assert subscription_interval({}) == ("month", 1)


class TestInstallmentProgress:
    def test_in_progress(self):
        progress = InstallmentProgress(paid=1, total=3)
        assert progress.completed is False
        assert progress.remaining == 2

    def test_completed(self):
        progress = InstallmentProgress(paid=3, total=3)
        assert progress.completed is True
        assert progress.remaining == 0

    def test_overpaid_is_completed(self):
        assert InstallmentProgress(paid=4, total=3).remaining == 0
