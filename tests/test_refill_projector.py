"""Tests for supply on hand and refill projection."""

from datetime import date

import pytest

from adherence_calculators.pdc_fragility_calculator.models import FillRecord
from adherence_calculators.pdc_fragility_calculator.refill_projector import (
    coverage_shortfall,
    days_to_period_end,
    days_until_runout,
    estimate_days_per_refill,
    project_refills,
    remaining_refills,
    supply_on_hand,
)


@pytest.fixture
def january_fill():
    return FillRecord(fill_date=date(2025, 1, 1), days_supply=30)


class TestSupply:
    def test_supply_on_hand_counts_down(self, january_fill):
        assert supply_on_hand(january_fill, date(2025, 1, 1)) == 30
        assert supply_on_hand(january_fill, date(2025, 1, 11)) == 20

    def test_supply_on_hand_never_negative(self, january_fill):
        assert supply_on_hand(january_fill, date(2025, 2, 15)) == 0

    def test_no_fill_means_no_supply(self):
        assert supply_on_hand(None, date(2025, 2, 15)) == 0

    def test_runout_is_signed(self, january_fill):
        assert days_until_runout(january_fill, date(2025, 1, 21)) == 10
        assert days_until_runout(january_fill, date(2025, 1, 31)) == 0
        assert days_until_runout(january_fill, date(2025, 2, 10)) == -10

    def test_days_to_period_end(self):
        assert days_to_period_end(date(2025, 12, 31), date(2025, 12, 1)) == 30
        assert days_to_period_end(date(2025, 12, 31), date(2025, 12, 31)) == 0
        assert days_to_period_end(date(2025, 12, 31), date(2026, 1, 5)) == 0

    def test_coverage_shortfall(self):
        assert coverage_shortfall(100, 10) == 90
        assert coverage_shortfall(10, 100) == 0


class TestRefillEstimate:
    def test_mean_of_three_most_recent(self):
        fills = [
            FillRecord(fill_date=date(2025, 6, 1), days_supply=60),
            FillRecord(fill_date=date(2025, 1, 1), days_supply=30),
            FillRecord(fill_date=date(2025, 2, 1), days_supply=90),
            FillRecord(fill_date=date(2025, 5, 1), days_supply=30),
        ]
        # Feb (90), May (30), Jun (60)
        assert estimate_days_per_refill(fills) == 60.0

    def test_fewer_fills_than_lookback(self):
        fills = [
            FillRecord(fill_date=date(2025, 1, 1), days_supply=30),
            FillRecord(fill_date=date(2025, 2, 1), days_supply=90),
        ]
        assert estimate_days_per_refill(fills) == 60.0

    def test_default_without_history(self):
        assert estimate_days_per_refill([]) == 30.0
        assert estimate_days_per_refill([], default_days_supply=90) == 90.0

    def test_lookback_override(self):
        fills = [
            FillRecord(fill_date=date(2025, 1, 1), days_supply=30),
            FillRecord(fill_date=date(2025, 2, 1), days_supply=90),
        ]
        assert estimate_days_per_refill(fills, lookback=1) == 90.0

    @pytest.mark.parametrize(
        "shortfall,per_refill,expected",
        [(0, 30, 0), (-5, 30, 0), (1, 30, 1), (30, 30, 1), (31, 30, 2), (90, 45.0, 2)],
    )
    def test_remaining_refills_round_up(self, shortfall, per_refill, expected):
        assert remaining_refills(shortfall, per_refill) == expected


class TestProjectRefills:
    @pytest.fixture
    def fills(self):
        return [
            FillRecord(fill_date=date(2025, 1, 1), days_supply=30),
            FillRecord(fill_date=date(2025, 2, 1), days_supply=30),
        ]

    def test_projection_with_shortfall(self, fills):
        projection = project_refills(days_remaining=100, supply=10, recent_fills=fills)

        assert projection.coverage_shortfall == 90
        assert projection.estimated_days_per_refill == 30.0
        assert projection.remaining_refills == 3
        assert projection.reasoning == "Need 3 refill(s) of ~30-day supply"

    def test_projection_when_supply_reaches_period_end(self, fills):
        projection = project_refills(days_remaining=20, supply=25, recent_fills=fills)

        assert projection.coverage_shortfall == 0
        assert projection.remaining_refills == 0
        assert projection.reasoning.startswith("No refills needed")
