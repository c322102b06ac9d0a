"""Tests for coverage interval merging and PDC."""

from datetime import date

import pytest

from adherence_calculators.pdc_fragility_calculator.coverage import (
    build_coverage_intervals,
    calculate_covered_days,
    calculate_gap_days,
    calculate_pdc,
    calculate_pdc_and_refills,
    calculate_pdc_perfect,
    calculate_pdc_status_quo,
    calculate_treatment_days,
    merge_coverage_intervals,
)
from adherence_calculators.pdc_fragility_calculator.models import (
    CoverageInterval,
    FillRecord,
    MeasurementPeriod,
)

YEAR_END = date(2025, 12, 31)


def fill(year, month, day, days_supply=30):
    return FillRecord(fill_date=date(year, month, day), days_supply=days_supply)


class TestIntervalMerging:
    """Covered days count each day once however many fills cover it."""

    def test_overlapping_fills_merge(self):
        """Day 1 and day 27 fills of 30 days cover days 1-56, not 60."""
        fills = [fill(2025, 1, 1), fill(2025, 1, 27)]
        merged = merge_coverage_intervals(build_coverage_intervals(fills))

        assert merged == [CoverageInterval(start=date(2025, 1, 1), end=date(2025, 2, 25))]
        assert calculate_covered_days(fills, YEAR_END) == 56

    def test_adjacent_fills_merge(self):
        fills = [fill(2025, 1, 1), fill(2025, 1, 31)]
        merged = merge_coverage_intervals(build_coverage_intervals(fills))

        assert len(merged) == 1
        assert calculate_covered_days(fills, YEAR_END) == 60

    def test_one_day_gap_does_not_merge(self):
        fills = [fill(2025, 1, 1), fill(2025, 2, 1)]
        merged = merge_coverage_intervals(build_coverage_intervals(fills))

        assert len(merged) == 2
        assert calculate_covered_days(fills, YEAR_END) == 60

    def test_separate_fills_sum(self):
        fills = [fill(2025, 1, 1), fill(2025, 2, 1, days_supply=28)]
        assert calculate_covered_days(fills, YEAR_END) == 58

    def test_contained_fill_adds_nothing(self):
        fills = [fill(2025, 1, 1, days_supply=60), fill(2025, 1, 10, days_supply=10)]
        assert calculate_covered_days(fills, YEAR_END) == 60

    def test_chain_of_overlaps(self):
        """Three overlapping fills collapse into one span: Jan 1 through Apr 13."""
        fills = [
            fill(2025, 1, 1, days_supply=45),
            fill(2025, 2, 1, days_supply=45),
            fill(2025, 3, 1, days_supply=44),
        ]
        assert calculate_covered_days(fills, YEAR_END) == 103

    def test_input_order_does_not_matter(self):
        fills = [fill(2025, 3, 1), fill(2025, 1, 1), fill(2025, 1, 27)]
        assert calculate_covered_days(fills, YEAR_END) == calculate_covered_days(
            sorted(fills, key=lambda f: f.fill_date), YEAR_END
        )

    def test_same_day_fills_count_once(self):
        fills = [fill(2025, 4, 1), fill(2025, 4, 1)]
        assert calculate_covered_days(fills, YEAR_END) == 30

    def test_coverage_capped_at_period_end(self):
        """A December fill only counts through Dec 31."""
        fills = [fill(2025, 12, 1, days_supply=10), fill(2025, 12, 15, days_supply=30)]
        assert calculate_covered_days(fills, YEAR_END) == 27

    def test_interval_after_cap_is_dropped(self):
        intervals = [
            CoverageInterval(start=date(2025, 1, 1), end=date(2025, 1, 30)),
            CoverageInterval(start=date(2025, 3, 1), end=date(2025, 3, 30)),
        ]
        capped = merge_coverage_intervals(intervals, cap=date(2025, 1, 10))
        assert capped == [CoverageInterval(start=date(2025, 1, 1), end=date(2025, 1, 10))]

    def test_interval_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            CoverageInterval(start=date(2025, 2, 1), end=date(2025, 1, 1))


class TestPDCFormulas:
    def test_treatment_days(self):
        assert calculate_treatment_days(date(2025, 1, 1), YEAR_END) == 365
        assert calculate_treatment_days(date(2025, 7, 1), YEAR_END) == 184
        assert calculate_treatment_days(YEAR_END, YEAR_END) == 1

    def test_gap_days(self):
        assert calculate_gap_days(365, 300) == (65, 73, 8)
        assert calculate_gap_days(184, 150) == (34, 36, 2)

    def test_gap_days_remaining_is_not_clamped(self):
        """An exhausted allowance shows up as a negative remainder."""
        assert calculate_gap_days(100, 70) == (30, 20, -10)

    def test_status_quo_uses_smaller_of_supply_and_days_left(self):
        assert calculate_pdc_status_quo(100, 50, 30, 200) == 65.0
        assert calculate_pdc_status_quo(100, 10, 30, 200) == 55.0

    def test_projections_capped_at_100(self):
        assert calculate_pdc_perfect(300, 100, 365) == 100.0
        assert calculate_pdc_status_quo(300, 100, 100, 365) == 100.0


class TestCalculatePDC:
    """Tests for calculate_pdc."""

    @pytest.fixture
    def period(self):
        return MeasurementPeriod.for_year(2025)

    @pytest.fixture
    def fills(self):
        """Five 30-day fills from July with a few days gap between each."""
        return [
            fill(2025, 7, 1),
            fill(2025, 8, 5),
            fill(2025, 9, 10),
            fill(2025, 10, 15),
            fill(2025, 11, 18),
        ]

    def test_full_result(self, fills, period):
        result = calculate_pdc(fills, period, as_of=date(2025, 11, 20))

        assert result.insufficient_data is False
        assert result.fill_count == 5
        assert result.covered_days == 150
        assert result.treatment_days == 184
        assert result.pdc == 81.52
        assert (result.gap_days_used, result.gap_days_allowed, result.gap_days_remaining) == (
            34,
            36,
            2,
        )
        assert result.days_to_period_end == 41
        assert result.current_supply == 28
        assert result.days_until_runout == 28
        assert result.pdc_status_quo == 96.74
        assert result.pdc_perfect == 100.0
        assert result.refills_needed == 1
        assert result.last_fill_date == date(2025, 11, 18)
        assert result.measurement_period == MeasurementPeriod(
            start=date(2025, 7, 1), end=date(2025, 12, 31)
        )

    def test_same_inputs_same_result(self, fills, period):
        first = calculate_pdc(fills, period, as_of=date(2025, 11, 20))
        second = calculate_pdc(list(reversed(fills)), period, as_of=date(2025, 11, 20))
        assert first == second

    def test_refill_projection_returned_with_result(self, fills, period):
        result, refill = calculate_pdc_and_refills(fills, period, as_of=date(2025, 11, 20))

        assert result == calculate_pdc(fills, period, as_of=date(2025, 11, 20))
        # 41 days left, 28 on hand, ~30-day refills
        assert refill.coverage_shortfall == 13
        assert refill.estimated_days_per_refill == 30.0
        assert refill.remaining_refills == result.refills_needed == 1

    def test_insufficient_data_needs_no_refills(self, period):
        result, refill = calculate_pdc_and_refills(
            [fill(2025, 3, 1, days_supply=90)], period, as_of=date(2025, 6, 1)
        )

        assert result.insufficient_data is True
        assert refill.coverage_shortfall == 0
        assert refill.remaining_refills == 0
        assert refill.estimated_days_per_refill == 90.0

    def test_single_fill_is_insufficient(self, period):
        result = calculate_pdc([fill(2025, 3, 1)], period, as_of=date(2025, 6, 1))

        assert result.insufficient_data is True
        assert result.fill_count == 1
        assert result.pdc == 0.0
        assert result.treatment_days == 0
        assert result.last_fill_date is None

    def test_no_fills_is_insufficient(self, period):
        result = calculate_pdc([], period, as_of=date(2025, 6, 1))
        assert result.insufficient_data is True
        assert result.fill_count == 0

    def test_out_of_medication(self, period):
        """Runout goes negative while supply on hand bottoms out at zero."""
        fills = [fill(2025, 1, 1), fill(2025, 2, 1)]
        result = calculate_pdc(fills, period, as_of=date(2025, 4, 1))

        assert result.current_supply == 0
        assert result.days_until_runout == -29
        assert result.covered_days == 60
        assert result.gap_days_remaining < 0

    def test_as_of_after_period_end(self, period):
        fills = [fill(2025, 11, 1), fill(2025, 12, 1)]
        result = calculate_pdc(fills, period, as_of=date(2026, 1, 15))

        assert result.days_to_period_end == 0
        assert result.refills_needed == 0
        assert result.pdc_perfect == result.pdc
