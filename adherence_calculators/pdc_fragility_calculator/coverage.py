"""Covered days, PDC and PDC projections.

HEDIS counts each day at most once, however many fills cover it. Coverage is
computed by merging fill intervals:

    fill on day 1 for 30 days   -> [day 1, day 30]
    fill on day 27 for 30 days  -> [day 27, day 56]
    merged                      -> [day 1, day 56] = 56 covered days, not 60

Intervals that overlap or touch (next start <= current end + 1) merge; a one
day gap keeps them apart.
"""

import math
from datetime import date, timedelta

from adherence_calculators.pdc_fragility_calculator.dispense_processing import has_sufficient_fills
from adherence_calculators.pdc_fragility_calculator.models import (
    CoverageInterval,
    FillRecord,
    MeasurementPeriod,
    PDCResult,
    RefillProjection,
)
from adherence_calculators.pdc_fragility_calculator.refill_projector import (
    days_to_period_end,
    days_until_runout,
    project_refills,
    supply_on_hand,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import load_scoring_tables


def build_coverage_intervals(fills: list[FillRecord]) -> list[CoverageInterval]:
    """One inclusive interval per fill: [fill_date, fill_date + days_supply - 1]."""
    return [
        CoverageInterval(
            start=fill.fill_date,
            end=fill.fill_date + timedelta(days=fill.days_supply - 1),
        )
        for fill in fills
    ]


def merge_coverage_intervals(
    intervals: list[CoverageInterval],
    cap: date | None = None,
) -> list[CoverageInterval]:
    """Merge overlapping or adjacent intervals, then cap each end at `cap`.

    Args:
        intervals: Coverage intervals in any order
        cap: Last countable day (the period end); intervals starting after it are dropped

    Returns:
        Ordered intervals with no two overlapping or touching
    """
    merged: list[CoverageInterval] = []

    for interval in sorted(intervals, key=lambda i: i.start):
        if merged and interval.start <= merged[-1].end + timedelta(days=1):
            current = merged[-1]
            if interval.end > current.end:
                merged[-1] = CoverageInterval(start=current.start, end=interval.end)
        else:
            merged.append(interval)

    if cap is None:
        return merged

    capped: list[CoverageInterval] = []
    for interval in merged:
        if interval.start > cap:
            continue
        capped.append(CoverageInterval(start=interval.start, end=min(interval.end, cap)))
    return capped


def calculate_covered_days(fills: list[FillRecord], period_end: date) -> int:
    """Unique days covered by the fills through the period end."""
    merged = merge_coverage_intervals(build_coverage_intervals(fills), cap=period_end)
    return sum(interval.days for interval in merged)


def calculate_treatment_days(first_fill_date: date, period_end: date) -> int:
    """Days from the first fill (index prescription start date) through the period end."""
    return max(1, (period_end - first_fill_date).days + 1)


def calculate_gap_days(
    treatment_days: int,
    covered_days: int,
    gap_allowance: float = 0.20,
) -> tuple[int, int, int]:
    """Return (used, allowed, remaining) gap days.

    Remaining is not clamped; a negative value means the allowance is already spent.
    """
    used = treatment_days - covered_days
    allowed = math.floor(treatment_days * gap_allowance)
    return used, allowed, allowed - used


def _percent(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round(min(numerator / denominator * 100, 100.0), 2)


def calculate_pdc_status_quo(
    covered_days: int,
    current_supply: int,
    days_remaining: int,
    treatment_days: int,
) -> float:
    """Projected PDC if the patient only uses what is already on hand."""
    return _percent(covered_days + min(current_supply, days_remaining), treatment_days)


def calculate_pdc_perfect(covered_days: int, days_remaining: int, treatment_days: int) -> float:
    """Best reachable PDC if every future refill is picked up on time."""
    return _percent(covered_days + days_remaining, treatment_days)


def empty_pdc_result(period: MeasurementPeriod, fill_count: int = 0) -> PDCResult:
    """Zeroed result for fill histories too short to score."""
    return PDCResult(
        pdc=0.0,
        covered_days=0,
        treatment_days=0,
        gap_days_used=0,
        gap_days_allowed=0,
        gap_days_remaining=0,
        pdc_status_quo=0.0,
        pdc_perfect=0.0,
        measurement_period=period,
        days_until_runout=0,
        current_supply=0,
        refills_needed=0,
        last_fill_date=None,
        fill_count=fill_count,
        days_to_period_end=0,
        insufficient_data=True,
    )


def calculate_pdc_and_refills(
    fills: list[FillRecord],
    period: MeasurementPeriod,
    as_of: date,
    table_version: str = "v3",
) -> tuple[PDCResult, RefillProjection]:
    """Calculate PDC, its projections and the refill projection for normalized fills.

    Args:
        fills: Normalized fills inside the measurement period
        period: Measurement period; its end closes the treatment period
        as_of: Evaluation date used for supply, runout and projections
        table_version: Scoring table version

    Returns:
        Tuple of (PDCResult, RefillProjection); the PDCResult is an
        insufficient-data result when there are too few fills
    """
    settings = load_scoring_tables(table_version).pdc

    if not has_sufficient_fills(fills, settings.min_qualifying_fills):
        # matches the zeroed result: no days remaining, no supply on hand
        return (
            empty_pdc_result(period, fill_count=len(fills)),
            project_refills(0, 0, fills, table_version=table_version),
        )

    ordered = sorted(fills, key=lambda fill: fill.fill_date)
    first_fill = ordered[0]
    last_fill = ordered[-1]

    treatment_period = MeasurementPeriod(start=first_fill.fill_date, end=period.end)
    treatment_days = calculate_treatment_days(first_fill.fill_date, period.end)
    covered_days = calculate_covered_days(ordered, period.end)

    gap_used, gap_allowed, gap_remaining = calculate_gap_days(
        treatment_days, covered_days, settings.gap_allowance
    )

    remaining = days_to_period_end(period.end, as_of)
    current_supply = supply_on_hand(last_fill, as_of)
    refills = project_refills(remaining, current_supply, ordered, table_version=table_version)

    pdc_result = PDCResult(
        pdc=_percent(covered_days, treatment_days),
        covered_days=covered_days,
        treatment_days=treatment_days,
        gap_days_used=gap_used,
        gap_days_allowed=gap_allowed,
        gap_days_remaining=gap_remaining,
        pdc_status_quo=calculate_pdc_status_quo(
            covered_days, current_supply, remaining, treatment_days
        ),
        pdc_perfect=calculate_pdc_perfect(covered_days, remaining, treatment_days),
        measurement_period=treatment_period,
        days_until_runout=days_until_runout(last_fill, as_of),
        current_supply=current_supply,
        refills_needed=refills.remaining_refills,
        last_fill_date=last_fill.fill_date,
        fill_count=len(ordered),
        days_to_period_end=remaining,
    )
    return pdc_result, refills


def calculate_pdc(
    fills: list[FillRecord],
    period: MeasurementPeriod,
    as_of: date,
    table_version: str = "v3",
) -> PDCResult:
    """Calculate PDC and its projections for normalized fills.

    Returns an insufficient-data result when there are too few fills.
    """
    pdc_result, _ = calculate_pdc_and_refills(fills, period, as_of, table_version)
    return pdc_result
