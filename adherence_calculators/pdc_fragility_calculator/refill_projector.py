"""Supply on hand and remaining refill projection.

Remaining refills is the number of refills the patient still has to pick up
to stay covered through the period end. It is not the number of refills left
on the prescription.
"""

import math
from datetime import date

from adherence_calculators.pdc_fragility_calculator.models import (
    FillRecord,
    RefillProjection,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import (
    DEFAULT_TABLE_VERSION,
    load_scoring_tables,
)


def supply_on_hand(fill: FillRecord | None, as_of: date) -> int:
    """Days of medication left from a fill as of a date (never negative)."""
    if fill is None:
        return 0
    days_elapsed = (as_of - fill.fill_date).days
    return max(0, fill.days_supply - days_elapsed)


def days_until_runout(fill: FillRecord, as_of: date) -> int:
    """Signed days until a fill runs out; zero or negative means the patient is out."""
    return fill.days_supply - (as_of - fill.fill_date).days


def days_to_period_end(period_end: date, as_of: date) -> int:
    """Days strictly after `as_of` up to and including `period_end`."""
    return max(0, (period_end - as_of).days)


def coverage_shortfall(days_remaining: int, supply: int) -> int:
    return max(0, days_remaining - supply)


def estimate_days_per_refill(
    recent_fills: list[FillRecord],
    lookback: int | None = None,
    default_days_supply: int | None = None,
    table_version: str = DEFAULT_TABLE_VERSION,
) -> float:
    """Mean days supply over the `lookback` most recent fills with a positive supply.

    Args:
        recent_fills: Fill history, any order
        lookback: Number of most recent fills to average (table default when None)
        default_days_supply: Fallback when no usable fill exists (table default when None)
        table_version: Scoring table version supplying the defaults

    Returns:
        Estimated days covered by each future refill
    """
    settings = load_scoring_tables(table_version).pdc
    if lookback is None:
        lookback = settings.refill_lookback_fills
    if default_days_supply is None:
        default_days_supply = settings.default_days_supply

    valid = [fill for fill in recent_fills if fill.days_supply > 0]
    if not valid:
        return float(default_days_supply)
    # sorted() is stable; the last entries are the most recent fills
    most_recent = sorted(valid, key=lambda fill: fill.fill_date)[-lookback:]
    return sum(fill.days_supply for fill in most_recent) / len(most_recent)


def remaining_refills(shortfall: int, days_per_refill: float) -> int:
    """Refills needed to cover a shortfall, rounded up so coverage is never short."""
    if shortfall <= 0:
        return 0
    return math.ceil(shortfall / days_per_refill)


def project_refills(
    days_remaining: int,
    supply: int,
    recent_fills: list[FillRecord],
    table_version: str = DEFAULT_TABLE_VERSION,
) -> RefillProjection:
    """Build the refill projection from the days left and the supply on hand.

    Args:
        days_remaining: Days after the evaluation date through the period end
        supply: Days of medication on hand
        recent_fills: Fill history used to estimate the size of future refills
        table_version: Scoring table version for the lookback and default supply

    Returns:
        RefillProjection with shortfall, refill size and refill count
    """
    shortfall = coverage_shortfall(days_remaining, supply)
    days_per_refill = estimate_days_per_refill(recent_fills, table_version=table_version)
    refills = remaining_refills(shortfall, days_per_refill)

    if refills == 0:
        reasoning = "No refills needed - supply on hand reaches the period end"
    else:
        reasoning = f"Need {refills} refill(s) of ~{days_per_refill:g}-day supply"

    return RefillProjection(
        coverage_shortfall=shortfall,
        estimated_days_per_refill=days_per_refill,
        remaining_refills=refills,
        reasoning=reasoning,
    )

