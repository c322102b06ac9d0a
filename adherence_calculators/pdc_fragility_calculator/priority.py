"""Priority score and urgency level.

Priority = base score (from tier) + bonuses. Every bonus is checked for every
tier, including COMPLIANT and T5_UNSALVAGEABLE whose base is 0:

    out of medication (days until runout <= 0)   +30
    evaluation date in October-December          +25
    2+ active adherence measures                 +15
    new patient                                  +10

The score is not capped; F1 with every bonus scores 180.
"""

from datetime import date

from adherence_calculators.pdc_fragility_calculator.models import (
    FragilityTier,
    PriorityBonuses,
    UrgencyLevel,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import load_scoring_tables


def is_q4(as_of: date, table_version: str = "v3") -> bool:
    return as_of.month in load_scoring_tables(table_version).q4_months


def calculate_priority_bonuses(
    tier: FragilityTier,
    *,
    days_until_runout: int | None,
    as_of: date,
    active_measure_count: int,
    is_new_patient: bool,
    table_version: str = "v3",
) -> PriorityBonuses:
    """Score breakdown for a tier and the patient's situation.

    Args:
        tier: Final fragility tier
        days_until_runout: Signed days until runout; None when unknown (no fill data)
        as_of: Evaluation date for the Q4 bonus
        active_measure_count: Adherence measures active for the patient
        is_new_patient: Caller-supplied new enrollment flag
        table_version: Scoring table version

    Returns:
        PriorityBonuses whose `total` is the priority score
    """
    tables = load_scoring_tables(table_version)
    bonus = tables.priority_bonus

    out_of_meds = days_until_runout is not None and days_until_runout <= 0

    return PriorityBonuses(
        base=tables.priority_base[tier],
        out_of_meds=bonus.out_of_medication if out_of_meds else 0,
        q4=bonus.q4 if is_q4(as_of, table_version) else 0,
        # flat bonus, however many measures beyond two
        multiple_ma=bonus.multiple_ma_measures if active_measure_count >= 2 else 0,
        new_patient=bonus.new_patient if is_new_patient else 0,
    )


def determine_urgency_level(priority_score: int, table_version: str = "v3") -> UrgencyLevel:
    """Bucket a priority score: >=150 EXTREME, >=100 HIGH, >=50 MODERATE, else LOW."""
    thresholds = load_scoring_tables(table_version).urgency_min_score
    for level in (UrgencyLevel.EXTREME, UrgencyLevel.HIGH, UrgencyLevel.MODERATE):
        if priority_score >= thresholds[level]:
            return level
    return UrgencyLevel.LOW
