"""Fragility tier classification.

Tier evaluation order:
1. COMPLIANT if PDC status quo >= 80 (checked before any delay budget math)
2. T5_UNSALVAGEABLE if PDC perfect < 80 or the gap allowance is already spent
3. F1-F5 from the delay budget (gap days remaining / refills still needed)
4. Q4 tightening: fewer than 60 days left and <= 5 gap days remaining
   promotes F2-F5 one step toward F1

Example:
    30 gap days remaining, 3 refills needed -> 10 days/refill -> F3_MODERATE
    15 gap days remaining, 3 refills needed ->  5 days/refill -> F2_FRAGILE
"""

import math
from dataclasses import dataclass
from datetime import date

from adherence_calculators.pdc_fragility_calculator.models import (
    FragilityFlags,
    FragilityResult,
    FragilityTier,
    PDCResult,
)
from adherence_calculators.pdc_fragility_calculator.priority import (
    calculate_priority_bonuses,
    determine_urgency_level,
    is_q4,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import load_scoring_tables

DELAY_BUDGET_TIERS = (
    FragilityTier.F1_IMMINENT,
    FragilityTier.F2_FRAGILE,
    FragilityTier.F3_MODERATE,
    FragilityTier.F4_COMFORTABLE,
)

Q4_TIER_PROMOTION = {
    FragilityTier.F5_SAFE: FragilityTier.F4_COMFORTABLE,
    FragilityTier.F4_COMFORTABLE: FragilityTier.F3_MODERATE,
    FragilityTier.F3_MODERATE: FragilityTier.F2_FRAGILE,
    FragilityTier.F2_FRAGILE: FragilityTier.F1_IMMINENT,
}


@dataclass(frozen=True)
class TierDecision:
    tier: FragilityTier
    delay_budget: float | None
    q4_tightened: bool


def calculate_delay_budget(gap_days_remaining: int, remaining_refills: int) -> float:
    """Average days each remaining refill may be late; infinite when no refill is needed."""
    if remaining_refills <= 0:
        return math.inf
    return gap_days_remaining / remaining_refills


def tier_from_delay_budget(delay_budget: float, table_version: str = "v3") -> FragilityTier:
    """Map a delay budget to F1-F5. Zero or negative budgets are F1."""
    bounds = load_scoring_tables(table_version).delay_budget_max
    for tier in DELAY_BUDGET_TIERS:
        if delay_budget <= bounds[tier]:
            return tier
    return FragilityTier.F5_SAFE


def apply_q4_tightening(
    tier: FragilityTier,
    days_to_period_end: int,
    gap_days_remaining: int,
    table_version: str = "v3",
) -> tuple[FragilityTier, bool]:
    """Promote a tier one step when little time and little slack remain.

    COMPLIANT, T5_UNSALVAGEABLE and F1_IMMINENT are never promoted.

    Returns:
        Tuple of (possibly promoted tier, whether promotion happened)
    """
    promoted = Q4_TIER_PROMOTION.get(tier)
    if promoted is None:
        return tier, False

    rule = load_scoring_tables(table_version).q4_tightening
    if (
        days_to_period_end < rule.days_to_period_end_below
        and gap_days_remaining <= rule.gap_days_at_most
    ):
        return promoted, True
    return tier, False


def classify_tier(
    *,
    pdc_status_quo: float,
    pdc_perfect: float,
    gap_days_remaining: int,
    remaining_refills: int,
    days_to_period_end: int,
    table_version: str = "v3",
) -> TierDecision:
    """Run the tier state machine in precedence order."""
    target = load_scoring_tables(table_version).pdc.target

    if pdc_status_quo >= target:
        return TierDecision(FragilityTier.COMPLIANT, None, False)

    if pdc_perfect < target or gap_days_remaining < 0:
        return TierDecision(FragilityTier.T5_UNSALVAGEABLE, None, False)

    delay_budget = calculate_delay_budget(gap_days_remaining, remaining_refills)
    base_tier = tier_from_delay_budget(delay_budget, table_version)
    tier, tightened = apply_q4_tightening(
        base_tier, days_to_period_end, gap_days_remaining, table_version
    )
    return TierDecision(tier, delay_budget, tightened)


def calculate_fragility(
    pdc_result: PDCResult,
    remaining_refills: int,
    *,
    as_of: date,
    active_measure_count: int = 1,
    is_new_patient: bool = False,
    table_version: str = "v3",
) -> FragilityResult:
    """Classify a PDCResult and score it for the outreach queue.

    Args:
        pdc_result: Result from calculate_pdc
        remaining_refills: Refills still needed (from the refill projection)
        as_of: Evaluation date; the same date the PDCResult was computed for
        active_measure_count: Adherence measures active for the patient
        is_new_patient: Caller-supplied new enrollment flag
        table_version: Scoring table version

    Returns:
        FragilityResult with tier, priority score, urgency and flags
    """
    tables = load_scoring_tables(table_version)

    if pdc_result.insufficient_data:
        # fewer than two fills keeps the patient out of the measure denominator
        decision = TierDecision(FragilityTier.COMPLIANT, None, False)
        runout: int | None = None
    else:
        decision = classify_tier(
            pdc_status_quo=pdc_result.pdc_status_quo,
            pdc_perfect=pdc_result.pdc_perfect,
            gap_days_remaining=pdc_result.gap_days_remaining,
            remaining_refills=remaining_refills,
            days_to_period_end=pdc_result.days_to_period_end,
            table_version=table_version,
        )
        runout = pdc_result.days_until_runout

    bonuses = calculate_priority_bonuses(
        decision.tier,
        days_until_runout=runout,
        as_of=as_of,
        active_measure_count=active_measure_count,
        is_new_patient=is_new_patient,
        table_version=table_version,
    )
    priority_score = bonuses.total

    return FragilityResult(
        tier=decision.tier,
        tier_level=tables.tier_level[decision.tier],
        delay_budget_per_refill=decision.delay_budget,
        contact_window=tables.contact_window[decision.tier],
        action=tables.action[decision.tier],
        priority_score=priority_score,
        urgency_level=determine_urgency_level(priority_score, table_version),
        flags=FragilityFlags(
            is_compliant=decision.tier == FragilityTier.COMPLIANT,
            is_unsalvageable=decision.tier == FragilityTier.T5_UNSALVAGEABLE,
            is_out_of_meds=runout is not None and runout <= 0,
            is_q4=is_q4(as_of, table_version),
            is_multiple_ma=active_measure_count >= 2,
            is_new_patient=is_new_patient,
            q4_tightened=decision.q4_tightened,
        ),
        bonuses=bonuses,
    )
