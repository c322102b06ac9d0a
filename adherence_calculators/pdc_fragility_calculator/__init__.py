"""Medication Adherence PDC / Fragility Tier Calculator.

Implements Proportion of Days Covered (PDC) scoring for the Medicare Part D
adherence measures (MAC, MAD, MAH) and the fragility tier / priority model
used to order the outreach queue.
Loads scoring constants from tables/scoring_<version>.yaml.
"""

from adherence_calculators.pdc_fragility_calculator.calculator import (
    AdherenceCalculator,
    evaluate_adherence,
)
from adherence_calculators.pdc_fragility_calculator.models import (
    AdherenceEvaluation,
    DispenseInput,
    FillRecord,
    FragilityResult,
    FragilityTier,
    MeasurementPeriod,
    PatientInput,
    PatientScoreOutput,
    PDCResult,
    RefillProjection,
    UrgencyLevel,
)

__all__ = [
    "AdherenceCalculator",
    "AdherenceEvaluation",
    "DispenseInput",
    "FillRecord",
    "FragilityResult",
    "FragilityTier",
    "MeasurementPeriod",
    "PatientInput",
    "PatientScoreOutput",
    "PDCResult",
    "RefillProjection",
    "UrgencyLevel",
    "evaluate_adherence",
]
