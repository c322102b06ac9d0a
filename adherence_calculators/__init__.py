"""Adherence calculators - Medication adherence scoring implementations.

Available calculators:
    - AdherenceCalculator: PDC and fragility tier calculator for Part D adherence measures
"""

from adherence_calculators.pdc_fragility_calculator import (
    AdherenceCalculator,
    PatientInput,
    PatientScoreOutput,
)

__all__ = ["AdherenceCalculator", "PatientInput", "PatientScoreOutput"]
