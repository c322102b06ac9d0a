"""Data models for the PDC / fragility tier calculator."""

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FragilityTier(str, Enum):
    """Outreach urgency tiers, most urgent delay-budget tier first."""

    COMPLIANT = "COMPLIANT"
    F1_IMMINENT = "F1_IMMINENT"
    F2_FRAGILE = "F2_FRAGILE"
    F3_MODERATE = "F3_MODERATE"
    F4_COMFORTABLE = "F4_COMFORTABLE"
    F5_SAFE = "F5_SAFE"
    T5_UNSALVAGEABLE = "T5_UNSALVAGEABLE"


class UrgencyLevel(str, Enum):
    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class MAMeasure(str, Enum):
    """Medicare Part D medication adherence measures."""

    MAC = "MAC"  # cholesterol (statins)
    MAD = "MAD"  # diabetes
    MAH = "MAH"  # hypertension (RAS antagonists)


class DispenseInput(BaseModel):
    """Raw dispense-like record handed over by the data-access layer.

    Fields are deliberately loose; the fill normalizer decides what survives.

    Attributes:
        fill_date: Date the medication was handed over (date, datetime or ISO string)
        days_supply: Days of medication dispensed (may be missing, zero or negative)
        status: Dispense status; only 'completed' records qualify
        rxnorm_code: RxNorm ingredient code used for measure classification
        medication_display: Human readable medication name
    """

    fill_date: Any = None
    days_supply: Any = None
    status: str | None = None
    rxnorm_code: str | None = None
    medication_display: str | None = None


class FillRecord(BaseModel):
    """A validated fill event.

    Attributes:
        fill_date: Date of the fill
        days_supply: Positive number of days covered by the fill
        rxnorm_code: RxNorm code carried over from the dispense, if any
        medication_display: Medication name carried over from the dispense, if any
    """

    model_config = ConfigDict(frozen=True)

    fill_date: date
    days_supply: int = Field(gt=0)
    rxnorm_code: str | None = None
    medication_display: str | None = None


class DateSpan(BaseModel):
    """Inclusive [start, end] date span."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateSpan":
        if self.end < self.start:
            raise ValueError(
                f"span end {self.end.isoformat()} is before start {self.start.isoformat()}"
            )
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


class MeasurementPeriod(DateSpan):
    """Measurement window (usually a calendar year) or the treatment period inside it."""

    @classmethod
    def for_year(cls, year: int) -> "MeasurementPeriod":
        return cls(start=date(year, 1, 1), end=date(year, 12, 31))


class CoverageInterval(DateSpan):
    """Span of days covered by one or more fills."""


class PDCResult(BaseModel):
    """Adherence snapshot for one stream of fills.

    Attributes:
        pdc: Proportion of days covered, 0-100, two decimals
        covered_days: Days in the treatment period covered by at least one fill
        treatment_days: Days from the first fill through the period end
        gap_days_used: treatment_days - covered_days
        gap_days_allowed: floor(treatment_days * gap allowance)
        gap_days_remaining: gap_days_allowed - gap_days_used (may be negative)
        pdc_status_quo: Projected PDC if no further fills happen
        pdc_perfect: Projected PDC if every future refill is on time
        measurement_period: Treatment period (first fill through period end)
        days_until_runout: Days until the last fill runs out (negative = already out)
        current_supply: Days of medication on hand as of the evaluation date
        refills_needed: Refills needed to reach the period end
        last_fill_date: Date of the most recent fill
        fill_count: Number of qualifying fills
        days_to_period_end: Days after the evaluation date through the period end
        insufficient_data: True when fewer fills than the measure requires were found
    """

    model_config = ConfigDict(frozen=True)

    pdc: float = Field(ge=0, le=100)
    covered_days: int = Field(ge=0)
    treatment_days: int = Field(ge=0)
    gap_days_used: int = Field(ge=0)
    gap_days_allowed: int = Field(ge=0)
    gap_days_remaining: int
    pdc_status_quo: float = Field(ge=0, le=100)
    pdc_perfect: float = Field(ge=0, le=100)
    measurement_period: MeasurementPeriod
    days_until_runout: int
    current_supply: int = Field(ge=0)
    refills_needed: int = Field(ge=0)
    last_fill_date: date | None = None
    fill_count: int = Field(ge=0)
    days_to_period_end: int = Field(ge=0)
    insufficient_data: bool = False


class RefillProjection(BaseModel):
    """Refills still needed to carry the patient to the period end."""

    model_config = ConfigDict(frozen=True)

    coverage_shortfall: int = Field(ge=0)
    estimated_days_per_refill: float = Field(gt=0)
    remaining_refills: int = Field(ge=0)
    reasoning: str = ""


class FragilityFlags(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_compliant: bool = False
    is_unsalvageable: bool = False
    is_out_of_meds: bool = False
    is_q4: bool = False
    is_multiple_ma: bool = False
    is_new_patient: bool = False
    q4_tightened: bool = False


class PriorityBonuses(BaseModel):
    """Breakdown of a priority score into its base and bonus points."""

    model_config = ConfigDict(frozen=True)

    base: int = 0
    out_of_meds: int = 0
    q4: int = 0
    multiple_ma: int = 0
    new_patient: int = 0

    @property
    def total(self) -> int:
        return self.base + self.out_of_meds + self.q4 + self.multiple_ma + self.new_patient


class FragilityResult(BaseModel):
    """Tier classification and queue priority for one PDCResult.

    Attributes:
        tier: Assigned fragility tier
        tier_level: Sort key (0=T5, 1=F1 ... 5=F5, 6=COMPLIANT)
        delay_budget_per_refill: Gap days remaining per refill still needed;
            None when the tier was settled before the delay budget is computed;
            infinite when no refill is needed (serialized as JSON Infinity)
        contact_window: Recommended time to reach the patient
        action: Recommended outreach action
        priority_score: Base tier score plus bonuses
        urgency_level: Coarse bucket derived from priority_score
        flags: Which bonus conditions fired and whether Q4 promotion occurred
        bonuses: Point breakdown of priority_score
    """

    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    tier: FragilityTier
    tier_level: int
    delay_budget_per_refill: float | None = None
    contact_window: str
    action: str
    priority_score: int = Field(ge=0)
    urgency_level: UrgencyLevel
    flags: FragilityFlags
    bonuses: PriorityBonuses


class AdherenceEvaluation(BaseModel):
    """Full pipeline output for one fill stream."""

    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    pdc: PDCResult
    refill: RefillProjection
    fragility: FragilityResult
    normalization: dict[str, Any] = Field(default_factory=dict)


class PatientInput(BaseModel):
    """Input data for a single patient.

    Attributes:
        patient_id: Unique identifier for the patient
        measurement_year: Calendar year being measured
        dispenses: Raw dispense records for the year
        is_new_patient: Caller-supplied new enrollment flag
        active_measure_count: Number of adherence measures active for the patient;
            derived from the measures present in dispenses when omitted
    """

    patient_id: str
    measurement_year: int = Field(ge=1900, le=2999)
    dispenses: list[DispenseInput] = Field(default_factory=list)
    is_new_patient: bool = False
    active_measure_count: int | None = Field(default=None, ge=0)


class MedicationScore(BaseModel):
    model_config = ConfigDict(ser_json_inf_nan="constants")

    rxnorm_code: str
    medication_display: str
    pdc: PDCResult
    refill: RefillProjection
    fragility: FragilityResult


class MeasureScore(BaseModel):
    model_config = ConfigDict(ser_json_inf_nan="constants")

    measure: MAMeasure
    pdc: PDCResult
    refill: RefillProjection
    fragility: FragilityResult
    medications: list[MedicationScore] = Field(default_factory=list)


class PatientSummary(BaseModel):
    """Roll-up across all measures for queue ordering.

    Attributes:
        worst_tier: Most urgent tier across measures (COMPLIANT when none)
        highest_priority_score: Largest measure priority score
        days_until_earliest_runout: Smallest days-until-runout with fill data
        pdc_by_measure: Measure-level PDC, None where the measure has no data
    """

    worst_tier: FragilityTier = FragilityTier.COMPLIANT
    highest_priority_score: int = 0
    days_until_earliest_runout: int | None = None
    pdc_by_measure: dict[MAMeasure, float | None] = Field(default_factory=dict)


class PatientScoreOutput(BaseModel):
    """Output from scoring one patient.

    Attributes:
        patient_id: Patient identifier (from input)
        as_of: Evaluation date every date-based rule used
        measurement_year: Calendar year measured
        measures: One score per adherence measure found in the dispenses
        summary: Roll-up across measures
        details: Calculation details (table version, normalization stats)
    """

    model_config = ConfigDict(ser_json_inf_nan="constants")

    patient_id: str
    as_of: date
    measurement_year: int
    measures: list[MeasureScore] = Field(default_factory=list)
    summary: PatientSummary
    details: dict[str, Any] = Field(default_factory=dict)


class PDCSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    target: float
    gap_allowance: float = Field(gt=0, lt=1)
    default_days_supply: int = Field(gt=0)
    min_qualifying_fills: int = Field(ge=1)
    refill_lookback_fills: int = Field(ge=1)


class Q4Tightening(BaseModel):
    model_config = ConfigDict(frozen=True)

    days_to_period_end_below: int
    gap_days_at_most: int


class PriorityBonusTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    out_of_medication: int
    q4: int
    multiple_ma_measures: int
    new_patient: int


class ScoringTables(BaseModel):
    """Versioned scoring constants loaded from tables/scoring_<version>.yaml."""

    model_config = ConfigDict(frozen=True)

    version: str
    pdc: PDCSettings
    delay_budget_max: dict[FragilityTier, float]
    q4_tightening: Q4Tightening
    priority_base: dict[FragilityTier, int]
    priority_bonus: PriorityBonusTable
    q4_months: list[int]
    urgency_min_score: dict[UrgencyLevel, int]
    tier_level: dict[FragilityTier, int]
    contact_window: dict[FragilityTier, str]
    action: dict[FragilityTier, str]
    measure_rxnorm_codes: dict[MAMeasure, list[str]] = Field(default_factory=dict)
