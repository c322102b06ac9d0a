"""Medication Adherence PDC / Fragility Tier Calculator.

This module implements the main calculator class that:
1. Normalizes raw dispenses into fill records for the measurement year
2. Classifies fills into adherence measures (MAC/MAD/MAH) by RxNorm code
3. Merges coverage intervals and calculates PDC with its projections
4. Projects supply on hand and the refills still needed
5. Classifies the fragility tier and scores outreach priority

Every date-based rule uses the caller's `as_of` date; nothing reads the clock,
so scoring the same input for the same `as_of` always gives the same result.

The calculator loads its constants from:
    tables/scoring_<version>.yaml
"""

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

from adherence_calculators.pdc_fragility_calculator.coverage import calculate_pdc_and_refills
from adherence_calculators.pdc_fragility_calculator.dispense_processing import normalize_fills
from adherence_calculators.pdc_fragility_calculator.fragility import calculate_fragility
from adherence_calculators.pdc_fragility_calculator.models import (
    AdherenceEvaluation,
    DispenseInput,
    FillRecord,
    MAMeasure,
    MeasurementPeriod,
    MeasureScore,
    MedicationScore,
    PatientInput,
    PatientScoreOutput,
    PatientSummary,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import (
    DEFAULT_TABLE_VERSION,
    load_rxnorm_to_measure,
    load_scoring_tables,
)


class AdherenceCalculator:
    """PDC and fragility tier calculator for Part D adherence measures.

    Implements the scoring pipeline:
    1. Keep completed dispenses inside the measurement year
    2. Group fills by measure (and by medication within a measure)
    3. Merge coverage intervals, derive PDC, gap days and projections
    4. Derive remaining refills and the delay budget per refill
    5. Assign a fragility tier, priority score and urgency level

    Example:
        >>> from datetime import date
        >>> calculator = AdherenceCalculator(table_version="v3")
        >>> patient = PatientInput(
        ...     patient_id="P001",
        ...     measurement_year=2025,
        ...     dispenses=[
        ...         DispenseInput(fill_date="2025-01-15", days_supply=30,
        ...                       status="completed", rxnorm_code="83367"),
        ...         DispenseInput(fill_date="2025-02-14", days_supply=30,
        ...                       status="completed", rxnorm_code="83367"),
        ...     ],
        ... )
        >>> result = calculator.score(patient, as_of=date(2025, 3, 1))
        >>> print(result.summary.worst_tier)
    """

    def __init__(self, table_version: str = DEFAULT_TABLE_VERSION):
        """Initialize calculator with a scoring table version.

        Args:
            table_version: Table version (e.g., "v3"). Must have a corresponding
                tables/scoring_{table_version}.yaml
        """
        self.table_version = table_version

        # Load tables (cached after first load)
        self._tables = load_scoring_tables(table_version)
        self._rxnorm_to_measure = load_rxnorm_to_measure(table_version)

    def classify_measure(self, rxnorm_code: str | None) -> MAMeasure | None:
        """Map an RxNorm code to its adherence measure, None for non-measure drugs."""
        if not rxnorm_code:
            return None
        return self._rxnorm_to_measure.get(str(rxnorm_code).strip())

    def evaluate_fills(
        self,
        fills: list[FillRecord],
        period: MeasurementPeriod,
        as_of: date,
        *,
        active_measure_count: int = 1,
        is_new_patient: bool = False,
        normalization: dict[str, Any] | None = None,
    ) -> AdherenceEvaluation:
        """Run coverage, refill projection and fragility for normalized fills."""
        pdc_result, refill = calculate_pdc_and_refills(
            fills, period, as_of, table_version=self.table_version
        )
        fragility = calculate_fragility(
            pdc_result,
            refill.remaining_refills,
            as_of=as_of,
            active_measure_count=active_measure_count,
            is_new_patient=is_new_patient,
            table_version=self.table_version,
        )
        return AdherenceEvaluation(
            pdc=pdc_result,
            refill=refill,
            fragility=fragility,
            normalization=normalization or {},
        )

    def evaluate(
        self,
        records: Iterable[DispenseInput | Mapping[str, Any]],
        period: MeasurementPeriod,
        as_of: date,
        *,
        active_measure_count: int = 1,
        is_new_patient: bool = False,
    ) -> AdherenceEvaluation:
        """Score one stream of raw dispenses (one medication or one measure).

        Args:
            records: Raw dispense-like records
            period: Measurement period
            as_of: Evaluation date
            active_measure_count: Adherence measures active for the patient
            is_new_patient: Caller-supplied new enrollment flag

        Returns:
            AdherenceEvaluation with PDC, refill projection and fragility results
        """
        fills, stats = normalize_fills(records, period, table_version=self.table_version)
        return self.evaluate_fills(
            fills,
            period,
            as_of,
            active_measure_count=active_measure_count,
            is_new_patient=is_new_patient,
            normalization=stats,
        )

    def _group_by_measure(
        self, fills: list[FillRecord]
    ) -> tuple[dict[MAMeasure, list[FillRecord]], int]:
        """Group fills by measure; also return the count of non-measure fills."""
        grouped: dict[MAMeasure, list[FillRecord]] = {}
        unclassified = 0
        for fill in fills:
            measure = self.classify_measure(fill.rxnorm_code)
            if measure is None:
                unclassified += 1
                continue
            grouped.setdefault(measure, []).append(fill)
        # stable measure order regardless of fill order
        return {m: grouped[m] for m in MAMeasure if m in grouped}, unclassified

    def _score_medications(
        self,
        fills: list[FillRecord],
        period: MeasurementPeriod,
        as_of: date,
        active_measure_count: int,
        is_new_patient: bool,
    ) -> list[MedicationScore]:
        by_code: dict[str, list[FillRecord]] = {}
        for fill in fills:
            by_code.setdefault(str(fill.rxnorm_code), []).append(fill)

        medications: list[MedicationScore] = []
        for code, med_fills in by_code.items():
            display = next(
                (f.medication_display for f in med_fills if f.medication_display), code
            )
            evaluation = self.evaluate_fills(
                med_fills,
                period,
                as_of,
                active_measure_count=active_measure_count,
                is_new_patient=is_new_patient,
            )
            medications.append(
                MedicationScore(
                    rxnorm_code=code,
                    medication_display=display,
                    pdc=evaluation.pdc,
                    refill=evaluation.refill,
                    fragility=evaluation.fragility,
                )
            )
        return medications

    def _summarize(self, measures: list[MeasureScore]) -> PatientSummary:
        """Roll measure scores up to the patient for queue ordering."""
        if not measures:
            return PatientSummary(pdc_by_measure={m: None for m in MAMeasure})

        worst = min(measures, key=lambda m: m.fragility.tier_level)
        runouts = [m.pdc.days_until_runout for m in measures if not m.pdc.insufficient_data]
        pdc_by_measure: dict[MAMeasure, float | None] = {m: None for m in MAMeasure}
        for score in measures:
            if not score.pdc.insufficient_data:
                pdc_by_measure[score.measure] = score.pdc.pdc

        return PatientSummary(
            worst_tier=worst.fragility.tier,
            highest_priority_score=max(m.fragility.priority_score for m in measures),
            days_until_earliest_runout=min(runouts) if runouts else None,
            pdc_by_measure=pdc_by_measure,
        )

    def score(
        self,
        patient: PatientInput,
        as_of: date,
        include_medications: bool = True,
    ) -> PatientScoreOutput:
        """Calculate adherence scores for a single patient.

        Args:
            patient: Patient input data
            as_of: Evaluation date for supply, runout, projections and Q4 rules
            include_medications: Also score each medication inside each measure

        Returns:
            PatientScoreOutput with per-measure scores and a patient summary
        """
        # Step 1: Normalize dispenses for the measurement year
        period = MeasurementPeriod.for_year(patient.measurement_year)
        fills, stats = normalize_fills(
            patient.dispenses, period, table_version=self.table_version
        )

        # Step 2: Group by measure
        grouped, unclassified = self._group_by_measure(fills)
        active_measure_count = (
            patient.active_measure_count
            if patient.active_measure_count is not None
            else len(grouped)
        )

        # Step 3: Score each measure; measure-level PDC merges all of its medications
        measures: list[MeasureScore] = []
        for measure, measure_fills in grouped.items():
            evaluation = self.evaluate_fills(
                measure_fills,
                period,
                as_of,
                active_measure_count=active_measure_count,
                is_new_patient=patient.is_new_patient,
            )
            medications = (
                self._score_medications(
                    measure_fills,
                    period,
                    as_of,
                    active_measure_count,
                    patient.is_new_patient,
                )
                if include_medications
                else []
            )
            measures.append(
                MeasureScore(
                    measure=measure,
                    pdc=evaluation.pdc,
                    refill=evaluation.refill,
                    fragility=evaluation.fragility,
                    medications=medications,
                )
            )

        # Step 4: Patient roll-up
        return PatientScoreOutput(
            patient_id=patient.patient_id,
            as_of=as_of,
            measurement_year=patient.measurement_year,
            measures=measures,
            summary=self._summarize(measures),
            details={
                "table_version": self.table_version,
                "measurement_period": [period.start.isoformat(), period.end.isoformat()],
                "active_measure_count": active_measure_count,
                "normalization": stats,
                "unclassified_fills": unclassified,
            },
        )

    def score_batch(
        self, patients: list[PatientInput], as_of: date, include_medications: bool = True
    ) -> list[PatientScoreOutput]:
        """Calculate adherence scores for multiple patients.

        Patients are independent; results come back in input order.

        Args:
            patients: List of patient inputs
            as_of: Evaluation date shared by the whole batch
            include_medications: Also score each medication inside each measure

        Returns:
            List of score outputs in same order as inputs
        """
        return [self.score(patient, as_of, include_medications) for patient in patients]


def evaluate_adherence(
    records: Iterable[DispenseInput | Mapping[str, Any]],
    period: MeasurementPeriod,
    as_of: date,
    *,
    active_measure_count: int = 1,
    is_new_patient: bool = False,
    table_version: str = DEFAULT_TABLE_VERSION,
) -> AdherenceEvaluation:
    """Score one stream of raw dispenses with the given table version."""
    return AdherenceCalculator(table_version=table_version).evaluate(
        records,
        period,
        as_of,
        active_measure_count=active_measure_count,
        is_new_patient=is_new_patient,
    )
