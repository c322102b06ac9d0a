from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import polars as pl
import yaml

from adherence_calculators.pdc_fragility_calculator import (
    AdherenceCalculator,
    DispenseInput,
    PatientInput,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("patient_id", "fill_date", "days_supply", "status", "rxnorm_code")
YAML_DETAIL_LIMIT = 20

OUTPUT_COLUMNS = [
    "patient_id",
    "measure",
    "as_of",
    "measurement_year",
    "table_version",
    "fill_count",
    "pdc",
    "pdc_status_quo",
    "pdc_perfect",
    "covered_days",
    "treatment_days",
    "gap_days_remaining",
    "days_until_runout",
    "current_supply",
    "remaining_refills",
    "delay_budget_per_refill",
    "fragility_tier",
    "q4_tightened",
    "priority_score",
    "urgency_level",
]


def default_export_dir() -> Path:
    env_dir = os.environ.get("ADHERENCE_EXPORT_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path(__file__).parent / "tmp_exports"


def default_output_csv() -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S%f")
    return default_export_dir() / f"{timestamp}_adherence_scores_out.csv"


def read_dispense_frame(input_path: str | Path) -> pl.DataFrame:
    """Read a dispense extract (CSV or Parquet).

    CSV columns are read as text; the fill normalizer does the parsing so a bad
    cell rejects one record instead of the whole file.
    """
    path = Path(input_path).expanduser().resolve()
    if path.suffix.lower() == ".parquet":
        df = pl.read_parquet(path)
    else:
        df = pl.read_csv(path, infer_schema_length=0)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing required columns: {', '.join(missing)}")
    return df


def _coerce_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y"}


def rows_to_patient_inputs(
    rows: Iterable[dict[str, Any]],
    measurement_year: int,
) -> list[PatientInput]:
    """Group dispense rows by patient_id, keeping first-seen patient order."""
    dispenses: dict[str, list[DispenseInput]] = {}
    new_patient: dict[str, bool] = {}

    for row in rows:
        patient_id = row.get("patient_id")
        if patient_id is None or str(patient_id).strip() == "":
            continue
        patient_id = str(patient_id).strip()
        rxnorm_code = row.get("rxnorm_code")
        display = row.get("medication_display")

        dispenses.setdefault(patient_id, []).append(
            DispenseInput(
                fill_date=row.get("fill_date"),
                days_supply=row.get("days_supply"),
                status=str(row["status"]) if row.get("status") is not None else None,
                rxnorm_code=str(rxnorm_code).strip() if rxnorm_code is not None else None,
                medication_display=str(display) if display is not None else None,
            )
        )
        new_patient[patient_id] = new_patient.get(patient_id, False) or _coerce_bool(
            row.get("is_new_patient")
        )

    return [
        PatientInput(
            patient_id=patient_id,
            measurement_year=measurement_year,
            dispenses=patient_dispenses,
            is_new_patient=new_patient[patient_id],
        )
        for patient_id, patient_dispenses in dispenses.items()
    ]


def score_file_to_csv(
    *,
    input_path: str,
    output_csv_path: str,
    as_of: date,
    measurement_year: int | None = None,
    table_version: str = "v3",
    limit: int | None = None,
) -> int:
    """Read dispenses from a file and write measure-level adherence scores to CSV.

    Returns number of rows written (one per patient and measure).

    Expected input columns:
    - patient_id, fill_date, days_supply, status, rxnorm_code
    - optional: medication_display, is_new_patient
    """
    year = measurement_year if measurement_year is not None else as_of.year

    df = read_dispense_frame(input_path)
    patients = rows_to_patient_inputs(df.iter_rows(named=True), measurement_year=year)
    if limit is not None:
        patients = patients[: int(limit)]

    calculator = AdherenceCalculator(table_version=table_version)

    output_path = Path(output_csv_path).expanduser().resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Create directory for YAML exports
    yaml_dir = output_path.parent / "yaml_details"
    yaml_dir.mkdir(parents=True, exist_ok=True)

    out_rows: list[dict[str, Any]] = []
    skipped_records = 0
    patients_without_measures = 0

    for i, patient in enumerate(patients):
        score = calculator.score(patient, as_of=as_of)
        skipped_records += int(score.details["normalization"]["skipped"])

        if i < YAML_DETAIL_LIMIT:
            with (yaml_dir / f"{patient.patient_id}.yml").open("w", encoding="utf-8") as yf:
                yaml.dump(score.model_dump(mode="json"), yf, sort_keys=False)

        if not score.measures:
            patients_without_measures += 1

        for measure in score.measures:
            out_rows.append(
                {
                    "patient_id": patient.patient_id,
                    "measure": measure.measure.value,
                    "as_of": as_of.isoformat(),
                    "measurement_year": year,
                    "table_version": table_version,
                    "fill_count": measure.pdc.fill_count,
                    "pdc": measure.pdc.pdc,
                    "pdc_status_quo": measure.pdc.pdc_status_quo,
                    "pdc_perfect": measure.pdc.pdc_perfect,
                    "covered_days": measure.pdc.covered_days,
                    "treatment_days": measure.pdc.treatment_days,
                    "gap_days_remaining": measure.pdc.gap_days_remaining,
                    "days_until_runout": measure.pdc.days_until_runout,
                    "current_supply": measure.pdc.current_supply,
                    "remaining_refills": measure.refill.remaining_refills,
                    "delay_budget_per_refill": measure.fragility.delay_budget_per_refill,
                    "fragility_tier": measure.fragility.tier.value,
                    "q4_tightened": measure.fragility.flags.q4_tightened,
                    "priority_score": measure.fragility.priority_score,
                    "urgency_level": measure.fragility.urgency_level.value,
                }
            )

    schema = {
        "delay_budget_per_refill": pl.Float64,
        "pdc": pl.Float64,
        "pdc_status_quo": pl.Float64,
        "pdc_perfect": pl.Float64,
    }
    out_df = pl.DataFrame(out_rows, schema_overrides=schema) if out_rows else pl.DataFrame(
        schema={col: pl.Utf8 for col in OUTPUT_COLUMNS}
    )
    out_df.select(OUTPUT_COLUMNS).write_csv(output_path)

    if skipped_records:
        total_records = df.height
        pct = (skipped_records / total_records) * 100 if total_records > 0 else 0
        logger.warning(
            "Skipped %d/%d (%.2f%%) dispense records (non-completed, out of year or malformed)",
            skipped_records,
            total_records,
            pct,
        )
    if patients_without_measures:
        logger.info("%d patients had no adherence-measure fills", patients_without_measures)

    logger.info("Scored %d patients into %d measure rows", len(patients), len(out_rows))
    return len(out_rows)
