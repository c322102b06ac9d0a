from __future__ import annotations

import logging
from datetime import date
from pathlib import Path

import typer

from adherence_calculators.pdc_fragility_calculator import AdherenceCalculator
from adherence_calculators.pdc_fragility_calculator.file_to_csv import (
    default_output_csv,
    read_dispense_frame,
    rows_to_patient_inputs,
    score_file_to_csv,
)

app = typer.Typer(no_args_is_help=True, help="Adherence CLI - PDC and fragility tier scoring")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_as_of(value: str | None) -> date:
    # The CLI is the only place that may fall back to today's date
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"--as-of must be YYYY-MM-DD, got {value!r}") from None


@app.command(name="score-file")
def score_file(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    output_csv: Path | None = typer.Option(None, "--output-csv"),
    as_of: str | None = typer.Option(None, "--as-of", help="Evaluation date (YYYY-MM-DD)"),
    measurement_year: int | None = typer.Option(None, "--measurement-year"),
    table_version: str = typer.Option("v3", "--table-version"),
    limit: int | None = typer.Option(None, "--limit", help="Score only the first N patients"),
    log_level: str = typer.Option("INFO", "--log-level"),
) -> None:
    """Score every patient in a dispense file (CSV or Parquet) and write a CSV.

    Writes one row per patient and adherence measure, plus YAML details for the
    first patients next to the CSV.
    """

    _configure_logging(log_level)
    evaluation_date = _parse_as_of(as_of)
    output_path = output_csv or default_output_csv()

    count = score_file_to_csv(
        input_path=str(input_path),
        output_csv_path=str(output_path),
        as_of=evaluation_date,
        measurement_year=measurement_year,
        table_version=table_version,
        limit=limit,
    )

    typer.echo(f"Wrote {count} rows to {Path(output_path).expanduser().resolve()}")


@app.command(name="explain")
def explain(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    patient_id: str = typer.Option(..., "--patient-id"),
    as_of: str | None = typer.Option(None, "--as-of", help="Evaluation date (YYYY-MM-DD)"),
    measurement_year: int | None = typer.Option(None, "--measurement-year"),
    table_version: str = typer.Option("v3", "--table-version"),
) -> None:
    """Print the PDC and fragility breakdown for one patient."""

    evaluation_date = _parse_as_of(as_of)
    year = measurement_year if measurement_year is not None else evaluation_date.year

    df = read_dispense_frame(input_path)
    patients = [
        p
        for p in rows_to_patient_inputs(df.iter_rows(named=True), measurement_year=year)
        if p.patient_id == patient_id
    ]
    if not patients:
        typer.echo(f"Patient {patient_id} not found in {input_path}", err=True)
        raise typer.Exit(code=1)

    score = AdherenceCalculator(table_version=table_version).score(patients[0], evaluation_date)

    typer.echo(f"Patient {score.patient_id} as of {score.as_of.isoformat()} ({year})")
    if not score.measures:
        typer.echo("  no adherence-measure fills")
    for measure in score.measures:
        pdc = measure.pdc
        frag = measure.fragility
        if pdc.insufficient_data:
            typer.echo(f"  {measure.measure.value}: insufficient data ({pdc.fill_count} fill)")
            continue
        typer.echo(
            f"  {measure.measure.value}: PDC {pdc.pdc:.2f}% "
            f"(covered {pdc.covered_days}/{pdc.treatment_days} days, "
            f"gap {pdc.gap_days_used}/{pdc.gap_days_allowed}, remaining {pdc.gap_days_remaining})"
        )
        typer.echo(
            f"    status quo {pdc.pdc_status_quo:.2f}%, perfect {pdc.pdc_perfect:.2f}%, "
            f"supply {pdc.current_supply}d, runout in {pdc.days_until_runout}d"
        )
        typer.echo(f"    refills: {measure.refill.reasoning}")
        budget = frag.delay_budget_per_refill
        budget_text = "n/a" if budget is None else f"{budget:.2f}"
        typer.echo(
            f"    tier {frag.tier.value} (delay budget {budget_text}"
            f"{', Q4 tightened' if frag.flags.q4_tightened else ''}) -> "
            f"priority {frag.priority_score} {frag.urgency_level.value}: {frag.action}"
        )

    summary = score.summary
    typer.echo(
        f"  summary: worst tier {summary.worst_tier.value}, "
        f"highest priority {summary.highest_priority_score}"
    )


if __name__ == "__main__":
    app()
