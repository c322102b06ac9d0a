from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from adherence_calculators.pdc_fragility_calculator.models import (
    DispenseInput,
    FillRecord,
    MeasurementPeriod,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import (
    DEFAULT_TABLE_VERSION,
    load_scoring_tables,
)

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = frozenset({"completed"})


def parse_fill_date(value: Any) -> date | None:
    """Parse a date, datetime or ISO-8601 string; return None if it is not a usable date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def parse_days_supply(value: Any, default: int) -> int | None:
    """Read a days-supply quantity.

    Missing, zero or negative quantities fall back to `default`.
    Returns None when the value is present but is not a whole number.
    """
    if value is None or isinstance(value, bool):
        return default if value is None else None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                return None

    if isinstance(value, float):
        if math.isnan(value):
            return default
        if not value.is_integer():
            return None
        value = int(value)

    if not isinstance(value, int):
        return None
    if value <= 0:
        return default
    return value


def coerce_dispense(record: DispenseInput | Mapping[str, Any]) -> DispenseInput:
    """Accept a DispenseInput or a plain mapping (e.g. a DataFrame row)."""
    if isinstance(record, DispenseInput):
        return record
    status = record.get("status")
    rxnorm_code = record.get("rxnorm_code")
    display = record.get("medication_display")
    return DispenseInput(
        fill_date=record.get("fill_date"),
        days_supply=record.get("days_supply"),
        status=str(status) if status is not None else None,
        rxnorm_code=str(rxnorm_code).strip() if rxnorm_code is not None else None,
        medication_display=str(display) if display is not None else None,
    )


def normalize_fills(
    records: Iterable[DispenseInput | Mapping[str, Any]],
    period: MeasurementPeriod,
    *,
    default_days_supply: int | None = None,
    table_version: str = DEFAULT_TABLE_VERSION,
) -> tuple[list[FillRecord], dict[str, Any]]:
    """
    Convert raw dispense records into FillRecords for one measurement period.

    Only completed dispenses dated inside the period survive. Reversed or
    cancelled dispenses are dropped outright, never counted as negative coverage.
    Output is sorted by fill date; same-day fills keep their input order.
    """
    if default_days_supply is None:
        default_days_supply = load_scoring_tables(table_version).pdc.default_days_supply

    fills: list[FillRecord] = []
    skip_reasons = {"status": 0, "invalid_date": 0, "out_of_period": 0, "invalid_supply": 0}
    defaulted_supply = 0

    for index, raw in enumerate(records):
        dispense = coerce_dispense(raw)

        status = (dispense.status or "").strip().lower()
        if status not in COMPLETED_STATUSES:
            skip_reasons["status"] += 1
            logger.debug("Dropping dispense %d: status=%r", index, dispense.status)
            continue

        fill_date = parse_fill_date(dispense.fill_date)
        if fill_date is None:
            skip_reasons["invalid_date"] += 1
            logger.debug("Dropping dispense %d: fill_date=%r", index, dispense.fill_date)
            continue

        if fill_date < period.start or fill_date > period.end:
            skip_reasons["out_of_period"] += 1
            logger.debug("Dropping dispense %d: %s outside period", index, fill_date)
            continue

        # default=0 marks missing/non-positive quantities
        days_supply = parse_days_supply(dispense.days_supply, default=0)
        if days_supply is None:
            skip_reasons["invalid_supply"] += 1
            logger.debug("Dropping dispense %d: days_supply=%r", index, dispense.days_supply)
            continue
        if days_supply == 0:
            days_supply = default_days_supply
            defaulted_supply += 1

        fills.append(
            FillRecord(
                fill_date=fill_date,
                days_supply=days_supply,
                rxnorm_code=dispense.rxnorm_code,
                medication_display=dispense.medication_display,
            )
        )

    # list.sort is stable, so same-day fills stay in input order
    fills.sort(key=lambda fill: fill.fill_date)

    stats = {
        "kept": len(fills),
        "skipped": sum(skip_reasons.values()),
        "skip_reasons": skip_reasons,
        "defaulted_supply": defaulted_supply,
    }
    return fills, stats


def has_sufficient_fills(fills: list[FillRecord], minimum: int) -> bool:
    """Whether there are enough fills to score; the minimum comes from the scoring tables."""
    return len(fills) >= minimum
