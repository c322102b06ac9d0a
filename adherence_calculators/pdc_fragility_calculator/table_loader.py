"""Load versioned scoring tables.

Tables live next to this module:
    tables/scoring_<version>.yaml

Each file holds the PDC thresholds, delay budget tier bounds, Q4 tightening
thresholds, priority base scores and bonuses, urgency thresholds, tier
contact windows/actions, and the RxNorm code lists used to classify
dispenses into adherence measures.
"""

from pathlib import Path

import yaml

from adherence_calculators.pdc_fragility_calculator.models import MAMeasure, ScoringTables

# Base directory for scoring tables
DATA_DIR = Path(__file__).parent / "tables"

DEFAULT_TABLE_VERSION = "v3"

# Cache loaded tables
_CACHE: dict[str, ScoringTables] = {}


def _get_table_path(version: str) -> Path:
    """Get the YAML file for a table version."""
    table_path = DATA_DIR / f"scoring_{version}.yaml"
    if not table_path.exists():
        raise FileNotFoundError(
            f"Scoring tables not found for version {version}. Expected file: {table_path}"
        )
    return table_path


def load_scoring_tables(version: str = DEFAULT_TABLE_VERSION) -> ScoringTables:
    """Load and validate the scoring tables for a version.

    Args:
        version: Table version (e.g., "v3")

    Returns:
        Validated ScoringTables (cached after first load)
    """
    if version in _CACHE:
        return _CACHE[version]

    with _get_table_path(version).open(encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    tables = ScoringTables.model_validate(raw)
    if tables.version != version:
        raise ValueError(
            f"scoring_{version}.yaml declares version {tables.version!r}, expected {version!r}"
        )

    _CACHE[version] = tables
    return tables


def load_rxnorm_to_measure(version: str = DEFAULT_TABLE_VERSION) -> dict[str, MAMeasure]:
    """Invert the measure code lists into an RxNorm code -> measure lookup.

    Args:
        version: Table version (e.g., "v3")

    Returns:
        Dictionary mapping RxNorm codes to the measure they count toward.
        A code listed under several measures keeps the first one (MAC, MAD, MAH order).
    """
    tables = load_scoring_tables(version)
    lookup: dict[str, MAMeasure] = {}
    for measure in MAMeasure:
        for code in tables.measure_rxnorm_codes.get(measure, []):
            lookup.setdefault(str(code).strip(), measure)
    return lookup
