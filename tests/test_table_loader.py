"""Tests for scoring table loading."""

import pytest

from adherence_calculators.pdc_fragility_calculator.models import (
    FragilityTier,
    MAMeasure,
    UrgencyLevel,
)
from adherence_calculators.pdc_fragility_calculator.table_loader import (
    load_rxnorm_to_measure,
    load_scoring_tables,
)


class TestScoringTables:
    def test_v3_constants(self):
        tables = load_scoring_tables("v3")

        assert tables.version == "v3"
        assert tables.pdc.target == 80
        assert tables.pdc.gap_allowance == 0.20
        assert tables.pdc.min_qualifying_fills == 2
        assert tables.delay_budget_max[FragilityTier.F1_IMMINENT] == 2
        assert tables.delay_budget_max[FragilityTier.F4_COMFORTABLE] == 20
        assert tables.priority_base[FragilityTier.F1_IMMINENT] == 100
        assert tables.priority_base[FragilityTier.T5_UNSALVAGEABLE] == 0
        assert tables.urgency_min_score[UrgencyLevel.EXTREME] == 150

    def test_every_tier_has_metadata(self):
        tables = load_scoring_tables("v3")
        for tier in FragilityTier:
            assert tier in tables.priority_base
            assert tier in tables.tier_level
            assert tier in tables.contact_window
            assert tier in tables.action

    def test_tables_are_cached(self):
        assert load_scoring_tables("v3") is load_scoring_tables("v3")

    def test_unknown_version(self):
        with pytest.raises(FileNotFoundError):
            load_scoring_tables("v0")


class TestRxNormLookup:
    @pytest.mark.parametrize(
        "code,measure",
        [
            ("83367", MAMeasure.MAC),  # atorvastatin
            ("6809", MAMeasure.MAD),  # metformin
            ("310965", MAMeasure.MAH),  # lisinopril
        ],
    )
    def test_known_codes(self, code, measure):
        assert load_rxnorm_to_measure("v3")[code] == measure

    def test_unknown_code(self):
        assert "999999" not in load_rxnorm_to_measure("v3")
