"""Tests for workflow parameters and write-once tables."""

import pytest

from alphafeaturelink.config import ReconciliationParams
from alphafeaturelink.constants import DEFAULT_NEGATIVE_ADDUCTS
from alphafeaturelink.exceptions import DuplicateAssignmentError
from alphafeaturelink.models import Polarity
from alphafeaturelink.tables import IdSequence, WriteOnceTable


class TestReconciliationParams:
    """Test presets, validation and tool rendering."""

    def test_defaults_are_valid(self):
        params = ReconciliationParams().validate()

        assert params.min_linked_samples == 3
        assert params.max_charge == 3
        assert params.adducts[0] == "H:+:0.9"

    def test_negative_preset(self):
        params = ReconciliationParams.for_polarity(Polarity.NEGATIVE, max_charge=2)

        assert params.adducts == list(DEFAULT_NEGATIVE_ADDUCTS)
        assert params.max_charge == 2

    @pytest.mark.parametrize("overrides", [
        {"mass_tolerance_ppm": 0.1},
        {"mass_tolerance_ppm": 150.0},
        {"noise_threshold": -1.0},
        {"min_linked_samples": 0},
        {"max_charge": 0},
        {"adducts": []},
        {"decharge_mass_max_diff": 0.0},
        {"rt_threshold_min": 0.0},
        {"spectrum_batch_size": 0},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ReconciliationParams(**overrides).validate()

    def test_tool_parameters_rt_in_seconds(self):
        rendered = ReconciliationParams(rt_threshold_min=0.5, mass_tolerance_ppm=5.0,
                                        noise_threshold=1000.0).to_tool_parameters()

        assert rendered["rt_max_difference"] == "30"
        assert rendered["mass_error_ppm"] == "5"
        assert rendered["noise_threshold_int"] == "1000"


class TestTables:

    def test_write_once(self):
        table = WriteOnceTable("charges")
        table["a"] = 1

        with pytest.raises(DuplicateAssignmentError) as excinfo:
            table["a"] = 2
        assert table["a"] == 1
        assert "charges" in str(excinfo.value)

    def test_duplicate_error_is_key_error(self):
        table = WriteOnceTable("t")
        table[1] = 1
        with pytest.raises(KeyError):
            table[1] = 1

    def test_mapping_behaviour(self):
        table = WriteOnceTable("t")
        table[2] = "b"
        table[1] = "a"

        assert len(table) == 2
        assert dict(table) == {2: "b", 1: "a"}
        assert table.get(3) is None

    def test_id_sequence(self):
        ids = IdSequence()
        assert [ids.next_id() for _ in range(3)] == [1, 2, 3]
        assert IdSequence(start=10).next_id() == 10
