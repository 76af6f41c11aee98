"""Tests for adduct handling and the decharging schedule.

Tests:
- Adduct definition parsing, multi-charge expansion and masses
- Effective minimum linked-sample threshold
- Increasing charge bounds with re-fed output and first-wins locking
- Reference pair decharger (pairing, greedy priors, defaults)
- Connected adduct groups and adduct counts
"""

import unittest
from dataclasses import replace

import pytest

from alphafeaturelink.config import ReconciliationParams
from alphafeaturelink.constants import DEFAULT_NEGATIVE_ADDUCTS, ELEMENT_MASSES, PROTON_MASS
from alphafeaturelink.features.adducts import (
    best_adduct_for_charge,
    build_adduct_table,
    expand_adducts,
    formula_mass,
    molecular_weight,
    parse_adduct,
)
from alphafeaturelink.features.decharging import (
    AdductPairDecharger,
    build_adduct_groups,
    effective_min_samples,
    run_decharge_schedule,
    select_decharge_candidates,
)
from alphafeaturelink.models import AdductAssignment, AdductPair, ConsensusGroup, FeatureKey


def _group(consensus_id, mz, rt=5.0, n_files=1, majority=None):
    members = tuple(FeatureKey(f, str(consensus_id)) for f in range(1, n_files + 1))
    return ConsensusGroup(consensus_id=consensus_id, members=members, mz=mz, rt=rt,
                          majority_charge=majority)


NEUTRAL = 300.0
H_ADDUCT = parse_adduct("H:+:0.9")
NA_ADDUCT = parse_adduct("Na:+:0.05")
MZ_H = H_ADDUCT.mz(NEUTRAL)
MZ_NA = NA_ADDUCT.mz(NEUTRAL)


class TestAdducts:
    """Test adduct parsing and mass calculations."""

    def test_protonation_mass_is_proton(self):
        assert H_ADDUCT.mass == pytest.approx(PROTON_MASS, abs=1e-7)
        assert H_ADDUCT.charge == 1
        assert H_ADDUCT.label == "H+"

    def test_deprotonation(self):
        adduct = parse_adduct("H-1:-:0.9")

        assert adduct.charge == -1
        assert adduct.label == "H-1-"
        assert adduct.mass == pytest.approx(-PROTON_MASS, abs=1e-7)
        assert adduct.neutral_mass(299.0) == pytest.approx(299.0 + PROTON_MASS, abs=1e-6)

    def test_formula_mass(self):
        expected = ELEMENT_MASSES['N'] + 4 * ELEMENT_MASSES['H']
        assert formula_mass("NH4") == pytest.approx(expected)
        assert formula_mass("CH2O2") == pytest.approx(
            ELEMENT_MASSES['C'] + 2 * ELEMENT_MASSES['H'] + 2 * ELEMENT_MASSES['O'])

    def test_formate_adduct(self):
        formate = parse_adduct("CHO2:-:0.05")

        assert formate.charge == -1
        assert formate.mz(300.0) == pytest.approx(344.99820, abs=1e-4)
        assert "CHO2:-:0.05" in DEFAULT_NEGATIVE_ADDUCTS

    @pytest.mark.parametrize("text", ["H:+", "Xx:+:0.5", "H:+-:0.5", "H:+:0", "H:+:1.5", "h2:+:0.5"])
    def test_invalid_definitions(self, text):
        with pytest.raises(ValueError):
            parse_adduct(text)

    def test_mz_neutral_mass_inverse(self):
        assert NA_ADDUCT.neutral_mass(MZ_NA) == pytest.approx(NEUTRAL)

    def test_expansion_to_multiple_charges(self):
        adducts = expand_adducts(["H:+:0.9", "Na:+:0.05"], max_charge=2)
        labels = [a.label for a in adducts]

        assert labels == ["H+", "Na+", "2H++", "2Na++"]
        double = adducts[2]
        assert double.charge == 2
        assert double.prior == pytest.approx(0.81)
        assert double.mass == pytest.approx(2 * H_ADDUCT.mass)

    def test_expansion_respects_bound(self):
        adducts = expand_adducts(["H:+:0.9", "Na:+:0.05"], max_charge=1)
        assert all(abs(a.charge) == 1 for a in adducts)

    def test_best_adduct_for_charge(self):
        adducts = expand_adducts(["Na:+:0.05", "H:+:0.9"], max_charge=3)

        assert best_adduct_for_charge(adducts, 1).label == "H+"
        assert best_adduct_for_charge(adducts, 3).label == "3H+++"
        assert best_adduct_for_charge(adducts, 4) is None

    def test_molecular_weight(self):
        table = build_adduct_table(["H:+:0.9", "Na:+:0.05"], max_charge=2)

        assert molecular_weight(MZ_NA, 1, table["Na+"]) == pytest.approx(NEUTRAL)
        # Without adduct: |z| * m/z - z * proton
        assert molecular_weight(MZ_H, 1) == pytest.approx(NEUTRAL, abs=1e-6)
        assert molecular_weight(150.0, -2) == pytest.approx(300.0 + 2 * PROTON_MASS)


class TestCandidateThreshold:
    """Test the minimum linked-sample filter."""

    def test_threshold_capped_at_file_count(self):
        assert effective_min_samples(3, 1) == 1
        assert effective_min_samples(3, 2) == 2
        assert effective_min_samples(3, 10) == 3
        assert effective_min_samples(0, 4) == 1

    def test_select_candidates(self):
        groups = [_group(1, 200.0, n_files=1), _group(2, 300.0, n_files=2),
                  _group(3, 400.0, n_files=3)]

        selected = select_decharge_candidates(groups, min_linked_samples=3, n_files=3)
        assert [g.consensus_id for g in selected] == [3]

        selected = select_decharge_candidates(groups, min_linked_samples=3, n_files=1)
        assert len(selected) == 3


class TestDechargeSchedule(unittest.TestCase):
    """Test the increasing charge bound loop."""

    def test_output_is_refed_and_first_assignment_wins(self):
        calls = []

        def fake_decharge(groups, bound):
            calls.append((bound, {g.consensus_id: g.adduct for g in groups}))
            out = []
            for g in groups:
                if g.consensus_id == bound:
                    g = replace(g, adduct=f"X{bound}", adduct_charge=bound)
                elif g.consensus_id == 1 and bound == 2:
                    # Attempt to relabel an already locked group
                    g = replace(g, adduct="changed", adduct_charge=5)
                out.append(g)
            return out, []

        groups = [_group(1, 200.0), _group(2, 300.0), _group(3, 400.0)]
        outcome = run_decharge_schedule(groups, fake_decharge, max_charge=3,
                                        min_linked_samples=3, n_files=1)

        self.assertEqual([c[0] for c in calls], [1, 2, 3])
        # Second pass sees the annotations of the first
        self.assertEqual(calls[1][1][1], "X1")
        self.assertEqual(outcome.iterations, 3)
        self.assertEqual(outcome.assignments[1], AdductAssignment(1, 1, "X1", 1))
        self.assertEqual(outcome.assignments[2].iteration, 2)
        self.assertEqual(outcome.assignments[3].charge, 3)

    def test_no_candidates_skips_decharging(self):
        calls = []

        def fake_decharge(groups, bound):
            calls.append(bound)
            return groups, []

        groups = [_group(1, 200.0, n_files=1)]
        outcome = run_decharge_schedule(groups, fake_decharge, max_charge=3,
                                        min_linked_samples=3, n_files=3)

        self.assertEqual(calls, [])
        self.assertEqual(len(outcome.assignments), 0)
        self.assertEqual(outcome.groups, [])

    def test_charge_one_locked_before_higher_charges(self):
        params = ReconciliationParams(adducts=["H:+:0.9", "Na:+:0.05"])
        groups = [
            _group(1, MZ_H),
            _group(2, MZ_NA),
            _group(3, 250.0, rt=9.0, majority=2),
        ]
        outcome = run_decharge_schedule(groups, AdductPairDecharger(params), max_charge=3,
                                        min_linked_samples=3, n_files=1)

        self.assertEqual(outcome.assignments[1].adduct, "H+")
        self.assertEqual(outcome.assignments[2].adduct, "Na+")
        self.assertEqual(outcome.assignments[1].iteration, 1)
        # Known charge 2 only fits from the second bound on
        self.assertEqual(outcome.assignments[3].adduct, "2H++")
        self.assertEqual(outcome.assignments[3].charge, 2)
        self.assertEqual(outcome.assignments[3].iteration, 2)

        self.assertEqual(len(outcome.pairs), 1)
        by_consensus = {cid: g.group_id for g in outcome.groups for cid in g.consensus_ids}
        self.assertEqual(by_consensus[1], by_consensus[2])
        self.assertNotEqual(by_consensus[1], by_consensus[3])


class TestAdductPairDecharger:
    """Test the reference decharger."""

    def setup_method(self):
        self.params = ReconciliationParams(adducts=["H:+:0.9", "Na:+:0.05"],
                                           decharge_mass_max_diff=0.001,
                                           decharge_rt_max_diff=0.33)
        self.decharger = AdductPairDecharger(self.params)

    def test_pairs_coeluting_adducts(self):
        groups, pairs = self.decharger([_group(1, MZ_H), _group(2, MZ_NA, rt=5.1)], 1)

        assert [g.adduct for g in groups] == ["H+", "Na+"]
        assert [g.adduct_charge for g in groups] == [1, 1]
        assert len(pairs) == 1
        assert pairs[0].key == (1, 2)
        assert pairs[0].neutral_mass == pytest.approx(NEUTRAL, abs=1e-3)

    def test_higher_prior_pair_wins(self):
        # At bound 2 the 2H++/2Na++ explanation also fits, with lower priors
        groups, pairs = self.decharger([_group(1, MZ_H), _group(2, MZ_NA)], 2)

        assert [g.adduct for g in groups] == ["H+", "Na+"]
        assert len(pairs) == 1

    def test_no_pair_outside_rt_window(self):
        groups, pairs = self.decharger([_group(1, MZ_H), _group(2, MZ_NA, rt=6.0)], 1)

        assert pairs == []
        # Unpaired groups fall back to the most likely charge-1 adduct
        assert [g.adduct for g in groups] == ["H+", "H+"]

    def test_no_pair_outside_mass_window(self):
        groups, pairs = self.decharger([_group(1, MZ_H), _group(2, MZ_NA + 0.005)], 1)
        assert pairs == []

    def test_known_charge_restricts_adducts(self):
        groups, pairs = self.decharger([_group(1, MZ_H, majority=2), _group(2, MZ_NA)], 1)

        assert pairs == []
        assert groups[0].adduct is None  # charge 2 does not fit bound 1
        assert groups[1].adduct == "H+"

    def test_locked_group_is_kept_and_pairs(self):
        locked = replace(_group(1, MZ_H), adduct="H+", adduct_charge=1)
        groups, pairs = self.decharger([locked, _group(2, MZ_NA)], 1)

        assert groups[0] is locked
        assert groups[1].adduct == "Na+"
        assert len(pairs) == 1

    def test_two_locked_groups_do_not_pair(self):
        a = replace(_group(1, MZ_H), adduct="H+", adduct_charge=1)
        b = replace(_group(2, MZ_NA), adduct="Na+", adduct_charge=1)
        groups, pairs = self.decharger([a, b], 1)

        assert pairs == []
        assert groups == [a, b]

    def test_single_group_gets_protonation(self):
        groups, pairs = self.decharger([_group(1, 181.0707)], 1)

        assert groups[0].adduct == "H+"
        assert groups[0].adduct_charge == 1
        assert pairs == []


class TestBuildAdductGroups:
    """Test connected components over adduct pairs."""

    def test_components_and_adduct_counts(self):
        assignments = {
            1: AdductAssignment(1, 1, "H+"),
            2: AdductAssignment(2, 1, "Na+"),
            3: AdductAssignment(3, 1, "K+"),
            4: AdductAssignment(4, 1, "H+"),
        }
        pairs = [
            AdductPair(1, 2, "H+", "Na+"),
            AdductPair(2, 3, "Na+", "K+"),
            AdductPair(9, 4, "Na+", "H+"),  # partner was never decharged
        ]
        groups = build_adduct_groups(assignments, pairs)

        assert [g.consensus_ids for g in groups] == [[1, 2, 3], [4]]
        assert groups[0].adduct_count == 2
        assert groups[1].adduct_count == 0
