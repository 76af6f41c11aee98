"""Decharging of consensus groups.

Decharging infers the charge and adduct of a consensus group by matching
groups that co-elute and whose observed m/z values are explained by one
neutral mass carrying different adducts.

Two pieces live here:

- run_decharge_schedule: the refinement loop. Candidate groups (linked in
  enough files) are decharged with charge bounds 1, 2, ..., max_charge; each
  pass receives the previous pass's output, so singly charged solutions are
  locked in first and only unresolved groups reach higher charge search.
- AdductPairDecharger: a reference decharger implementing the
  ``decharge(groups, max_charge) -> (groups, pairs)`` interface for hosts
  without an external decharging tool.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
from numba import njit

from ..config import ReconciliationParams
from ..models import AdductAssignment, AdductPair, ConsensusGroup, DechargedAdductGroup
from ..tables import WriteOnceTable
from .adducts import Adduct, best_adduct_for_charge, expand_adducts

logger = logging.getLogger(__name__)

DechargeFunction = Callable[
    [List[ConsensusGroup], int],
    Tuple[List[ConsensusGroup], List[AdductPair]],
]


def effective_min_samples(min_linked_samples: int, n_files: int) -> int:
    """Minimum number of linked files for a group to be decharged.

    Capped at the number of input files, so a single-file run still
    decharges with a threshold of 1.
    """
    return max(1, min(min_linked_samples, n_files))


def select_decharge_candidates(
    groups: Sequence[ConsensusGroup],
    min_linked_samples: int,
    n_files: int,
) -> List[ConsensusGroup]:
    threshold = effective_min_samples(min_linked_samples, n_files)
    return [g for g in groups if g.file_count >= threshold]


@dataclass
class DechargeOutcome:
    """Accumulated result of all decharging passes."""
    assignments: WriteOnceTable
    pairs: List[AdductPair] = field(default_factory=list)
    groups: List[DechargedAdductGroup] = field(default_factory=list)
    iterations: int = 0


def run_decharge_schedule(
    groups: Sequence[ConsensusGroup],
    decharge: DechargeFunction,
    max_charge: int,
    min_linked_samples: int,
    n_files: int,
) -> DechargeOutcome:
    """Run decharging with increasing charge bounds.

    The first assignment of a consensus group wins; later passes cannot
    change it.

    Args:
        groups: All consensus groups of the run
        decharge: Decharging function (external tool adapter or
            AdductPairDecharger)
        max_charge: Highest charge bound
        min_linked_samples: Configured minimum number of linked files
        n_files: Number of input files

    Returns:
        DechargeOutcome with per-group assignments, pairs and the connected
        DechargedAdductGroups
    """
    outcome = DechargeOutcome(assignments=WriteOnceTable("decharge assignments"))

    current = select_decharge_candidates(groups, min_linked_samples, n_files)
    threshold = effective_min_samples(min_linked_samples, n_files)
    logger.info(
        f"Decharging {len(current)} of {len(groups)} consensus groups "
        f"(linked in >= {threshold} files)"
    )
    if not current:
        return outcome

    seen_pairs = set()
    for bound in range(1, max_charge + 1):
        current, pairs = decharge(list(current), bound)
        outcome.iterations = bound

        new = 0
        for group in current:
            if not group.is_decharged or group.consensus_id in outcome.assignments:
                continue
            outcome.assignments[group.consensus_id] = AdductAssignment(
                consensus_id=group.consensus_id,
                charge=abs(group.adduct_charge or 0),
                adduct=group.adduct,
                iteration=bound,
            )
            new += 1

        for pair in pairs:
            if pair.key not in seen_pairs:
                seen_pairs.add(pair.key)
                outcome.pairs.append(pair)

        logger.info(f"  Charge bound {bound}: {new} groups decharged, {len(pairs)} adduct pairs")

    outcome.groups = build_adduct_groups(outcome.assignments, outcome.pairs)
    logger.info(
        f"✓ Decharged {len(outcome.assignments)} consensus groups "
        f"into {len(outcome.groups)} adduct groups"
    )
    return outcome


def build_adduct_groups(
    assignments: WriteOnceTable,
    pairs: Sequence[AdductPair],
) -> List[DechargedAdductGroup]:
    """Connected components of decharged groups over adduct pairs.

    A decharged group without any pair forms a component of its own.
    Pairs touching an undecharged group are ignored.
    """
    connections = defaultdict(set)
    kept_pairs = []
    for pair in pairs:
        a, b = pair.key
        if a in assignments and b in assignments:
            connections[a].add(b)
            connections[b].add(a)
            kept_pairs.append(pair)

    visited = set()
    components = []

    for start in sorted(assignments):
        if start in visited:
            continue

        # BFS to find all connected groups
        component = set()
        queue = [start]

        while queue:
            cid = queue.pop(0)
            if cid in visited:
                continue

            visited.add(cid)
            component.add(cid)

            for neighbor in connections[cid]:
                if neighbor not in visited:
                    queue.append(neighbor)

        components.append(sorted(component))

    result = []
    for group_id, component in enumerate(components, start=1):
        members = set(component)
        result.append(DechargedAdductGroup(
            group_id=group_id,
            assignments={cid: assignments[cid] for cid in component},
            pairs=[p for p in kept_pairs if p.consensus_id_a in members],
        ))
    return result


# =============================================================================
# Reference decharger
# =============================================================================

@njit
def binary_search_mass_window(
    masses_sorted: np.ndarray,
    target_mass: float,
    tolerance_da: float,
) -> Tuple[int, int]:
    """Index range of sorted masses within +-tolerance_da of target_mass."""
    left = np.searchsorted(masses_sorted, target_mass - tolerance_da, side='left')
    right = np.searchsorted(masses_sorted, target_mass + tolerance_da, side='right')
    return left, right


@dataclass
class _Hypothesis:
    group_index: int
    adduct: Adduct
    neutral_mass: float


class AdductPairDecharger:
    """Pairs co-eluting consensus groups explained by one neutral mass.

    For every group and compatible adduct a neutral mass hypothesis is
    formed. Two groups are paired when they co-elute within
    ``decharge_rt_max_diff`` and the m/z predicted for the second group
    from the first group's neutral mass agrees with its observed m/z within
    ``decharge_mass_max_diff``. Pairs are accepted greedily by the product
    of the adduct priors. Groups left without a pair receive the highest
    prior adduct for their known charge (1 if unknown) if that charge fits
    the current bound.

    Groups that already carry an adduct are locked: they keep it and only
    serve as pairing partners.
    """

    def __init__(self, params: ReconciliationParams):
        self.params = params

    def __call__(
        self,
        groups: List[ConsensusGroup],
        max_charge: int,
    ) -> Tuple[List[ConsensusGroup], List[AdductPair]]:
        return self.decharge(groups, max_charge)

    def decharge(
        self,
        groups: List[ConsensusGroup],
        max_charge: int,
    ) -> Tuple[List[ConsensusGroup], List[AdductPair]]:
        adducts = expand_adducts(self.params.adducts, max_charge)
        by_label = {a.label: a for a in adducts}

        hypotheses = self._hypotheses(groups, adducts, by_label)
        if not hypotheses:
            return list(groups), []

        candidates = self._candidate_pairs(groups, hypotheses)

        assigned: Dict[int, Adduct] = {
            i: by_label[g.adduct] for i, g in enumerate(groups)
            if g.is_decharged and g.adduct in by_label
        }
        locked = set(assigned)
        pairs = []

        for score, error, i, j, adduct_i, adduct_j, neutral in candidates:
            if i in locked and j in locked:
                continue
            if i in assigned and assigned[i].label != adduct_i.label:
                continue
            if j in assigned and assigned[j].label != adduct_j.label:
                continue
            assigned[i] = adduct_i
            assigned[j] = adduct_j
            pairs.append(AdductPair(
                consensus_id_a=groups[i].consensus_id,
                consensus_id_b=groups[j].consensus_id,
                adduct_a=adduct_i.label,
                adduct_b=adduct_j.label,
                neutral_mass=neutral,
                score=score,
            ))

        # Unpaired groups fall back to the most likely adduct for their charge
        for i, group in enumerate(groups):
            if i in assigned or group.is_decharged:
                continue
            charge = abs(group.majority_charge) if group.majority_charge else 1
            if charge > max_charge:
                continue
            adduct = best_adduct_for_charge(adducts, charge)
            if adduct is not None:
                assigned[i] = adduct

        result = []
        for i, group in enumerate(groups):
            if i in assigned and i not in locked:
                adduct = assigned[i]
                group = replace(group, adduct=adduct.label, adduct_charge=adduct.charge)
            result.append(group)

        logger.debug(
            f"Decharger (max charge {max_charge}): {len(candidates)} candidate pairs, "
            f"{len(pairs)} accepted, {len(assigned) - len(locked)} groups annotated"
        )
        return result, pairs

    def _hypotheses(self, groups, adducts, by_label) -> List[_Hypothesis]:
        hypotheses = []
        for i, group in enumerate(groups):
            if group.is_decharged:
                adduct = by_label.get(group.adduct)
                if adduct is not None:
                    hypotheses.append(_Hypothesis(i, adduct, adduct.neutral_mass(group.mz)))
                continue
            for adduct in adducts:
                if group.majority_charge and abs(adduct.charge) != abs(group.majority_charge):
                    continue
                hypotheses.append(_Hypothesis(i, adduct, adduct.neutral_mass(group.mz)))
        return hypotheses

    def _candidate_pairs(self, groups, hypotheses) -> List[tuple]:
        """All consistent pairs, best first."""
        order = np.argsort([h.neutral_mass for h in hypotheses], kind='stable')
        hypotheses = [hypotheses[k] for k in order]
        masses_sorted = np.array([h.neutral_mass for h in hypotheses], dtype=np.float64)

        mass_max_diff = self.params.decharge_mass_max_diff
        rt_max_diff = self.params.decharge_rt_max_diff
        max_abs_charge = max(abs(h.adduct.charge) for h in hypotheses)

        candidates = []
        for a, hyp_a in enumerate(hypotheses):
            # Neutral masses differ by at most |z| times the m/z tolerance
            left, right = binary_search_mass_window(
                masses_sorted, hyp_a.neutral_mass, mass_max_diff * max_abs_charge
            )
            for b in range(max(left, a + 1), right):
                hyp_b = hypotheses[b]
                i, j = hyp_a.group_index, hyp_b.group_index
                if i == j or hyp_a.adduct.label == hyp_b.adduct.label:
                    continue
                group_i, group_j = groups[i], groups[j]
                if group_i.is_decharged and group_j.is_decharged:
                    continue
                if abs(group_i.rt - group_j.rt) > rt_max_diff:
                    continue
                error = abs(hyp_b.adduct.mz(hyp_a.neutral_mass) - group_j.mz)
                if error > mass_max_diff:
                    continue
                first, second = (hyp_a, hyp_b) if i < j else (hyp_b, hyp_a)
                score = first.adduct.prior * second.adduct.prior
                neutral = 0.5 * (first.neutral_mass + second.neutral_mass)
                candidates.append((
                    score, error, first.group_index, second.group_index,
                    first.adduct, second.adduct, neutral,
                ))

        candidates.sort(key=lambda c: (-c[0], c[1], c[2], c[3]))
        return candidates
