"""Three-tier charge and adduct resolution.

Every detector feature receives exactly one (charge, adduct) pair, merged
from an ordered list of optional evidence:

    SELF       the charge reported by the feature detector (may be 0)
    CONSENSUS  the majority charge of the feature's consensus group
    DECHARGED  charge and adduct assigned to the group by decharging

Later tiers override earlier ones only when they provide a value, and charge
and adduct always come from the same tier. A charge of 0 that survives is
stored as 0; the polarity default is applied only by effective_charge().
"""

import logging
from enum import IntEnum
from typing import Iterable, List, Mapping, NamedTuple, Optional, Tuple

from ..constants import UNKNOWN_ADDUCT
from ..models import AdductAssignment, ConsensusGroup, FeatureKey, Polarity, RawFeature
from ..tables import WriteOnceTable

logger = logging.getLogger(__name__)


class EvidenceTier(IntEnum):
    SELF = 0
    CONSENSUS = 1
    DECHARGED = 2


class ChargeEvidence(NamedTuple):
    """Optional evidence of one tier; charge None means absent."""
    tier: EvidenceTier
    charge: Optional[int]
    adduct: Optional[str] = None


class ChargeAssignment(NamedTuple):
    """Final charge and adduct of a feature, with the tier that decided it."""
    charge: int
    adduct: str
    tier: EvidenceTier

    def effective_charge(self, polarity: Polarity) -> int:
        """Signed charge for mass calculations; 0 resolves to the polarity default."""
        if self.charge == 0:
            return polarity.default_charge
        return polarity.sign * abs(self.charge)


def merge_evidence(evidence: Iterable[ChargeEvidence]) -> ChargeAssignment:
    """Last non-absent evidence wins, in tier order.

    Examples
    --------
    >>> merge_evidence([
    ...     ChargeEvidence(EvidenceTier.SELF, 0),
    ...     ChargeEvidence(EvidenceTier.CONSENSUS, 2),
    ...     ChargeEvidence(EvidenceTier.DECHARGED, None),
    ... ])
    ChargeAssignment(charge=2, adduct='unknown', tier=<EvidenceTier.CONSENSUS: 1>)
    """
    result = None
    for item in sorted(evidence, key=lambda e: e.tier):
        if item.charge is None:
            continue
        result = ChargeAssignment(
            charge=item.charge,
            adduct=item.adduct if item.adduct is not None else UNKNOWN_ADDUCT,
            tier=item.tier,
        )
    if result is None:
        raise ValueError("No charge evidence given")
    return result


class ChargeResolutionCascade:
    """Resolve the final charge and adduct of every detector feature.

    Parameters
    ----------
    groups_by_feature : Mapping[FeatureKey, ConsensusGroup]
        Consensus group of each feature (singleton groups included)
    decharged : Mapping[int, AdductAssignment]
        Decharging result keyed by consensus id
    """

    def __init__(
        self,
        groups_by_feature: Mapping[FeatureKey, ConsensusGroup],
        decharged: Mapping[int, AdductAssignment],
    ):
        self.groups_by_feature = groups_by_feature
        self.decharged = decharged

    def evidence(self, key: FeatureKey, reported_charge: int) -> List[ChargeEvidence]:
        group = self.groups_by_feature.get(key)

        majority = None
        assignment = None
        if group is not None:
            # A majority charge of 0 means the linker found no dominant charge
            if group.majority_charge:
                majority = group.majority_charge
            assignment = self.decharged.get(group.consensus_id)

        return [
            ChargeEvidence(EvidenceTier.SELF, reported_charge),
            ChargeEvidence(EvidenceTier.CONSENSUS, majority),
            ChargeEvidence(
                EvidenceTier.DECHARGED,
                assignment.charge if assignment is not None else None,
                assignment.adduct if assignment is not None else None,
            ),
        ]

    def resolve(self, key: FeatureKey, reported_charge: int) -> ChargeAssignment:
        return merge_evidence(self.evidence(key, reported_charge))

    def resolve_all(
        self,
        features: Iterable[Tuple[int, RawFeature]],
    ) -> WriteOnceTable:
        """Resolve every (file_id, feature) pair.

        Returns
        -------
        WriteOnceTable
            FeatureKey -> ChargeAssignment
        """
        table = WriteOnceTable("charge assignments")
        counts = {tier: 0 for tier in EvidenceTier}

        for file_id, feature in features:
            key = FeatureKey(file_id, feature.feature_id)
            assignment = self.resolve(key, feature.charge)
            table[key] = assignment
            counts[assignment.tier] += 1

        logger.info(
            f"✓ Resolved charges of {len(table)} features "
            f"(self: {counts[EvidenceTier.SELF]}, "
            f"consensus: {counts[EvidenceTier.CONSENSUS]}, "
            f"decharged: {counts[EvidenceTier.DECHARGED]})"
        )
        return table
