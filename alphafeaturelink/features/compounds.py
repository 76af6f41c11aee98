"""Group resolved ions into compounds.

One Compound per decharged adduct group: every FeatureIon whose consensus
group belongs to the adduct group is attached. Ions of groups that were not
decharged stay standalone.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

import numpy as np

from ..models import Compound, DechargedAdductGroup, FeatureIon
from ..tables import IdSequence

logger = logging.getLogger(__name__)


class CompoundGrouper:
    """Build Compound records from decharged adduct groups."""

    def __init__(self):
        self._compound_ids = IdSequence()

    def group(
        self,
        ions: Sequence[FeatureIon],
        adduct_groups: Sequence[DechargedAdductGroup],
    ) -> Tuple[List[Compound], List[int]]:
        """Attach ions to compounds.

        Args:
            ions: All FeatureIons of the run
            adduct_groups: Decharged adduct groups

        Returns:
            (compounds, standalone ion ids)
        """
        ions_by_consensus: Dict[int, List[FeatureIon]] = defaultdict(list)
        for ion in ions:
            if ion.consensus_id is not None:
                ions_by_consensus[ion.consensus_id].append(ion)

        compounds = []
        attached = set()

        for adduct_group in adduct_groups:
            members = [
                ion
                for cid in adduct_group.consensus_ids
                for ion in ions_by_consensus.get(cid, [])
            ]
            if not members:
                # All features of the group were malformed
                logger.debug(f"Adduct group {adduct_group.group_id} has no ions")
                continue

            compounds.append(self._make_compound(adduct_group, members))
            attached.update(ion.ion_id for ion in members)

        standalone = [ion.ion_id for ion in ions if ion.ion_id not in attached]
        logger.info(
            f"✓ Grouped {len(attached)} ions into {len(compounds)} compounds, "
            f"{len(standalone)} standalone ions"
        )
        return compounds, standalone

    def _make_compound(
        self,
        adduct_group: DechargedAdductGroup,
        members: List[FeatureIon],
    ) -> Compound:
        return Compound(
            compound_id=self._compound_ids.next_id(),
            group_id=adduct_group.group_id,
            ion_ids=[ion.ion_id for ion in members],
            molecular_weight=float(np.mean([ion.molecular_weight for ion in members])),
            mass=float(np.mean([ion.mass for ion in members])),
            retention_time=float(np.mean([ion.retention_time for ion in members])),
            area=float(sum(ion.area for ion in members)),
            adduct_count=adduct_group.adduct_count,
            file_ids=sorted({ion.file_id for ion in members}),
        )
