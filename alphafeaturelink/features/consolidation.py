"""Cross-sample consolidation of ions and comparison with control samples.

Component peaks carry the consensus centroid (m/z, RT) of the feature they
come from, so that the same compound has identical coordinates in every
sample. Control comparison classifies each ion relative to the matching ion
of its file's control (reference) sample.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from ..constants import UNKNOWN_ADDUCT
from ..exceptions import IdentityMappingError
from ..models import ConsensusMap, FeatureIon, FeatureKey
from .identity import IdentityMapper


class Centroid(NamedTuple):
    mass: float
    rt: float


@dataclass
class ComponentPeak:
    """One ion placed at its consensus centroid."""
    ion_id: int
    file_id: int
    mass: float
    retention_time: float
    area: float
    ion_description: str = UNKNOWN_ADDUCT


@dataclass(frozen=True)
class InputFileInfo:
    """Control assignment of an input file."""
    file_id: int
    is_reference: bool = False
    reference_file_id: Optional[int] = None

    @property
    def has_reference(self) -> bool:
        return self.reference_file_id is not None


class InControlStatus(Enum):
    NOT_IN_CONTROL_SELF = "NotInControlSelf"
    IN_CONTROL_SELF = "InControlSelf"
    NO_CONTROL_ASSIGNED = "NoControlAssigned"
    NOT_IN_CONTROL = "NotInControl"
    IN_CONTROL = "InControl"
    OUTSIDE = "Outside"


def build_centroid_index(
    consensus_map: ConsensusMap,
    mapper: IdentityMapper,
) -> Dict[FeatureKey, Centroid]:
    """FeatureKey -> centroid of the consensus element containing it.

    Feature ids repeat across files, so handles are resolved to their
    sample file through the identity table.
    """
    index = {}
    for element in consensus_map.elements:
        centroid = Centroid(element.mz, element.rt)
        for handle in element.handles:
            index[mapper.feature_key(handle)] = centroid
    return index


def retrieve_component_peaks(
    ions: Sequence[FeatureIon],
    centroids: Dict[FeatureKey, Centroid],
) -> List[ComponentPeak]:
    """One ComponentPeak per ion, at the consensus centroid of its feature.

    Raises
    ------
    IdentityMappingError
        If an ion's feature is missing from the consensus map
    """
    peaks = []
    for ion in ions:
        centroid = centroids.get(ion.key)
        if centroid is None:
            raise IdentityMappingError(
                f"Feature {ion.feature_id} of file {ion.file_id} is not in the consensus map"
            )
        peaks.append(ComponentPeak(
            ion_id=ion.ion_id,
            file_id=ion.file_id,
            mass=centroid.mass,
            retention_time=centroid.rt,
            area=ion.area,
        ))
    return peaks


def compare_to_control(
    items: Sequence[FeatureIon],
    input_files: Sequence[InputFileInfo],
    mass_tolerance_ppm: float,
    sample_to_control_max_fold: float = 0.0,
    control_to_sample_max_fold: float = 0.0,
) -> Dict[int, Tuple[InControlStatus, Optional[float]]]:
    """Classify ions against the matching ion of their control file.

    Ions are matched by molecular weight within the ppm tolerance. The
    ratio is sample area / control area. A max fold of 0 disables that
    direction of the check.

    Returns:
        ion_id -> (status, ratio or None)
    """
    files = {f.file_id: f for f in input_files}
    controls = [item for item in items if files[item.file_id].is_reference]

    results = {}
    for item in items:
        info = files[item.file_id]

        if info.is_reference:
            status = (InControlStatus.NOT_IN_CONTROL_SELF if item.area == 0
                      else InControlStatus.IN_CONTROL_SELF)
            results[item.ion_id] = (status, None)
            continue

        if not info.has_reference:
            results[item.ion_id] = (InControlStatus.NO_CONTROL_ASSIGNED, None)
            continue

        max_delta = item.molecular_weight * mass_tolerance_ppm * 1e-6
        control = next(
            (c for c in controls
             if c.file_id == info.reference_file_id
             and abs(c.molecular_weight - item.molecular_weight) <= max_delta),
            None,
        )
        if control is None or control.area == 0:
            results[item.ion_id] = (InControlStatus.NOT_IN_CONTROL, None)
            continue

        ratio = item.area / control.area
        inverse = 1.0 / ratio if ratio > 0 else math.inf
        in_control = (
            (sample_to_control_max_fold == 0 or ratio <= sample_to_control_max_fold)
            and (control_to_sample_max_fold == 0 or inverse <= control_to_sample_max_fold)
        )
        status = InControlStatus.IN_CONTROL if in_control else InControlStatus.OUTSIDE
        results[item.ion_id] = (status, ratio)

    return results
