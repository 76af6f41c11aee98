"""Build FeatureIon and IsotopePeak records from detector features.

Each convex hull of a feature is one isotope trace. Its chromatographic
peak gets:

- mass: arithmetic mean of the hull points' m/z
- left/right RT: min/max of the hull points' RT
- apex RT: the feature's RT
- intensity: the summed mass trace intensity reported for the hull

The ion's area is the sum of its peak intensities and its isotope count the
number of peaks. A feature lacking hulls, hull points or hull intensities is
malformed; it is logged and skipped while the rest of the file continues.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..exceptions import MalformedFeatureError
from ..models import FeatureIon, FeatureKey, IsotopePeak, RawFeature, SampleFile
from ..tables import IdSequence
from .adducts import Adduct, molecular_weight
from .charge_cascade import ChargeAssignment

logger = logging.getLogger(__name__)


@dataclass
class IonBuildResult:
    """Ions and peaks of one file."""
    file_id: int
    ions: List[FeatureIon] = field(default_factory=list)
    peaks: List[IsotopePeak] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)  # Malformed feature ids

    def peaks_by_ion(self) -> Dict[int, List[IsotopePeak]]:
        grouped: Dict[int, List[IsotopePeak]] = {ion.ion_id: [] for ion in self.ions}
        for peak in self.peaks:
            grouped[peak.ion_id].append(peak)
        return grouped


class FeatureIonBuilder:
    """Materialize one FeatureIon per detector feature.

    Ion and peak ids are unique across all files built by one instance.

    Args:
        adducts: Adduct lookup by label, used for molecular weights
    """

    def __init__(self, adducts: Optional[Mapping[str, Adduct]] = None):
        self.adducts = dict(adducts or {})
        self._ion_ids = IdSequence()
        self._peak_ids = IdSequence()

    def build_peaks(self, feature: RawFeature, ion_id: int, file_id: int) -> List[IsotopePeak]:
        """Isotope peaks of one feature, ordered by isotope index.

        Raises
        ------
        MalformedFeatureError
            If a hull, its points or its intensity is missing
        """
        if not feature.hulls:
            raise MalformedFeatureError(feature.feature_id, "no convex hulls")

        hulls = sorted(feature.hulls, key=lambda h: h.isotope_index)
        seen = set()
        peaks = []

        for hull in hulls:
            if hull.isotope_index in seen:
                raise MalformedFeatureError(
                    feature.feature_id, f"duplicate convex hull {hull.isotope_index}"
                )
            seen.add(hull.isotope_index)

            points = np.asarray(hull.points, dtype=np.float64)
            if points.ndim != 2 or points.shape[0] == 0 or points.shape[1] < 2:
                raise MalformedFeatureError(
                    feature.feature_id, f"convex hull {hull.isotope_index} has no points"
                )
            if hull.intensity is None or math.isnan(hull.intensity):
                raise MalformedFeatureError(
                    feature.feature_id,
                    f"missing masstrace_intensity_{hull.isotope_index}",
                )

            peaks.append(IsotopePeak(
                peak_id=0,  # assigned once the whole feature is valid
                ion_id=ion_id,
                file_id=file_id,
                isotope_index=hull.isotope_index,
                intensity=float(hull.intensity),
                mass=float(points[:, 1].mean()),
                left_rt=float(points[:, 0].min()),
                right_rt=float(points[:, 0].max()),
                apex_rt=feature.rt,
            ))

        return peaks

    def build(
        self,
        sample_file: SampleFile,
        features: Sequence[RawFeature],
        charges: Mapping[FeatureKey, ChargeAssignment],
        consensus_ids: Optional[Mapping[FeatureKey, int]] = None,
    ) -> IonBuildResult:
        """Build ions and peaks for all features of one file.

        Args:
            sample_file: File the features were detected in
            features: Detector features of that file
            charges: Resolved charge assignment per feature
            consensus_ids: Consensus group id per feature

        Returns:
            IonBuildResult; malformed features are listed in ``skipped``
        """
        result = IonBuildResult(file_id=sample_file.file_id)
        consensus_ids = consensus_ids or {}

        for feature in features:
            key = FeatureKey(sample_file.file_id, feature.feature_id)
            try:
                peaks = self.build_peaks(feature, ion_id=0, file_id=sample_file.file_id)
            except MalformedFeatureError as e:
                logger.warning(f"Skipping feature in file {sample_file.file_id}: {e}")
                result.skipped.append(feature.feature_id)
                continue

            assignment = charges[key]
            ion_id = self._ion_ids.next_id()
            for peak in peaks:
                peak.peak_id = self._peak_ids.next_id()
                peak.ion_id = ion_id

            effective = assignment.effective_charge(sample_file.polarity)
            ion = FeatureIon(
                ion_id=ion_id,
                file_id=sample_file.file_id,
                feature_id=feature.feature_id,
                mass=feature.mz,
                retention_time=feature.rt,
                charge=assignment.charge,
                adduct=assignment.adduct,
                molecular_weight=molecular_weight(
                    feature.mz, effective, self.adducts.get(assignment.adduct)
                ),
                area=sum(p.intensity for p in peaks),
                isotope_count=len(peaks),
                consensus_id=consensus_ids.get(key),
                peak_ids=[p.peak_id for p in peaks],
            )
            result.ions.append(ion)
            result.peaks.extend(peaks)

        logger.info(
            f"✓ File {sample_file.file_id}: {len(result.ions)} ions, "
            f"{len(result.peaks)} isotope peaks, {len(result.skipped)} malformed features skipped"
        )
        return result
