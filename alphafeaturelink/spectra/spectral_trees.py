"""Assign MS1 and data dependent MS2 spectra to chromatographic peaks.

For every isotope peak the MS1 scan closest to the apex is taken as the
tree root; it must lie inside the peak's RT span, otherwise the peak gets
an empty tree. MS2 scans eluting inside the span whose precursor m/z
matches the peak mass within the ppm tolerance become children.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from ..exceptions import MissingMS1Error
from ..models import IsotopePeak, SpectralTree, SpectrumDescriptor

logger = logging.getLogger(__name__)


def closest_index(sorted_values: np.ndarray, target: float) -> int:
    """Index of the value closest to target; ties go to the earlier value.

    Returns -1 for an empty array.
    """
    n = len(sorted_values)
    if n == 0:
        return -1
    pos = int(np.searchsorted(sorted_values, target, side='left'))
    if pos == 0:
        return 0
    if pos == n:
        return n - 1
    if target - sorted_values[pos - 1] <= sorted_values[pos] - target:
        return pos - 1
    return pos


class SpectralTreeAssigner:
    """Build spectral trees for the isotope peaks of one file.

    Args:
        mass_tolerance_ppm: Precursor matching tolerance
    """

    def __init__(self, mass_tolerance_ppm: float):
        self.mass_tolerance_ppm = mass_tolerance_ppm

    def assign(
        self,
        file_id: int,
        descriptors: Sequence[SpectrumDescriptor],
        peaks: Sequence[IsotopePeak],
        ion_charges: Optional[Mapping[int, int]] = None,
    ) -> Dict[int, SpectralTree]:
        """Spectral tree per peak id.

        Args:
            file_id: File of the spectra and peaks
            descriptors: All spectrum headers of the file
            peaks: Isotope peaks of the file
            ion_charges: Effective (never 0) charge per ion id; MS2 scans
                with a known precursor charge must agree with it

        Returns:
            peak_id -> SpectralTree (empty tree if no MS1 matches)

        Raises:
            MissingMS1Error: If the file has no MS1 spectra at all
        """
        ordered = sorted(descriptors, key=lambda d: (d.retention_time, d.spectrum_id))
        ms1 = [d for d in ordered if d.ms_order == 1]
        if not ms1:
            raise MissingMS1Error(file_id)

        ms2 = [d for d in ordered if d.ms_order >= 2 and d.precursor_mz is not None]
        ms1_rt = np.array([d.retention_time for d in ms1], dtype=np.float64)
        ms2_rt = np.array([d.retention_time for d in ms2], dtype=np.float64)
        ion_charges = ion_charges or {}

        trees = {}
        empty = 0
        for peak in peaks:
            tree = self.build_tree(peak, ms1, ms1_rt, ms2, ms2_rt, ion_charges.get(peak.ion_id))
            if tree.is_empty:
                empty += 1
            trees[peak.peak_id] = tree

        logger.info(
            f"✓ File {file_id}: spectral trees for {len(trees) - empty} of {len(trees)} peaks"
        )
        return trees

    def build_tree(
        self,
        peak: IsotopePeak,
        ms1: List[SpectrumDescriptor],
        ms1_rt: np.ndarray,
        ms2: List[SpectrumDescriptor],
        ms2_rt: np.ndarray,
        charge: Optional[int] = None,
    ) -> SpectralTree:
        idx = closest_index(ms1_rt, peak.apex_rt)
        if idx < 0 or not peak.left_rt <= ms1_rt[idx] <= peak.right_rt:
            return SpectralTree()

        tolerance = peak.mass * self.mass_tolerance_ppm * 1e-6
        start = int(np.searchsorted(ms2_rt, peak.left_rt, side='left'))
        end = int(np.searchsorted(ms2_rt, peak.right_rt, side='right'))

        children = []
        for descriptor in ms2[start:end]:
            if abs(descriptor.precursor_mz - peak.mass) > tolerance:
                continue
            if (charge is not None and descriptor.precursor_charge
                    and abs(descriptor.precursor_charge) != abs(charge)):
                continue
            children.append(descriptor)

        return SpectralTree(ms1=ms1[idx], ms2=children)


def collect_assigned_spectrum_ids(trees: Iterable[SpectralTree]) -> List[int]:
    """Distinct spectrum ids attached to any tree, in first-seen order."""
    seen = {}
    for tree in trees:
        for spectrum_id in tree.spectrum_ids:
            seen.setdefault(spectrum_id, None)
    return list(seen)
