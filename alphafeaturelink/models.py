"""Data model for cross-sample feature reconciliation.

External results (detector features, consensus maps, decharged groups) and
the resolved records produced by the pipeline (FeatureIon, IsotopePeak,
Compound, XicTrace, RetentionTimeRaster, SpectralTree).

Cross references are plain integer or string identifiers plus lookup maps;
records never hold references to each other.

Retention times are in minutes throughout.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from .constants import UNKNOWN_ADDUCT


class Polarity(Enum):
    """Acquisition polarity of a sample file or scan."""
    POSITIVE = "+"
    NEGATIVE = "-"

    @property
    def default_charge(self) -> int:
        """Charge assumed for ions whose charge is still unknown (0)."""
        return -1 if self is Polarity.NEGATIVE else 1

    @property
    def sign(self) -> int:
        return -1 if self is Polarity.NEGATIVE else 1


class FeatureKey(NamedTuple):
    """Stable identity of a detector feature: (sample file id, feature id)."""
    file_id: int
    feature_id: str


# =============================================================================
# Inputs
# =============================================================================

@dataclass(frozen=True)
class SampleFile:
    """One workflow input file."""
    file_id: int
    path: str
    polarity: Polarity = Polarity.POSITIVE


@dataclass
class ConvexHull:
    """Isotope trace hull as reported by the feature detector.

    points has shape (n, 2): column 0 is RT (min), column 1 is m/z.
    intensity is the summed mass trace intensity, None if not reported.
    """
    isotope_index: int
    points: np.ndarray
    intensity: Optional[float] = None


@dataclass
class RawFeature:
    """A per-file feature detection."""
    feature_id: str          # Unique within its file's result
    mz: float                # Monoisotopic m/z reported by the detector
    rt: float                # Apex retention time (min)
    charge: int = 0          # 0 if unknown
    hulls: List[ConvexHull] = field(default_factory=list)
    quality: float = 0.0


@dataclass
class FeatureMap:
    """All features detected in one exported file."""
    name: str
    features: List[RawFeature] = field(default_factory=list)


@dataclass(frozen=True)
class MapDescription:
    """Positional entry of the consensus map's file list."""
    index: int
    name: str
    size: int = 0


@dataclass(frozen=True)
class FeatureHandle:
    """Reference from a consensus element to one feature of one map."""
    map_index: int
    feature_id: str
    rt: float = 0.0
    mz: float = 0.0
    intensity: float = 0.0


@dataclass
class ConsensusElement:
    """One group of the linker result, in positional (map index) space."""
    consensus_id: int
    mz: float
    rt: float
    charge: int = 0
    handles: List[FeatureHandle] = field(default_factory=list)
    quality: float = 0.0


@dataclass
class ConsensusMap:
    """Linker result: positional map list plus consensus elements."""
    maps: List[MapDescription] = field(default_factory=list)
    elements: List[ConsensusElement] = field(default_factory=list)


# =============================================================================
# Cross-sample groups
# =============================================================================

@dataclass(frozen=True)
class ConsensusGroup:
    """Cross-file group of equivalent features in stable identity space.

    majority_charge is None when the linker found no dominant charge.
    adduct/adduct_charge are set once the group has been decharged.
    """
    consensus_id: int
    members: Tuple[FeatureKey, ...]
    mz: float
    rt: float
    majority_charge: Optional[int] = None
    adduct: Optional[str] = None
    adduct_charge: Optional[int] = None

    @property
    def file_count(self) -> int:
        """Number of distinct files linked by this group."""
        return len({m.file_id for m in self.members})

    @property
    def is_decharged(self) -> bool:
        return self.adduct is not None


@dataclass(frozen=True)
class AdductPair:
    """Pairwise adduct relationship between two decharged consensus groups."""
    consensus_id_a: int
    consensus_id_b: int
    adduct_a: str
    adduct_b: str
    neutral_mass: float = 0.0
    score: float = 0.0

    @property
    def key(self) -> Tuple[int, int]:
        return (min(self.consensus_id_a, self.consensus_id_b),
                max(self.consensus_id_a, self.consensus_id_b))


@dataclass(frozen=True)
class AdductAssignment:
    """Charge and adduct assigned to one consensus group by decharging."""
    consensus_id: int
    charge: int
    adduct: str
    iteration: int = 1  # Charge bound at which the assignment was made


@dataclass
class DechargedAdductGroup:
    """Consensus groups explained as adducts of one neutral compound."""
    group_id: int
    assignments: Dict[int, AdductAssignment] = field(default_factory=dict)
    pairs: List[AdductPair] = field(default_factory=list)

    @property
    def consensus_ids(self) -> List[int]:
        return sorted(self.assignments)

    @property
    def adduct_count(self) -> int:
        """Number of distinct adduct relationships within the group."""
        return len({pair.key for pair in self.pairs})


# =============================================================================
# Resolved records
# =============================================================================

@dataclass
class IsotopePeak:
    """Chromatographic peak of one isotope trace."""
    peak_id: int
    ion_id: int
    file_id: int
    isotope_index: int     # 0 = monoisotopic
    intensity: float       # Summed mass trace intensity (area)
    mass: float            # Mean hull m/z
    left_rt: float
    right_rt: float
    apex_rt: float


@dataclass
class FeatureIon:
    """Resolved ion of one detector feature."""
    ion_id: int
    file_id: int
    feature_id: str
    mass: float                  # m/z
    retention_time: float
    charge: int
    adduct: str = UNKNOWN_ADDUCT
    molecular_weight: float = 0.0
    area: float = 0.0
    isotope_count: int = 0
    consensus_id: Optional[int] = None
    peak_ids: List[int] = field(default_factory=list)

    @property
    def key(self) -> FeatureKey:
        return FeatureKey(self.file_id, self.feature_id)


@dataclass
class Compound:
    """Cross-sample compound built from one decharged adduct group."""
    compound_id: int
    group_id: int
    ion_ids: List[int]
    molecular_weight: float
    mass: float
    retention_time: float
    area: float
    adduct_count: int
    file_ids: List[int] = field(default_factory=list)


# =============================================================================
# Spectra, traces and spectral trees
# =============================================================================

@dataclass(frozen=True)
class ScanEvent:
    """Acquisition settings of a scan."""
    ms_order: int = 1
    polarity: Polarity = Polarity.POSITIVE
    mass_analyzer: str = ""
    scan_type: str = ""
    ionization_source: str = ""
    mass_range: Tuple[float, float] = (0.0, 0.0)
    resolution_at_200: float = 0.0
    scan_rate: str = ""
    activation_type: str = ""
    activation_energy: float = 0.0
    isolation_mass: float = 0.0
    isolation_width: float = 0.0
    isolation_offset: float = 0.0
    is_multiplexed: bool = False


@dataclass(frozen=True)
class SpectrumDescriptor:
    """Header of a spectrum without its peak data."""
    spectrum_id: int
    file_id: int
    retention_time: float
    scan_event: ScanEvent
    precursor_mz: Optional[float] = None
    precursor_charge: int = 0
    master_scan_id: Optional[int] = None

    @property
    def ms_order(self) -> int:
        return self.scan_event.ms_order


@dataclass
class Spectrum:
    """Centroided spectrum; mz must be sorted ascending."""
    descriptor: SpectrumDescriptor
    mz: np.ndarray
    intensity: np.ndarray

    @property
    def spectrum_id(self) -> int:
        return self.descriptor.spectrum_id

    @property
    def retention_time(self) -> float:
        return self.descriptor.retention_time


@dataclass
class RetentionTimeRaster:
    """Ordered MS1 retention times shared by all traces of a file."""
    raster_id: int
    file_id: int
    retention_times: np.ndarray
    spectrum_ids: np.ndarray
    scan_event: Optional[ScanEvent] = None

    def __len__(self) -> int:
        return len(self.retention_times)


@dataclass
class XicTrace:
    """Intensity per raster point for one isotope peak (or a whole ion)."""
    trace_id: int
    file_id: int
    ion_id: int
    raster_id: int
    retention_times: np.ndarray
    intensities: np.ndarray
    spectrum_ids: np.ndarray
    peak_id: Optional[int] = None        # None for summed ion traces
    isotope_index: Optional[int] = None

    def __len__(self) -> int:
        return len(self.intensities)


@dataclass
class SpectralTree:
    """An MS1 node with its time and mass matched MS2 children."""
    ms1: Optional[SpectrumDescriptor] = None
    ms2: List[SpectrumDescriptor] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.ms1 is None

    @property
    def spectrum_ids(self) -> List[int]:
        if self.ms1 is None:
            return []
        return [self.ms1.spectrum_id] + [s.spectrum_id for s in self.ms2]
