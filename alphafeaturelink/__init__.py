"""AlphaFeatureLink: cross-sample reconciliation of LC-MS feature detections.

Per-file features from an external detector are linked across samples,
resolved to a final charge and adduct, grouped into compounds, and
supplemented with XIC traces and spectral trees rebuilt from the spectra.

Examples
--------
>>> from alphafeaturelink import ReconciliationParams, ReconciliationPipeline
>>> params = ReconciliationParams(min_linked_samples=2)
>>> pipeline = ReconciliationPipeline(params, detect=detect, link=link)
>>> result = pipeline.run(sample_files)
"""

__version__ = "0.1.0"

from .config import ReconciliationParams
from .exceptions import (
    DuplicateAssignmentError,
    FeatureLinkError,
    IdentityMappingError,
    MalformedFeatureError,
    MissingMS1Error,
    ToolExecutionError,
)
from .models import (
    Compound,
    ConsensusGroup,
    FeatureIon,
    IsotopePeak,
    Polarity,
    RawFeature,
    SampleFile,
    SpectralTree,
    XicTrace,
)
from .pipeline import ReconciliationPipeline, ReconciliationResult

__all__ = [
    "ReconciliationParams",
    "ReconciliationPipeline",
    "ReconciliationResult",
    "DuplicateAssignmentError",
    "FeatureLinkError",
    "IdentityMappingError",
    "MalformedFeatureError",
    "MissingMS1Error",
    "ToolExecutionError",
    "Compound",
    "ConsensusGroup",
    "FeatureIon",
    "IsotopePeak",
    "Polarity",
    "RawFeature",
    "SampleFile",
    "SpectralTree",
    "XicTrace",
]
