"""Extracted ion chromatograms per isotope peak.

Key Features
------------
- Binary search on m/z-sorted centroids for O(log n) window lookup
- Batched extraction with Numba, one row per mass window
- Shared retention time raster per file (one point per MS1 scan)
- Summed ion-level traces over all isotope peaks

Examples
--------
>>> from alphafeaturelink.xic import XICTraceGenerator, XicMask
>>> generator = XICTraceGenerator(file_id=1, masks=[XicMask(1, 1, 0, 100.0)],
...                               tolerance_ppm=5.0)
>>> generator.add_spectra(ms1_spectra)
>>> raster = generator.retention_time_raster(raster_id=1)
"""

from .extraction import (
    binary_search_mz_range,
    build_xic_matrix,
    extract_window_intensities,
    flatten_spectra,
)

from .tracer import (
    XicMask,
    XICTraceGenerator,
    masks_from_peaks,
    sum_trace_points,
)

__all__ = [
    # Extraction
    "binary_search_mz_range",
    "build_xic_matrix",
    "extract_window_intensities",
    "flatten_spectra",
    # Traces
    "XicMask",
    "XICTraceGenerator",
    "masks_from_peaks",
    "sum_trace_points",
]
