"""XIC trace generation on a shared retention time raster.

The generator is created for one file with one mass window per isotope
peak. MS1 spectra are fed in retention time order, in batches; every MS1
scan adds one point to every trace (0 if the window is empty), so all traces
of a file share the raster of MS1 retention times.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..models import (
    IsotopePeak,
    Polarity,
    RetentionTimeRaster,
    ScanEvent,
    Spectrum,
    XicTrace,
)
from ..tables import IdSequence
from .extraction import extract_window_intensities

logger = logging.getLogger(__name__)


class XicMask(NamedTuple):
    """Mass window of one isotope peak."""
    peak_id: int
    ion_id: int
    isotope_index: int
    mass: float

    def bounds(self, tolerance_ppm: float) -> Tuple[float, float]:
        delta = self.mass * tolerance_ppm * 1e-6
        return self.mass - delta, self.mass + delta


def masks_from_peaks(peaks: Iterable[IsotopePeak]) -> List[XicMask]:
    return [XicMask(p.peak_id, p.ion_id, p.isotope_index, p.mass) for p in peaks]


class XICTraceGenerator:
    """Accumulate XIC traces for all isotope peaks of one file.

    Parameters
    ----------
    file_id : int
        File the spectra belong to
    masks : Sequence[XicMask]
        One mass window per isotope peak
    tolerance_ppm : float
        Half window width
    polarity : Polarity, optional
        Only MS1 scans of this polarity are used
    """

    def __init__(
        self,
        file_id: int,
        masks: Sequence[XicMask],
        tolerance_ppm: float,
        polarity: Optional[Polarity] = None,
    ):
        self.file_id = file_id
        self.masks = list(masks)
        self.tolerance_ppm = tolerance_ppm
        self.polarity = polarity

        self._masses = np.array([m.mass for m in self.masks], dtype=np.float64)
        self._columns: List[np.ndarray] = []
        self._retention_times: List[float] = []
        self._spectrum_ids: List[int] = []
        self._scan_event: Optional[ScanEvent] = None

    @property
    def n_scans(self) -> int:
        return len(self._retention_times)

    def _qualifies(self, spectrum: Spectrum) -> bool:
        event = spectrum.descriptor.scan_event
        if event.ms_order != 1:
            return False
        return self.polarity is None or event.polarity == self.polarity

    def add_spectra(self, spectra: Sequence[Spectrum]) -> int:
        """Add one batch of spectra.

        Non-MS1 scans and scans of another polarity are ignored.

        Returns:
            Number of scans added to the raster

        Raises:
            ValueError: If retention times are not in ascending order
        """
        batch = [s for s in spectra if self._qualifies(s)]
        if not batch:
            return 0

        last_rt = self._retention_times[-1] if self._retention_times else -np.inf
        for spectrum in batch:
            if spectrum.retention_time < last_rt:
                raise ValueError(
                    f"Spectrum {spectrum.spectrum_id} (RT {spectrum.retention_time:.4f}) "
                    f"is out of retention time order"
                )
            last_rt = spectrum.retention_time

        if self._scan_event is None:
            self._scan_event = batch[0].descriptor.scan_event

        matrix = extract_window_intensities(
            [s.mz for s in batch],
            [s.intensity for s in batch],
            self._masses,
            self.tolerance_ppm,
        )
        self._columns.append(matrix)
        self._retention_times.extend(s.retention_time for s in batch)
        self._spectrum_ids.extend(s.spectrum_id for s in batch)
        return len(batch)

    def add_spectrum(self, spectrum: Spectrum) -> bool:
        return self.add_spectra([spectrum]) == 1

    def retention_time_raster(self, raster_id: int) -> RetentionTimeRaster:
        return RetentionTimeRaster(
            raster_id=raster_id,
            file_id=self.file_id,
            retention_times=np.array(self._retention_times, dtype=np.float64),
            spectrum_ids=np.array(self._spectrum_ids, dtype=np.int64),
            scan_event=self._scan_event,
        )

    def _matrix(self) -> np.ndarray:
        if not self._columns:
            return np.zeros((len(self.masks), 0), dtype=np.float64)
        return np.concatenate(self._columns, axis=1)

    def traces(self, raster_id: int, trace_ids: IdSequence) -> List[XicTrace]:
        """One trace per isotope peak, in mask order."""
        matrix = self._matrix()
        retention_times = np.array(self._retention_times, dtype=np.float64)
        spectrum_ids = np.array(self._spectrum_ids, dtype=np.int64)

        traces = []
        for row, mask in enumerate(self.masks):
            traces.append(XicTrace(
                trace_id=trace_ids.next_id(),
                file_id=self.file_id,
                ion_id=mask.ion_id,
                raster_id=raster_id,
                retention_times=retention_times,
                intensities=matrix[row].copy(),
                spectrum_ids=spectrum_ids,
                peak_id=mask.peak_id,
                isotope_index=mask.isotope_index,
            ))
        return traces

    def ion_traces(self, peak_traces: Sequence[XicTrace], trace_ids: IdSequence) -> List[XicTrace]:
        """Summed trace per ion over all its isotope peak traces."""
        by_ion: Dict[int, List[XicTrace]] = OrderedDict()
        for trace in peak_traces:
            by_ion.setdefault(trace.ion_id, []).append(trace)

        result = []
        for ion_id, traces in by_ion.items():
            retention_times, intensities, spectrum_ids = sum_trace_points(traces)
            result.append(XicTrace(
                trace_id=trace_ids.next_id(),
                file_id=self.file_id,
                ion_id=ion_id,
                raster_id=traces[0].raster_id,
                retention_times=retention_times,
                intensities=intensities,
                spectrum_ids=spectrum_ids,
            ))
        return result


def sum_trace_points(
    traces: Sequence[XicTrace],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Sum intensities of points sharing a spectrum id.

    Intended for traces on the same raster; the RT of a spectrum id is taken
    from its first occurrence.

    Returns:
        (retention_times, intensities, spectrum_ids) in order of first
        appearance
    """
    times: Dict[int, float] = OrderedDict()
    sums: Dict[int, float] = {}
    for trace in traces:
        for rt, intensity, spectrum_id in zip(
            trace.retention_times, trace.intensities, trace.spectrum_ids
        ):
            spectrum_id = int(spectrum_id)
            if spectrum_id not in times:
                times[spectrum_id] = float(rt)
                sums[spectrum_id] = 0.0
            sums[spectrum_id] += float(intensity)

    spectrum_ids = np.array(list(times), dtype=np.int64)
    return (
        np.array(list(times.values()), dtype=np.float64),
        np.array([sums[s] for s in times], dtype=np.float64),
        spectrum_ids,
    )
