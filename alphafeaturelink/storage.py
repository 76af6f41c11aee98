"""HDF5 persistence of reconciliation results.

Layout::

    /ions          ion_id, file_id, feature_id, mass, retention_time, charge,
                   adduct, molecular_weight, area, isotope_count, consensus_id
    /peaks         peak_id, ion_id, file_id, isotope_index, intensity, mass,
                   left_rt, right_rt, apex_rt
    /compounds     compound_id, group_id, molecular_weight, mass,
                   retention_time, area, adduct_count
    /compound_ions compound_id, ion_id
    /rasters/<id>  retention_times, spectrum_ids (+ file_id attribute)
    /traces        trace_id, file_id, ion_id, raster_id, peak_id, offset, length,
                   intensities (flat)
    /peak_spectra  peak_id, spectrum_id, ms_order
    /spectra/<id>  mz, intensity of every spectrum attached to a peak

Missing consensus ids and peak ids are stored as -1.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence

import h5py
import numpy as np

from .models import (
    Compound,
    FeatureIon,
    IsotopePeak,
    RetentionTimeRaster,
    SpectralTree,
    Spectrum,
    XicTrace,
)

logger = logging.getLogger(__name__)

_STR = h5py.string_dtype(encoding='utf-8')


class ResultStore:
    """Write and read reconciliation results in one HDF5 file.

    Use as a context manager::

        with ResultStore(path, mode='w') as store:
            store.write_ions(result.ions)
    """

    def __init__(self, path: Path | str, mode: str = 'r'):
        self.path = Path(path)
        self.mode = mode
        self._hdf_handle = None

    def __enter__(self):
        """Open HDF5 file."""
        self._hdf_handle = h5py.File(self.path, self.mode)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close HDF5 file."""
        if self._hdf_handle is not None:
            self._hdf_handle.close()
            self._hdf_handle = None

    @property
    def hdf(self) -> h5py.File:
        if self._hdf_handle is None:
            raise RuntimeError("ResultStore is not open; use it as a context manager")
        return self._hdf_handle

    def _write_table(self, name: str, columns: Dict[str, np.ndarray]) -> None:
        if name in self.hdf:
            del self.hdf[name]
        group = self.hdf.create_group(name)
        for column, values in columns.items():
            group.create_dataset(column, data=values)

    # -------------------------------------------------------------------------
    # Writers
    # -------------------------------------------------------------------------

    def write_ions(self, ions: Sequence[FeatureIon]) -> None:
        self._write_table('ions', {
            'ion_id': np.array([i.ion_id for i in ions], dtype=np.int64),
            'file_id': np.array([i.file_id for i in ions], dtype=np.int64),
            'feature_id': np.array([i.feature_id for i in ions], dtype=_STR),
            'mass': np.array([i.mass for i in ions], dtype=np.float64),
            'retention_time': np.array([i.retention_time for i in ions], dtype=np.float64),
            'charge': np.array([i.charge for i in ions], dtype=np.int32),
            'adduct': np.array([i.adduct for i in ions], dtype=_STR),
            'molecular_weight': np.array([i.molecular_weight for i in ions], dtype=np.float64),
            'area': np.array([i.area for i in ions], dtype=np.float64),
            'isotope_count': np.array([i.isotope_count for i in ions], dtype=np.int32),
            'consensus_id': np.array(
                [i.consensus_id if i.consensus_id is not None else -1 for i in ions],
                dtype=np.int64,
            ),
        })

    def write_peaks(self, peaks: Sequence[IsotopePeak]) -> None:
        self._write_table('peaks', {
            'peak_id': np.array([p.peak_id for p in peaks], dtype=np.int64),
            'ion_id': np.array([p.ion_id for p in peaks], dtype=np.int64),
            'file_id': np.array([p.file_id for p in peaks], dtype=np.int64),
            'isotope_index': np.array([p.isotope_index for p in peaks], dtype=np.int32),
            'intensity': np.array([p.intensity for p in peaks], dtype=np.float64),
            'mass': np.array([p.mass for p in peaks], dtype=np.float64),
            'left_rt': np.array([p.left_rt for p in peaks], dtype=np.float64),
            'right_rt': np.array([p.right_rt for p in peaks], dtype=np.float64),
            'apex_rt': np.array([p.apex_rt for p in peaks], dtype=np.float64),
        })

    def write_compounds(self, compounds: Sequence[Compound]) -> None:
        self._write_table('compounds', {
            'compound_id': np.array([c.compound_id for c in compounds], dtype=np.int64),
            'group_id': np.array([c.group_id for c in compounds], dtype=np.int64),
            'molecular_weight': np.array([c.molecular_weight for c in compounds], dtype=np.float64),
            'mass': np.array([c.mass for c in compounds], dtype=np.float64),
            'retention_time': np.array([c.retention_time for c in compounds], dtype=np.float64),
            'area': np.array([c.area for c in compounds], dtype=np.float64),
            'adduct_count': np.array([c.adduct_count for c in compounds], dtype=np.int32),
        })
        links = [(c.compound_id, ion_id) for c in compounds for ion_id in c.ion_ids]
        self._write_table('compound_ions', {
            'compound_id': np.array([l[0] for l in links], dtype=np.int64),
            'ion_id': np.array([l[1] for l in links], dtype=np.int64),
        })

    def write_rasters(self, rasters: Sequence[RetentionTimeRaster]) -> None:
        if 'rasters' in self.hdf:
            del self.hdf['rasters']
        group = self.hdf.create_group('rasters')
        for raster in rasters:
            sub = group.create_group(str(raster.raster_id))
            sub.attrs['file_id'] = raster.file_id
            sub.create_dataset('retention_times', data=raster.retention_times)
            sub.create_dataset('spectrum_ids', data=raster.spectrum_ids)
            if raster.scan_event is not None:
                sub.attrs['polarity'] = raster.scan_event.polarity.value
                sub.attrs['mass_analyzer'] = raster.scan_event.mass_analyzer
                sub.attrs['scan_type'] = raster.scan_event.scan_type

    def write_traces(self, traces: Sequence[XicTrace]) -> None:
        lengths = np.array([len(t) for t in traces], dtype=np.int64)
        offsets = np.concatenate([[0], np.cumsum(lengths)[:-1]]) if len(traces) else lengths
        intensities = (np.concatenate([t.intensities for t in traces])
                       if traces else np.zeros(0, dtype=np.float64))
        self._write_table('traces', {
            'trace_id': np.array([t.trace_id for t in traces], dtype=np.int64),
            'file_id': np.array([t.file_id for t in traces], dtype=np.int64),
            'ion_id': np.array([t.ion_id for t in traces], dtype=np.int64),
            'raster_id': np.array([t.raster_id for t in traces], dtype=np.int64),
            'peak_id': np.array(
                [t.peak_id if t.peak_id is not None else -1 for t in traces], dtype=np.int64
            ),
            'offset': offsets.astype(np.int64),
            'length': lengths,
            'intensities': intensities.astype(np.float64),
        })

    def write_spectral_trees(self, trees: Dict[int, SpectralTree]) -> None:
        rows = []
        for peak_id, tree in trees.items():
            if tree.is_empty:
                continue
            rows.append((peak_id, tree.ms1.spectrum_id, 1))
            rows.extend((peak_id, s.spectrum_id, s.ms_order) for s in tree.ms2)
        self._write_table('peak_spectra', {
            'peak_id': np.array([r[0] for r in rows], dtype=np.int64),
            'spectrum_id': np.array([r[1] for r in rows], dtype=np.int64),
            'ms_order': np.array([r[2] for r in rows], dtype=np.int32),
        })

    def write_spectra(self, spectra: Sequence[Spectrum]) -> None:
        """Append spectra under /spectra/<id>; already stored ids are skipped."""
        group = self.hdf.require_group('spectra')
        for spectrum in spectra:
            key = str(spectrum.spectrum_id)
            if key in group:
                continue
            sub = group.create_group(key)
            sub.attrs['file_id'] = spectrum.descriptor.file_id
            sub.attrs['retention_time'] = spectrum.retention_time
            sub.attrs['ms_order'] = spectrum.descriptor.ms_order
            sub.create_dataset('mz', data=np.asarray(spectrum.mz, dtype=np.float64))
            sub.create_dataset('intensity', data=np.asarray(spectrum.intensity, dtype=np.float64))

    def write_result(self, result) -> None:
        """Write every table of a ReconciliationResult."""
        self.write_ions(result.ions)
        self.write_peaks(result.peaks)
        self.write_compounds(result.compounds)
        self.write_rasters(result.rasters)
        self.write_traces(result.traces + result.ion_traces)
        self.write_spectral_trees(result.spectral_trees)
        self.write_spectra(result.assigned_spectra)
        logger.info(f"✓ Wrote {len(result.ions)} ions and {len(result.compounds)} compounds to {self.path}")

    # -------------------------------------------------------------------------
    # Readers
    # -------------------------------------------------------------------------

    def read_ions(self) -> List[FeatureIon]:
        table = self.hdf['ions']
        columns = {name: table[name][:] for name in table}
        ions = []
        for k in range(len(columns['ion_id'])):
            consensus_id = int(columns['consensus_id'][k])
            ions.append(FeatureIon(
                ion_id=int(columns['ion_id'][k]),
                file_id=int(columns['file_id'][k]),
                feature_id=_text(columns['feature_id'][k]),
                mass=float(columns['mass'][k]),
                retention_time=float(columns['retention_time'][k]),
                charge=int(columns['charge'][k]),
                adduct=_text(columns['adduct'][k]),
                molecular_weight=float(columns['molecular_weight'][k]),
                area=float(columns['area'][k]),
                isotope_count=int(columns['isotope_count'][k]),
                consensus_id=consensus_id if consensus_id >= 0 else None,
            ))
        return ions

    def read_trace(self, trace_id: int) -> np.ndarray:
        """Intensities of one stored trace."""
        table = self.hdf['traces']
        ids = table['trace_id'][:]
        matches = np.nonzero(ids == trace_id)[0]
        if len(matches) == 0:
            raise KeyError(f"Unknown trace id {trace_id}")
        k = matches[0]
        offset, length = int(table['offset'][k]), int(table['length'][k])
        return table['intensities'][offset:offset + length]


def _text(value) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)
