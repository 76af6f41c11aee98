"""Tests for XIC trace generation.

Tests:
- ppm window search (inclusive bounds)
- Per-scan summing inside windows, zero for empty windows
- One point per MS1 scan on a shared raster
- MS1 / polarity filtering and retention time order
- Summed ion traces by spectrum id
"""

import numpy as np
import pytest

from alphafeaturelink.models import IsotopePeak, Polarity, XicTrace
from alphafeaturelink.tables import IdSequence
from alphafeaturelink.xic import (
    XICTraceGenerator,
    XicMask,
    binary_search_mz_range,
    build_xic_matrix,
    extract_window_intensities,
    flatten_spectra,
    masks_from_peaks,
    sum_trace_points,
)


class TestWindowSearch:
    """Test the ppm window binary search."""

    def test_window_bounds(self):
        mz = np.array([99.9990, 99.9994, 99.9996, 100.0004, 100.0006, 100.0010])
        start, end = binary_search_mz_range(mz, 100.0, 5.0)

        assert (start, end) == (2, 4)

    def test_empty_array(self):
        assert binary_search_mz_range(np.zeros(0), 100.0, 5.0) == (0, 0)

    def test_mask_bounds(self):
        low, high = XicMask(1, 1, 0, 100.0).bounds(5.0)

        assert low == pytest.approx(99.9995)
        assert high == pytest.approx(100.0005)


class TestXicMatrix:
    """Test the numba kernel."""

    def test_sums_per_scan(self):
        mz_arrays = [
            np.array([99.9996, 100.0004, 200.0]),
            np.array([150.0]),
            np.array([100.0001, 200.0002]),
        ]
        intensity_arrays = [
            np.array([10.0, 5.0, 1.0]),
            np.array([3.0]),
            np.array([7.0, 2.0]),
        ]
        matrix = extract_window_intensities(mz_arrays, intensity_arrays,
                                            np.array([100.0, 200.0]), 5.0)

        assert matrix.shape == (2, 3)
        np.testing.assert_allclose(matrix[0], [15.0, 0.0, 7.0])
        np.testing.assert_allclose(matrix[1], [1.0, 0.0, 2.0])

    def test_flatten_keeps_scan_index(self):
        mz, intensity, scans = flatten_spectra(
            [np.array([300.0, 100.0]), np.array([200.0])],
            [np.array([1.0, 2.0]), np.array([3.0])],
        )

        np.testing.assert_array_equal(mz, [100.0, 200.0, 300.0])
        np.testing.assert_array_equal(intensity, [2.0, 3.0, 1.0])
        np.testing.assert_array_equal(scans, [0, 1, 0])

    def test_non_positive_window_is_skipped(self):
        matrix = build_xic_matrix(
            np.array([0.0, 100.0]), np.array([1.0, 1.0]), np.array([0, 0], dtype=np.int64),
            np.array([0.0, 100.0]), 1, 5.0,
        )
        np.testing.assert_allclose(matrix[:, 0], [0.0, 1.0])


class TestXICTraceGenerator:
    """Test raster and trace accumulation."""

    def _generator(self, polarity=None):
        masks = [XicMask(1, 10, 0, 100.0), XicMask(2, 10, 1, 101.003355)]
        return XICTraceGenerator(file_id=1, masks=masks, tolerance_ppm=5.0, polarity=polarity)

    def test_window_without_points_yields_zeros(self, make_spectrum):
        generator = self._generator()
        generator.add_spectra([
            make_spectrum(1, 1.0, [99.9994, 100.0006], [50.0, 50.0]),
            make_spectrum(2, 1.1, [150.0], [50.0]),
        ])
        traces = generator.traces(raster_id=1, trace_ids=IdSequence())

        np.testing.assert_allclose(traces[0].intensities, [0.0, 0.0])
        assert len(traces[0]) == generator.n_scans == 2

    def test_every_trace_has_one_point_per_ms1_scan(self, make_spectrum):
        generator = self._generator()
        spectra = [
            make_spectrum(1, 1.0, [100.0], [10.0]),
            make_spectrum(2, 1.05, [100.0], [99.0], ms_order=2, precursor_mz=100.0),
            make_spectrum(3, 1.1, [101.0034], [4.0]),
            make_spectrum(4, 1.2, [], []),
        ]
        # Two batches
        assert generator.add_spectra(spectra[:2]) == 1
        assert generator.add_spectra(spectra[2:]) == 2

        raster = generator.retention_time_raster(raster_id=3)
        traces = generator.traces(3, IdSequence())

        assert len(raster) == 3
        np.testing.assert_array_equal(raster.spectrum_ids, [1, 3, 4])
        np.testing.assert_allclose(raster.retention_times, [1.0, 1.1, 1.2])
        assert all(len(t) == len(raster) for t in traces)
        np.testing.assert_allclose(traces[0].intensities, [10.0, 0.0, 0.0])
        np.testing.assert_allclose(traces[1].intensities, [0.0, 4.0, 0.0])
        assert [t.peak_id for t in traces] == [1, 2]
        assert raster.scan_event.ms_order == 1

    def test_polarity_filter(self, make_spectrum):
        generator = self._generator(polarity=Polarity.POSITIVE)
        added = generator.add_spectra([
            make_spectrum(1, 1.0, [100.0], [1.0]),
            make_spectrum(2, 1.1, [100.0], [1.0], polarity=Polarity.NEGATIVE),
        ])

        assert added == 1
        assert generator.n_scans == 1

    def test_out_of_order_spectra_rejected(self, make_spectrum):
        generator = self._generator()
        generator.add_spectrum(make_spectrum(1, 2.0, [100.0], [1.0]))

        with pytest.raises(ValueError):
            generator.add_spectrum(make_spectrum(2, 1.0, [100.0], [1.0]))

    def test_no_spectra(self):
        generator = self._generator()
        traces = generator.traces(1, IdSequence())

        assert [len(t) for t in traces] == [0, 0]
        assert generator.retention_time_raster(1).scan_event is None

    def test_ion_traces_sum_isotopes(self, make_spectrum):
        generator = self._generator()
        generator.add_spectra([
            make_spectrum(1, 1.0, [100.0, 101.0034], [10.0, 3.0]),
            make_spectrum(2, 1.1, [100.0], [6.0]),
        ])
        trace_ids = IdSequence()
        peak_traces = generator.traces(1, trace_ids)
        ion_traces = generator.ion_traces(peak_traces, trace_ids)

        assert len(ion_traces) == 1
        assert ion_traces[0].ion_id == 10
        assert ion_traces[0].peak_id is None
        assert ion_traces[0].trace_id == 3
        np.testing.assert_allclose(ion_traces[0].intensities, [13.0, 6.0])

    def test_masks_from_peaks(self):
        peak = IsotopePeak(peak_id=5, ion_id=2, file_id=1, isotope_index=1, intensity=1.0,
                           mass=201.0, left_rt=1.0, right_rt=2.0, apex_rt=1.5)

        assert masks_from_peaks([peak]) == [XicMask(5, 2, 1, 201.0)]


class TestSumTracePoints:
    """Test summing of points by spectrum id."""

    def test_shared_spectrum_ids(self):
        a = XicTrace(1, 1, 1, 1, np.array([1.0, 1.1]), np.array([2.0, 3.0]),
                     np.array([10, 11]))
        b = XicTrace(2, 1, 1, 1, np.array([1.1, 1.2]), np.array([4.0, 5.0]),
                     np.array([11, 12]))
        rts, intensities, spectrum_ids = sum_trace_points([a, b])

        np.testing.assert_array_equal(spectrum_ids, [10, 11, 12])
        np.testing.assert_allclose(intensities, [2.0, 7.0, 5.0])
        np.testing.assert_allclose(rts, [1.0, 1.1, 1.2])

    def test_empty(self):
        rts, intensities, spectrum_ids = sum_trace_points([])
        assert len(rts) == len(intensities) == len(spectrum_ids) == 0
