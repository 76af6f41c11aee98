"""Numba kernels for windowed intensity extraction.

Every isotope peak defines a mass window [mass*(1-tol), mass*(1+tol)] with
tol in ppm. For each MS1 scan the intensities of all centroids inside the
window are summed; scans without centroids in the window contribute 0.

A batch of scans is flattened into wide arrays (m/z sorted ascending, with
the scan index of every centroid), so all windows of a batch are filled by
one binary search each and direct indexing by scan.
"""

from typing import List, Sequence, Tuple

import numba as nb
import numpy as np


@nb.njit
def binary_search_mz_range(
    mz_array: np.ndarray,
    target_mz: float,
    ppm_tolerance: float
) -> Tuple[int, int]:
    """Find the index range of centroids inside a ppm window.

    Parameters
    ----------
    mz_array : np.ndarray
        Sorted array of m/z values
    target_mz : float
        Window centre
    ppm_tolerance : float
        Half window width in parts per million

    Returns
    -------
    start_idx : int
        Start index (inclusive)
    end_idx : int
        End index (exclusive)

    Examples
    --------
    >>> mz_array = np.array([99.9990, 99.9996, 100.0004, 100.0010])
    >>> binary_search_mz_range(mz_array, 100.0, 5.0)
    (1, 3)
    """
    if len(mz_array) == 0 or target_mz <= 0:
        return 0, 0

    mz_tol = target_mz * ppm_tolerance / 1e6
    low_mz = target_mz - mz_tol
    high_mz = target_mz + mz_tol

    # Lower bound: first value >= low_mz
    left, right = 0, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] < low_mz:
            left = mid + 1
        else:
            right = mid
    start_idx = left

    # Upper bound: first value > high_mz
    left, right = start_idx, len(mz_array)
    while left < right:
        mid = (left + right) // 2
        if mz_array[mid] <= high_mz:
            left = mid + 1
        else:
            right = mid
    end_idx = left

    return start_idx, end_idx


@nb.njit(parallel=True)
def build_xic_matrix(
    mz_array: np.ndarray,
    intensity_array: np.ndarray,
    scan_array: np.ndarray,
    window_masses: np.ndarray,
    n_scans: int,
    ppm_tolerance: float,
) -> np.ndarray:
    """Sum intensities per mass window and scan.

    Parameters
    ----------
    mz_array : np.ndarray (float64)
        m/z of all centroids of the batch, sorted ascending
    intensity_array : np.ndarray (float64)
        Corresponding intensities
    scan_array : np.ndarray (int64)
        Batch-local scan index of each centroid (0-based)
    window_masses : np.ndarray (float64)
        Window centres, one per isotope peak; values <= 0 are skipped
    n_scans : int
        Number of scans in the batch
    ppm_tolerance : float
        Half window width in ppm

    Returns
    -------
    xic_matrix : np.ndarray (float64)
        Shape (n_windows, n_scans); 0 where a scan has no centroid in the window
    """
    n_windows = len(window_masses)
    xic_matrix = np.zeros((n_windows, n_scans), dtype=np.float64)

    # Every window writes only its own row
    for w in nb.prange(n_windows):
        mass = window_masses[w]
        if mass <= 0:
            continue

        start_idx, end_idx = binary_search_mz_range(mz_array, mass, ppm_tolerance)
        for i in range(start_idx, end_idx):
            scan_idx = scan_array[i]
            if 0 <= scan_idx < n_scans:
                xic_matrix[w, scan_idx] += intensity_array[i]

    return xic_matrix


def flatten_spectra(
    mz_arrays: Sequence[np.ndarray],
    intensity_arrays: Sequence[np.ndarray],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Concatenate per-scan arrays into m/z sorted wide arrays.

    Returns
    -------
    mz, intensity, scan_index
        Sorted by m/z; scan_index is the position of the source scan
    """
    if len(mz_arrays) == 0:
        empty = np.zeros(0, dtype=np.float64)
        return empty, empty.copy(), np.zeros(0, dtype=np.int64)

    lengths = [len(m) for m in mz_arrays]
    mz = np.concatenate([np.asarray(m, dtype=np.float64) for m in mz_arrays])
    intensity = np.concatenate([np.asarray(i, dtype=np.float64) for i in intensity_arrays])
    scans = np.repeat(np.arange(len(mz_arrays), dtype=np.int64), lengths)

    order = np.argsort(mz, kind='stable')
    return mz[order], intensity[order], scans[order]


def extract_window_intensities(
    mz_arrays: List[np.ndarray],
    intensity_arrays: List[np.ndarray],
    window_masses: np.ndarray,
    ppm_tolerance: float,
) -> np.ndarray:
    """XIC matrix (n_windows, n_scans) for a batch of scans."""
    mz, intensity, scans = flatten_spectra(mz_arrays, intensity_arrays)
    return build_xic_matrix(
        mz, intensity, scans,
        np.asarray(window_masses, dtype=np.float64),
        len(mz_arrays),
        float(ppm_tolerance),
    )
