"""Pytest configuration for AlphaFeatureLink tests.

Provides factories for synthetic detector features (with convex hulls),
consensus maps and centroided spectra, so tests can build small
reconciliation scenarios without external tools.
"""

import numpy as np
import pytest

from alphafeaturelink.models import (
    ConsensusElement,
    ConvexHull,
    FeatureHandle,
    MapDescription,
    Polarity,
    RawFeature,
    SampleFile,
    ScanEvent,
    Spectrum,
    SpectrumDescriptor,
)


def hull(isotope_index, rts, mzs, intensity=1e5):
    """Convex hull from RT (min) and m/z coordinates."""
    points = np.column_stack([np.asarray(rts, dtype=float), np.asarray(mzs, dtype=float)])
    return ConvexHull(isotope_index=isotope_index, points=points, intensity=intensity)


def feature(feature_id, mz, rt, charge=0, n_isotopes=1, intensity=1e5, width=0.2):
    """Feature with n isotope hulls spaced by 1.00336 / |charge| Th."""
    spacing = 1.003355 / max(abs(charge), 1)
    hulls = []
    for k in range(n_isotopes):
        iso_mz = mz + k * spacing
        hulls.append(hull(
            k,
            [rt - width, rt, rt + width, rt],
            [iso_mz - 0.0001, iso_mz, iso_mz + 0.0001, iso_mz],
            intensity=intensity / (k + 1),
        ))
    return RawFeature(feature_id=str(feature_id), mz=mz, rt=rt, charge=charge, hulls=hulls)


def spectrum(spectrum_id, rt, mz=(), intensity=(), file_id=1, ms_order=1,
             precursor_mz=None, precursor_charge=0, polarity=Polarity.POSITIVE):
    event = ScanEvent(ms_order=ms_order, polarity=polarity,
                      mass_analyzer="FTMS", scan_type="Full")
    descriptor = SpectrumDescriptor(
        spectrum_id=spectrum_id,
        file_id=file_id,
        retention_time=rt,
        scan_event=event,
        precursor_mz=precursor_mz,
        precursor_charge=precursor_charge,
    )
    mz = np.asarray(mz, dtype=np.float64)
    intensity = np.asarray(intensity, dtype=np.float64)
    order = np.argsort(mz)
    return Spectrum(descriptor=descriptor, mz=mz[order], intensity=intensity[order])


def element(consensus_id, handles, mz, rt, charge=0):
    """Consensus element from (map_index, feature_id) handles."""
    return ConsensusElement(
        consensus_id=consensus_id,
        mz=mz,
        rt=rt,
        charge=charge,
        handles=[FeatureHandle(map_index=m, feature_id=str(f)) for m, f in handles],
    )


def map_list(file_ids):
    """Positional map list whose names carry the file id tokens."""
    return [
        MapDescription(index=i, name=f"/tmp/export{i}[FileID_{fid}].featureXML")
        for i, fid in enumerate(file_ids)
    ]


@pytest.fixture
def make_feature():
    return feature


@pytest.fixture
def make_hull():
    return hull


@pytest.fixture
def make_spectrum():
    return spectrum


@pytest.fixture
def make_element():
    return element


@pytest.fixture
def make_map_list():
    return map_list


@pytest.fixture
def two_files():
    return [SampleFile(11, "/data/a.raw"), SampleFile(12, "/data/b.raw")]


@pytest.fixture
def three_files():
    return [SampleFile(11, "/data/a.raw"), SampleFile(12, "/data/b.raw"),
            SampleFile(13, "/data/c.raw")]


@pytest.fixture
def single_file():
    return [SampleFile(7, "/data/only.raw")]


# Random seed for reproducibility
@pytest.fixture(scope="session", autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
