"""Spectrum access and spectral tree assignment."""

from .store import InMemorySpectrumStore, partition
from .spectral_trees import (
    SpectralTreeAssigner,
    closest_index,
    collect_assigned_spectrum_ids,
)

__all__ = [
    'InMemorySpectrumStore',
    'partition',
    'SpectralTreeAssigner',
    'closest_index',
    'collect_assigned_spectrum_ids',
]
