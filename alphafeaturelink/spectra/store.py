"""Spectrum access.

A spectrum source exposes spectrum headers per file and reads full spectra
by id in bounded, sequential batches. A batch never splits a spectrum.
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from ..models import Polarity, Spectrum, SpectrumDescriptor

logger = logging.getLogger(__name__)


def partition(ids: Sequence[int], batch_size: int) -> Iterator[List[int]]:
    """Split ids into consecutive chunks of at most batch_size."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for start in range(0, len(ids), batch_size):
        yield list(ids[start:start + batch_size])


class InMemorySpectrumStore:
    """Spectrum source backed by a dictionary.

    Examples
    --------
    >>> store = InMemorySpectrumStore(spectra)
    >>> ms1 = store.descriptors(file_id=1, ms_order=1)
    >>> for batch in store.read_spectra([d.spectrum_id for d in ms1], batch_size=500):
    ...     process(batch)
    """

    def __init__(self, spectra: Iterable[Spectrum] = ()):
        self._spectra: Dict[int, Spectrum] = {}
        for spectrum in spectra:
            self.add(spectrum)

    def add(self, spectrum: Spectrum) -> None:
        if spectrum.spectrum_id in self._spectra:
            raise ValueError(f"Duplicate spectrum id {spectrum.spectrum_id}")
        self._spectra[spectrum.spectrum_id] = spectrum

    def descriptors(
        self,
        file_id: int,
        ms_order: Optional[int] = None,
        polarity: Optional[Polarity] = None,
    ) -> List[SpectrumDescriptor]:
        """Headers of one file's spectra, sorted by retention time."""
        headers = [
            s.descriptor for s in self._spectra.values()
            if s.descriptor.file_id == file_id
            and (ms_order is None or s.descriptor.ms_order == ms_order)
            and (polarity is None or s.descriptor.scan_event.polarity == polarity)
        ]
        headers.sort(key=lambda d: (d.retention_time, d.spectrum_id))
        return headers

    def read_spectra(self, spectrum_ids: Sequence[int], batch_size: int) -> Iterator[List[Spectrum]]:
        """Yield spectra in the requested order, batch_size at a time.

        Raises:
            KeyError: For unknown spectrum ids
        """
        for chunk in partition(spectrum_ids, batch_size):
            logger.debug(f"Reading {len(chunk)} spectra")
            yield [self._spectra[spectrum_id] for spectrum_id in chunk]

    def __len__(self) -> int:
        return len(self._spectra)
