"""End-to-end reconciliation of per-file feature detections.

Stages run to completion in order:

1. detect features per file
2. link features across files (single file: one element per feature),
   restore unaligned RTs after map alignment
3. bind positional map indices to sample files
4. translate consensus elements into groups (singletons for unlinked features)
5. decharge with charge bounds 1..max_charge
6. resolve charge and adduct per feature
7. build ions and isotope peaks, group compounds
8. per file: rebuild XIC traces and spectral trees from the spectra

Identity and tool errors abort the run. Malformed features are skipped.
A file without MS1 spectra gets no traces or trees; the run continues.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .config import ReconciliationParams
from .constants import DEFAULT_NEGATIVE_ADDUCTS, DEFAULT_POSITIVE_ADDUCTS
from .exceptions import MissingMS1Error
from .features.adducts import build_adduct_table
from .features.charge_cascade import ChargeAssignment, ChargeResolutionCascade
from .features.compounds import CompoundGrouper
from .features.decharging import (
    AdductPairDecharger,
    DechargeFunction,
    DechargeOutcome,
    run_decharge_schedule,
)
from .features.identity import IdentityMapper, build_consensus_groups
from .features.ion_builder import FeatureIonBuilder, IonBuildResult
from .io import consensus_from_feature_map, restore_original_retention_times
from .models import (
    Compound,
    ConsensusGroup,
    ConsensusMap,
    DechargedAdductGroup,
    FeatureIon,
    FeatureKey,
    FeatureMap,
    IsotopePeak,
    Polarity,
    RetentionTimeRaster,
    SampleFile,
    SpectralTree,
    Spectrum,
    XicTrace,
)
from .spectra.spectral_trees import SpectralTreeAssigner, collect_assigned_spectrum_ids
from .tables import IdSequence, WriteOnceTable
from .xic.tracer import XICTraceGenerator, masks_from_peaks

logger = logging.getLogger(__name__)

DetectFunction = Callable[[SampleFile], FeatureMap]
LinkFunction = Callable[[Sequence[SampleFile], Sequence[FeatureMap]], ConsensusMap]


@dataclass
class ReconciliationResult:
    """All records produced by one run."""
    sample_files: List[SampleFile]
    ions: List[FeatureIon] = field(default_factory=list)
    peaks: List[IsotopePeak] = field(default_factory=list)
    compounds: List[Compound] = field(default_factory=list)
    standalone_ion_ids: List[int] = field(default_factory=list)
    consensus_groups: List[ConsensusGroup] = field(default_factory=list)
    adduct_groups: List[DechargedAdductGroup] = field(default_factory=list)
    charges: Mapping[FeatureKey, ChargeAssignment] = field(default_factory=dict)
    rasters: List[RetentionTimeRaster] = field(default_factory=list)
    traces: List[XicTrace] = field(default_factory=list)
    ion_traces: List[XicTrace] = field(default_factory=list)
    spectral_trees: Dict[int, SpectralTree] = field(default_factory=dict)
    assigned_spectra: List[Spectrum] = field(default_factory=list)
    skipped_features: Dict[int, List[str]] = field(default_factory=dict)
    failed_files: Dict[int, str] = field(default_factory=dict)

    def ions_of_file(self, file_id: int) -> List[FeatureIon]:
        return [ion for ion in self.ions if ion.file_id == file_id]

    def traces_of_file(self, file_id: int) -> List[XicTrace]:
        return [t for t in self.traces if t.file_id == file_id]


class ReconciliationPipeline:
    """Run all reconciliation stages for a set of sample files.

    Parameters
    ----------
    params : ReconciliationParams
        Workflow settings
    detect : callable
        ``detect(sample_file) -> FeatureMap``
    link : callable, optional
        ``link(sample_files, feature_maps) -> ConsensusMap``; required for
        more than one file
    decharge : callable, optional
        ``decharge(groups, max_charge) -> (groups, pairs)``; defaults to
        AdductPairDecharger. When the default positive adduct list is left in
        place and every input file is negative mode, the negative list is used.
    spectra : optional
        Spectrum source with ``descriptors(file_id)`` and
        ``read_spectra(ids, batch_size)``; trace and tree reconstruction is
        skipped without it
    """

    def __init__(
        self,
        params: ReconciliationParams,
        detect: DetectFunction,
        link: Optional[LinkFunction] = None,
        decharge: Optional[DechargeFunction] = None,
        spectra=None,
    ):
        self.params = params.validate()
        self.detect = detect
        self.link = link
        self.decharge = decharge
        self.spectra = spectra

    def run(self, sample_files: Sequence[SampleFile]) -> ReconciliationResult:
        sample_files = list(sample_files)
        if not sample_files:
            raise ValueError("No sample files given")
        logger.info(f"Reconciling features of {len(sample_files)} files")

        result = ReconciliationResult(sample_files=sample_files)
        adducts = self._adducts_for(sample_files)
        decharge = self.decharge
        if decharge is None:
            decharge = AdductPairDecharger(replace(self.params, adducts=adducts))

        feature_maps = [self.detect(f) for f in sample_files]
        features_by_file = {f.file_id: fm.features for f, fm in zip(sample_files, feature_maps)}
        logger.info(f"✓ Detected {sum(len(v) for v in features_by_file.values())} features")

        consensus_map = self._link(sample_files, feature_maps)
        mapper = IdentityMapper.from_consensus_map(consensus_map, sample_files)

        if len(sample_files) > 1 and self.params.do_map_alignment:
            maps_by_file = {f.file_id: fm for f, fm in zip(sample_files, feature_maps)}
            restore_original_retention_times(
                consensus_map,
                {index: maps_by_file[file_id] for index, file_id in mapper.items()},
            )

        groups, groups_by_feature = build_consensus_groups(consensus_map, mapper, features_by_file)
        result.consensus_groups = groups

        outcome: DechargeOutcome = run_decharge_schedule(
            groups,
            decharge,
            max_charge=self.params.max_charge,
            min_linked_samples=self.params.min_linked_samples,
            n_files=len(sample_files),
        )
        result.adduct_groups = outcome.groups

        cascade = ChargeResolutionCascade(groups_by_feature, outcome.assignments)
        result.charges = cascade.resolve_all(
            (file_id, feature)
            for file_id, features in features_by_file.items()
            for feature in features
        )

        builds = self._build_ions(sample_files, features_by_file, groups_by_feature,
                                  adducts, result)

        result.compounds, result.standalone_ion_ids = CompoundGrouper().group(
            result.ions, outcome.groups
        )

        if self.spectra is not None:
            raster_ids = IdSequence()
            trace_ids = IdSequence()
            for sample_file in sample_files:
                try:
                    self._reconstruct_file(sample_file, builds[sample_file.file_id],
                                           result, raster_ids, trace_ids)
                except MissingMS1Error as e:
                    logger.error(str(e))
                    result.failed_files[sample_file.file_id] = str(e)

        logger.info(
            f"✓ Reconciliation finished: {len(result.ions)} ions, "
            f"{len(result.compounds)} compounds, {len(result.traces)} traces"
        )
        return result

    def _adducts_for(self, sample_files: List[SampleFile]) -> List[str]:
        """Adduct candidates matching the polarity of the input files."""
        polarities = {f.polarity for f in sample_files}
        if (self.params.adducts != list(DEFAULT_POSITIVE_ADDUCTS)
                or Polarity.NEGATIVE not in polarities):
            return self.params.adducts
        if polarities == {Polarity.NEGATIVE}:
            logger.warning("All input files are negative mode, using the negative default adducts")
            return list(DEFAULT_NEGATIVE_ADDUCTS)
        logger.warning("Mixed polarity input decharged with the positive default adducts")
        return self.params.adducts

    def _link(self, sample_files: List[SampleFile], feature_maps: List[FeatureMap]) -> ConsensusMap:
        if len(sample_files) == 1:
            return consensus_from_feature_map(feature_maps[0])
        if self.link is None:
            raise ValueError("A link function is required for more than one sample file")
        return self.link(sample_files, feature_maps)

    def _build_ions(
        self,
        sample_files: List[SampleFile],
        features_by_file: Dict[int, list],
        groups_by_feature: WriteOnceTable,
        adducts: List[str],
        result: ReconciliationResult,
    ) -> Dict[int, IonBuildResult]:
        builder = FeatureIonBuilder(build_adduct_table(adducts, self.params.max_charge))
        consensus_ids = {key: group.consensus_id for key, group in groups_by_feature.items()}

        builds = {}
        for sample_file in sample_files:
            build = builder.build(
                sample_file,
                features_by_file[sample_file.file_id],
                result.charges,
                consensus_ids,
            )
            builds[sample_file.file_id] = build
            result.ions.extend(build.ions)
            result.peaks.extend(build.peaks)
            if build.skipped:
                result.skipped_features[sample_file.file_id] = build.skipped
        return builds

    def _reconstruct_file(
        self,
        sample_file: SampleFile,
        build: IonBuildResult,
        result: ReconciliationResult,
        raster_ids: IdSequence,
        trace_ids: IdSequence,
    ) -> None:
        """XIC traces and spectral trees of one file."""
        if not build.peaks:
            logger.info(f"File {sample_file.file_id}: no isotope peaks, skipping traces")
            return

        file_id = sample_file.file_id
        batch_size = self.params.spectrum_batch_size
        descriptors = sorted(
            self.spectra.descriptors(file_id),
            key=lambda d: (d.retention_time, d.spectrum_id),
        )

        ion_charges = {
            ion.ion_id: result.charges[ion.key].effective_charge(sample_file.polarity)
            for ion in build.ions
        }
        assigner = SpectralTreeAssigner(self.params.mass_tolerance_ppm)
        trees = assigner.assign(file_id, descriptors, build.peaks, ion_charges)

        # Traces
        ms1_ids = [d.spectrum_id for d in descriptors if d.ms_order == 1]
        generator = XICTraceGenerator(
            file_id, masks_from_peaks(build.peaks), self.params.mass_tolerance_ppm
        )
        for batch in self.spectra.read_spectra(ms1_ids, batch_size):
            generator.add_spectra(batch)

        raster = generator.retention_time_raster(raster_ids.next_id())
        traces = generator.traces(raster.raster_id, trace_ids)
        result.rasters.append(raster)
        result.traces.extend(traces)
        result.ion_traces.extend(generator.ion_traces(traces, trace_ids))
        logger.info(f"✓ File {file_id}: {len(traces)} traces on {len(raster)} MS1 scans")

        # Spectra attached to peaks, read in partitions
        result.spectral_trees.update(trees)
        assigned_ids = collect_assigned_spectrum_ids(trees.values())
        for batch in self.spectra.read_spectra(assigned_ids, batch_size):
            result.assigned_spectra.extend(batch)
