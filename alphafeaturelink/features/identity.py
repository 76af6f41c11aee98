"""Translation between positional tool identifiers and stable file identifiers.

External linking and decharging tools refer to input files only by their
position in the consensus map's file list. The original file identifier is
carried as a ``[FileID_<n>]`` token inside each map's display name, which is
the name of the file exported for the detector.

The table is built once per run, validated eagerly, and every
RawFeature -> SampleFile lookup goes through it.
"""

import logging
import re
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from ..exceptions import IdentityMappingError
from ..models import (
    ConsensusGroup,
    ConsensusMap,
    FeatureKey,
    FeatureHandle,
    MapDescription,
    RawFeature,
    SampleFile,
)
from ..tables import WriteOnceTable

logger = logging.getLogger(__name__)

FILE_ID_TOKEN = re.compile(r"\[FileID_(\d+)\]")


def tag_file_name(stem: str, file_id: int, suffix: str = ".mzML") -> str:
    """Build an exported file name carrying the file id token.

    Examples
    --------
    >>> tag_file_name("0a1b", 7)
    '0a1b[FileID_7].mzML'
    """
    return f"{stem}[FileID_{file_id}]{suffix}"


def parse_file_id_token(name: str) -> int:
    """Extract the embedded file id from a map display name.

    Raises
    ------
    IdentityMappingError
        If the name carries no token or more than one.
    """
    tokens = FILE_ID_TOKEN.findall(name)
    if not tokens:
        raise IdentityMappingError(f"No [FileID_<n>] token in map name {name!r}")
    if len(set(tokens)) > 1:
        raise IdentityMappingError(f"Ambiguous [FileID_<n>] tokens in map name {name!r}")
    return int(tokens[0])


class IdentityMapper:
    """Bijection from positional map index to SampleFile identifier.

    Examples
    --------
    >>> files = [SampleFile(3, "a.raw"), SampleFile(5, "b.raw")]
    >>> maps = [MapDescription(0, "x[FileID_5].featureXML"),
    ...         MapDescription(1, "y[FileID_3].featureXML")]
    >>> mapper = IdentityMapper.from_maps(maps, files)
    >>> mapper.file_id(0), mapper.file_id(1)
    (5, 3)
    """

    def __init__(self, table: WriteOnceTable, sample_files: Sequence[SampleFile]):
        self._table = table
        self._files = {f.file_id: f for f in sample_files}

    @classmethod
    def from_maps(
        cls,
        maps: Sequence[MapDescription],
        sample_files: Sequence[SampleFile],
    ) -> 'IdentityMapper':
        """Build and validate the positional table.

        In the single-file case the identifier is taken from the sole
        SampleFile and map names are not parsed.
        """
        if not sample_files:
            raise IdentityMappingError("No sample files given")

        file_ids = [f.file_id for f in sample_files]
        if len(set(file_ids)) != len(file_ids):
            raise IdentityMappingError(f"Duplicate sample file ids: {file_ids}")

        table = WriteOnceTable("identity map")

        if len(sample_files) == 1:
            table[0] = sample_files[0].file_id
            return cls(table, sample_files)

        if len(maps) != len(sample_files):
            raise IdentityMappingError(
                f"Consensus map lists {len(maps)} maps for {len(sample_files)} input files"
            )

        bound: Dict[int, int] = {}
        for desc in maps:
            if not 0 <= desc.index < len(sample_files):
                raise IdentityMappingError(f"Map index {desc.index} out of range")
            file_id = parse_file_id_token(desc.name)
            if file_id in bound:
                raise IdentityMappingError(
                    f"File id {file_id} is bound to maps {bound[file_id]} and {desc.index}"
                )
            if file_id not in file_ids:
                raise IdentityMappingError(f"Map {desc.index} refers to unknown file id {file_id}")
            if desc.index in table:
                raise IdentityMappingError(f"Map index {desc.index} listed twice")
            table[desc.index] = file_id
            bound[file_id] = desc.index
            logger.debug(f"Map {desc.index} -> file id {file_id} ({desc.name})")

        logger.info(f"✓ Bound {len(table)} consensus maps to input files")
        return cls(table, sample_files)

    @classmethod
    def from_consensus_map(
        cls,
        consensus_map: ConsensusMap,
        sample_files: Sequence[SampleFile],
    ) -> 'IdentityMapper':
        return cls.from_maps(consensus_map.maps, sample_files)

    def file_id(self, map_index: int) -> int:
        try:
            return self._table[map_index]
        except KeyError:
            raise IdentityMappingError(f"Unknown map index {map_index}") from None

    def sample_file(self, map_index: int) -> SampleFile:
        return self._files[self.file_id(map_index)]

    def feature_key(self, handle: FeatureHandle) -> FeatureKey:
        """Translate a consensus handle into the stable feature identity."""
        return FeatureKey(self.file_id(handle.map_index), handle.feature_id)

    def items(self) -> Iterable[Tuple[int, int]]:
        return self._table.items()

    @property
    def file_ids(self) -> List[int]:
        """File ids in positional order."""
        return [self._table[i] for i in sorted(self._table)]

    def __len__(self) -> int:
        return len(self._table)


def build_consensus_groups(
    consensus_map: ConsensusMap,
    mapper: IdentityMapper,
    features_by_file: Mapping[int, Sequence[RawFeature]],
) -> Tuple[List[ConsensusGroup], WriteOnceTable]:
    """Translate consensus elements into stable identity space.

    Every detector feature ends up in exactly one group: features not
    referenced by any consensus element get a singleton group with an id
    above the linker's ids.

    Returns:
        (groups, FeatureKey -> ConsensusGroup table)

    Raises:
        IdentityMappingError: If a feature is referenced by two elements
    """
    known = {
        FeatureKey(file_id, f.feature_id)
        for file_id, features in features_by_file.items()
        for f in features
    }
    by_feature = WriteOnceTable("consensus membership")
    groups = []

    for element in consensus_map.elements:
        members = []
        for handle in element.handles:
            key = mapper.feature_key(handle)
            if key not in known:
                logger.warning(
                    f"Consensus element {element.consensus_id} references unknown "
                    f"feature {key.feature_id} of file {key.file_id}"
                )
                continue
            members.append(key)
        if not members:
            continue

        group = ConsensusGroup(
            consensus_id=element.consensus_id,
            members=tuple(members),
            mz=element.mz,
            rt=element.rt,
            majority_charge=element.charge or None,
        )
        for key in members:
            if key in by_feature:
                raise IdentityMappingError(
                    f"Feature {key.feature_id} of file {key.file_id} is linked by "
                    f"consensus elements {by_feature[key].consensus_id} and {element.consensus_id}"
                )
            by_feature[key] = group
        groups.append(group)

    next_id = max((g.consensus_id for g in groups), default=0) + 1
    singletons = 0
    for file_id in sorted(features_by_file):
        for feature in features_by_file[file_id]:
            key = FeatureKey(file_id, feature.feature_id)
            if key in by_feature:
                continue
            group = ConsensusGroup(
                consensus_id=next_id,
                members=(key,),
                mz=feature.mz,
                rt=feature.rt,
            )
            by_feature[key] = group
            groups.append(group)
            next_id += 1
            singletons += 1

    logger.info(
        f"✓ {len(groups)} consensus groups ({singletons} singletons) "
        f"covering {len(by_feature)} features"
    )
    return groups, by_feature
