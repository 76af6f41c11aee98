"""Streaming reader for linker result files (consensusXML).

The map list gives the positional index and display name of every input
map; consensus elements carry a centroid and the handles of the grouped
features. Consensus ids are assigned sequentially in file order, starting
at 1. Retention times are converted from seconds to minutes.
"""

import logging
from typing import Dict, Mapping, Optional

from lxml.etree import iterparse

from ..models import (
    ConsensusElement,
    ConsensusMap,
    FeatureHandle,
    FeatureMap,
    MapDescription,
)
from .feature_xml import _local

logger = logging.getLogger(__name__)


def _parse_element(elem, consensus_id: int) -> ConsensusElement:
    element = ConsensusElement(
        consensus_id=consensus_id,
        mz=0.0,
        rt=0.0,
        charge=int(elem.get("charge", "0")),
        quality=float(elem.get("quality", "0")),
    )
    for child in elem:
        tag = _local(child.tag)
        if tag == "centroid":
            element.rt = float(child.get("rt")) / 60.0
            element.mz = float(child.get("mz"))
        elif tag == "groupedElementList":
            for handle in child:
                if _local(handle.tag) != "element":
                    continue
                element.handles.append(FeatureHandle(
                    map_index=int(handle.get("map")),
                    feature_id=handle.get("id"),
                    rt=float(handle.get("rt", "0")) / 60.0,
                    mz=float(handle.get("mz", "0")),
                    intensity=float(handle.get("it", "0")),
                ))
    return element


def read_consensus_xml(path: str) -> ConsensusMap:
    """Read the map list and all consensus elements of a consensusXML file."""
    consensus_map = ConsensusMap()
    next_id = 1

    for event, elem in iterparse(str(path), events=("end",)):
        tag = _local(elem.tag)
        if tag == "map":
            consensus_map.maps.append(MapDescription(
                index=int(elem.get("id")),
                name=elem.get("name", ""),
                size=int(elem.get("size", "0")),
            ))
        elif tag == "consensusElement":
            consensus_map.elements.append(_parse_element(elem, next_id))
            next_id += 1
            elem.clear()

    logger.info(
        f"Read {len(consensus_map.elements)} consensus elements "
        f"over {len(consensus_map.maps)} maps from {path}"
    )
    return consensus_map


def restore_original_retention_times(
    consensus_map: ConsensusMap,
    feature_maps: Mapping[int, FeatureMap],
) -> int:
    """Replace aligned handle RTs with the unaligned detector RTs.

    Args:
        consensus_map: Linker result built from aligned features
        feature_maps: Unaligned feature maps by positional map index

    Returns:
        Number of handles updated. Centroids keep their aligned values.
    """
    original_rt: Dict[int, Dict[str, float]] = {
        index: {f.feature_id: f.rt for f in fmap.features}
        for index, fmap in feature_maps.items()
    }

    updated = 0
    for element in consensus_map.elements:
        handles = []
        for handle in element.handles:
            rt = original_rt.get(handle.map_index, {}).get(handle.feature_id)
            if rt is not None and rt != handle.rt:
                handle = FeatureHandle(
                    map_index=handle.map_index,
                    feature_id=handle.feature_id,
                    rt=rt,
                    mz=handle.mz,
                    intensity=handle.intensity,
                )
                updated += 1
            handles.append(handle)
        element.handles = handles

    logger.info(f"✓ Restored original retention times of {updated} feature handles")
    return updated


def consensus_from_feature_map(
    feature_map: FeatureMap,
    map_name: Optional[str] = None,
) -> ConsensusMap:
    """Single-file conversion: one consensus element per feature."""
    consensus_map = ConsensusMap(
        maps=[MapDescription(
            index=0,
            name=map_name or feature_map.name,
            size=len(feature_map.features),
        )],
    )
    for consensus_id, feature in enumerate(feature_map.features, start=1):
        consensus_map.elements.append(ConsensusElement(
            consensus_id=consensus_id,
            mz=feature.mz,
            rt=feature.rt,
            charge=feature.charge,
            quality=feature.quality,
            handles=[FeatureHandle(
                map_index=0,
                feature_id=feature.feature_id,
                rt=feature.rt,
                mz=feature.mz,
            )],
        ))
    return consensus_map
