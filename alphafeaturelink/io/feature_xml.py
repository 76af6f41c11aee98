"""Streaming reader for detector feature files (featureXML).

Only top-level features are read; subordinate features are ignored.
Retention times are converted from seconds to minutes. Feature ids lose
their two character prefix (``f_``), matching the ids used by consensus
element handles.
"""

import logging
from typing import List, Optional

import numpy as np
from lxml.etree import iterparse

from ..exceptions import MalformedFeatureError
from ..models import ConvexHull, FeatureMap, RawFeature

logger = logging.getLogger(__name__)

_FEATURE_TAG = "feature"
_FEATURE_LIST_TAG = "featureList"
_MASSTRACE_INTENSITY = "masstrace_intensity_"


def _local(tag) -> str:
    """Tag name without namespace."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def _parse_hull(hull_elem) -> ConvexHull:
    nr = int(hull_elem.get("nr", "0"))
    points = [
        (float(pt.get("x")) / 60.0, float(pt.get("y")))
        for pt in hull_elem
        if _local(pt.tag) == "pt"
    ]
    return ConvexHull(
        isotope_index=nr,
        points=np.array(points, dtype=np.float64).reshape(-1, 2),
    )


def parse_feature(elem) -> RawFeature:
    """Convert one ``<feature>`` element.

    Raises:
        MalformedFeatureError: If RT, m/z or charge is missing
    """
    raw_id = elem.get("id", "")
    feature_id = raw_id[2:]

    rt: Optional[float] = None
    mz: Optional[float] = None
    charge: Optional[int] = None
    quality = 0.0
    hulls: List[ConvexHull] = []
    intensities = {}

    for child in elem:
        tag = _local(child.tag)
        if tag == "position":
            dim = child.get("dim")
            if dim == "0":
                rt = float(child.text) / 60.0
            elif dim == "1":
                mz = float(child.text)
        elif tag == "charge":
            charge = int(child.text)
        elif tag == "overallquality":
            quality = float(child.text)
        elif tag == "convexhull":
            hulls.append(_parse_hull(child))
        elif tag == "userParam":
            name = child.get("name", "")
            if name.startswith(_MASSTRACE_INTENSITY):
                nr = int(name[len(_MASSTRACE_INTENSITY):])
                intensities[nr] = float(child.get("value"))

    if rt is None or mz is None:
        raise MalformedFeatureError(feature_id or raw_id, "missing position")
    if charge is None:
        raise MalformedFeatureError(feature_id or raw_id, "missing charge")

    # Hull intensities stay None when absent; the ion builder rejects those
    for hull in hulls:
        hull.intensity = intensities.get(hull.isotope_index)

    return RawFeature(
        feature_id=feature_id,
        mz=mz,
        rt=rt,
        charge=charge,
        hulls=hulls,
        quality=quality,
    )


def read_feature_xml(path: str, name: Optional[str] = None) -> FeatureMap:
    """Read all top-level features of a featureXML file.

    Args:
        path: featureXML file
        name: Map name, defaults to the path

    Returns:
        FeatureMap; malformed features are logged and skipped
    """
    feature_map = FeatureMap(name=name or str(path))
    skipped = 0

    for event, elem in iterparse(str(path), events=("end",)):
        if _local(elem.tag) != _FEATURE_TAG:
            continue
        parent = elem.getparent()
        if parent is None or _local(parent.tag) != _FEATURE_LIST_TAG:
            continue

        try:
            feature_map.features.append(parse_feature(elem))
        except (MalformedFeatureError, ValueError, TypeError) as e:
            logger.warning(f"Skipping feature in {path}: {e}")
            skipped += 1
        finally:
            elem.clear()

    logger.info(f"Read {len(feature_map.features)} features from {path} ({skipped} skipped)")
    return feature_map
