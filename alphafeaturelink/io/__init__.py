"""Readers for feature detector and feature linker result files."""

from .feature_xml import parse_feature, read_feature_xml
from .consensus_xml import (
    consensus_from_feature_map,
    read_consensus_xml,
    restore_original_retention_times,
)

__all__ = [
    'parse_feature',
    'read_feature_xml',
    'consensus_from_feature_map',
    'read_consensus_xml',
    'restore_original_retention_times',
]
