"""Cross-sample feature reconciliation.

This module provides:
- Identity mapping between positional tool indices and sample files
- Adduct parsing and neutral mass calculation
- Iterative decharging with increasing charge bounds
- Three-tier charge/adduct resolution
- FeatureIon and isotope peak construction
- Compound grouping and control-sample comparison
"""

from .identity import (
    IdentityMapper,
    build_consensus_groups,
    parse_file_id_token,
    tag_file_name,
)

from .adducts import (
    Adduct,
    build_adduct_table,
    expand_adducts,
    molecular_weight,
    parse_adduct,
)

from .decharging import (
    AdductPairDecharger,
    DechargeOutcome,
    effective_min_samples,
    run_decharge_schedule,
    select_decharge_candidates,
)

from .charge_cascade import (
    ChargeAssignment,
    ChargeEvidence,
    ChargeResolutionCascade,
    EvidenceTier,
    merge_evidence,
)

from .ion_builder import (
    FeatureIonBuilder,
    IonBuildResult,
)

from .compounds import CompoundGrouper

from .consolidation import (
    Centroid,
    ComponentPeak,
    InControlStatus,
    InputFileInfo,
    build_centroid_index,
    compare_to_control,
    retrieve_component_peaks,
)

__all__ = [
    # Identity
    'IdentityMapper',
    'build_consensus_groups',
    'parse_file_id_token',
    'tag_file_name',

    # Adducts
    'Adduct',
    'build_adduct_table',
    'expand_adducts',
    'molecular_weight',
    'parse_adduct',

    # Decharging
    'AdductPairDecharger',
    'DechargeOutcome',
    'effective_min_samples',
    'run_decharge_schedule',
    'select_decharge_candidates',

    # Charge resolution
    'ChargeAssignment',
    'ChargeEvidence',
    'ChargeResolutionCascade',
    'EvidenceTier',
    'merge_evidence',

    # Ions and compounds
    'FeatureIonBuilder',
    'IonBuildResult',
    'CompoundGrouper',

    # Consolidation
    'Centroid',
    'ComponentPeak',
    'InControlStatus',
    'InputFileInfo',
    'build_centroid_index',
    'compare_to_control',
    'retrieve_component_peaks',
]
