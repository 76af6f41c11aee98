"""Workflow parameters for feature reconciliation.

All stages read their settings from one ReconciliationParams instance.
Presets per polarity provide the adduct candidate lists.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List

from .constants import (
    DEFAULT_DECHARGE_MASS_MAX_DIFF,
    DEFAULT_DECHARGE_RT_MAX_DIFF,
    DEFAULT_MASS_TOLERANCE_PPM,
    DEFAULT_MAX_CHARGE,
    DEFAULT_MIN_LINKED_SAMPLES,
    DEFAULT_MZ_THRESHOLD_PPM,
    DEFAULT_NEGATIVE_ADDUCTS,
    DEFAULT_NOISE_THRESHOLD,
    DEFAULT_POSITIVE_ADDUCTS,
    DEFAULT_RT_THRESHOLD_MIN,
    DEFAULT_SPECTRUM_BATCH_SIZE,
    MAX_MASS_TOLERANCE_PPM,
    MIN_MASS_TOLERANCE_PPM,
)
from .models import Polarity


@dataclass
class ReconciliationParams:
    """Parameters for feature finding, linking, decharging and trace rebuilding.

    Uses ppm-based tolerances for m/z and minutes for retention times.
    """

    # Feature finding / XIC creation
    mass_tolerance_ppm: float = DEFAULT_MASS_TOLERANCE_PPM
    noise_threshold: float = DEFAULT_NOISE_THRESHOLD

    # Feature linking
    do_map_alignment: bool = True
    rt_threshold_min: float = DEFAULT_RT_THRESHOLD_MIN
    mz_threshold_ppm: float = DEFAULT_MZ_THRESHOLD_PPM

    # Decharging
    min_linked_samples: int = DEFAULT_MIN_LINKED_SAMPLES
    max_charge: int = DEFAULT_MAX_CHARGE
    adducts: List[str] = field(default_factory=lambda: list(DEFAULT_POSITIVE_ADDUCTS))
    decharge_mass_max_diff: float = DEFAULT_DECHARGE_MASS_MAX_DIFF  # Th
    decharge_rt_max_diff: float = DEFAULT_DECHARGE_RT_MAX_DIFF      # min

    # Spectrum retrieval
    spectrum_batch_size: int = DEFAULT_SPECTRUM_BATCH_SIZE

    @classmethod
    def for_polarity(cls, polarity: Polarity, **overrides) -> 'ReconciliationParams':
        """Create parameters with the default adduct list of a polarity.

        Args:
            polarity: Acquisition polarity
            **overrides: Any other field to set

        Returns:
            ReconciliationParams with polarity-specific adducts
        """
        if polarity == Polarity.POSITIVE:
            adducts = list(DEFAULT_POSITIVE_ADDUCTS)
        elif polarity == Polarity.NEGATIVE:
            adducts = list(DEFAULT_NEGATIVE_ADDUCTS)
        else:
            raise ValueError(f"Unknown polarity: {polarity}")
        return replace(cls(adducts=adducts), **overrides)

    def validate(self) -> 'ReconciliationParams':
        """Check parameter ranges, raising ValueError on the first violation."""
        if not MIN_MASS_TOLERANCE_PPM <= self.mass_tolerance_ppm <= MAX_MASS_TOLERANCE_PPM:
            raise ValueError(
                f"mass_tolerance_ppm must be within "
                f"[{MIN_MASS_TOLERANCE_PPM}, {MAX_MASS_TOLERANCE_PPM}] ppm, "
                f"got {self.mass_tolerance_ppm}"
            )
        if self.noise_threshold < 0:
            raise ValueError(f"noise_threshold must be >= 0, got {self.noise_threshold}")
        if self.rt_threshold_min <= 0 or self.mz_threshold_ppm <= 0:
            raise ValueError("Linking thresholds must be positive")
        if self.min_linked_samples < 1:
            raise ValueError(f"min_linked_samples must be >= 1, got {self.min_linked_samples}")
        if self.max_charge < 1:
            raise ValueError(f"max_charge must be >= 1, got {self.max_charge}")
        if not self.adducts:
            raise ValueError("At least one adduct candidate is required")
        if self.decharge_mass_max_diff <= 0 or self.decharge_rt_max_diff <= 0:
            raise ValueError("Decharging tolerances must be positive")
        if self.spectrum_batch_size < 1:
            raise ValueError(f"spectrum_batch_size must be >= 1, got {self.spectrum_batch_size}")
        return self

    def to_tool_parameters(self) -> Dict[str, str]:
        """Render the settings handed to external tools.

        RT thresholds are converted from minutes to seconds.
        """
        return {
            "mass_error_ppm": f"{self.mass_tolerance_ppm:g}",
            "noise_threshold_int": f"{self.noise_threshold:g}",
            "mz_max_difference": f"{self.mz_threshold_ppm:g}",
            "rt_max_difference": f"{self.rt_threshold_min * 60:g}",
        }
