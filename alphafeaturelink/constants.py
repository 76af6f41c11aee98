"""Physical constants, element masses and defaults for feature reconciliation.

This module provides the physical constants used for adduct and neutral mass
calculations, the monoisotopic element masses needed to evaluate adduct
formulas, and the default workflow settings shared by the pipeline stages.

Key Features
------------
- Correct PROTON_MASS (1.007276466622 Da, not hydrogen atom mass!)
- Monoisotopic element masses for common adduct formulas
- Default adduct candidate lists per polarity
- Default tolerance settings for XIC creation and decharging

Sources
-------
- NIST physical constants: https://physics.nist.gov/cgi-bin/cuu/Value
- IUPAC monoisotopic masses: https://www.ciaaw.org/atomic-masses.htm
"""

# =============================================================================
# Fundamental Physical Constants (NIST values)
# =============================================================================

# Proton mass (NOT hydrogen atom mass!)
# Source: NIST 2018 CODATA
PROTON_MASS = 1.007276466622  # Da

# Electron mass
# Source: NIST 2018 CODATA
ELECTRON_MASS = 0.000548579909  # Da

# =============================================================================
# Monoisotopic Element Masses (Da)
# =============================================================================

ELEMENT_MASSES = {
    'H': 1.00782503207,
    'C': 12.0,
    'N': 14.0030740048,
    'O': 15.99491461956,
    'Na': 22.9897692809,
    'K': 38.96370668,
    'Cl': 34.96885268,
    'S': 31.97207100,
    'P': 30.97376163,
    'Li': 7.01600455,
    'Br': 78.9183371,
}

# =============================================================================
# Adduct Descriptions
# =============================================================================

# Ion description used whenever no adduct could be determined
UNKNOWN_ADDUCT = "unknown"

# Candidate adducts as "formula:charge_signs:prior"
# Priors are relative; they are normalised per polarity when used
DEFAULT_POSITIVE_ADDUCTS = (
    "H:+:0.9",
    "Na:+:0.05",
    "NH4:+:0.03",
    "K:+:0.02",
)

DEFAULT_NEGATIVE_ADDUCTS = (
    "H-1:-:0.9",
    "Cl:-:0.05",
    "CHO2:-:0.05",
)

# =============================================================================
# Default Settings
# =============================================================================

# Mass tolerance used for XIC creation and feature finding (ppm)
DEFAULT_MASS_TOLERANCE_PPM = 5.0
MIN_MASS_TOLERANCE_PPM = 0.2
MAX_MASS_TOLERANCE_PPM = 100.0

# Intensity threshold below which detector peaks are rejected as noise
DEFAULT_NOISE_THRESHOLD = 1000.0

# Feature linking tolerances
DEFAULT_RT_THRESHOLD_MIN = 0.33
DEFAULT_MZ_THRESHOLD_PPM = 10.0

# Decharging
DEFAULT_MIN_LINKED_SAMPLES = 3
DEFAULT_MAX_CHARGE = 3
DEFAULT_DECHARGE_MASS_MAX_DIFF = 0.001  # Th
DEFAULT_DECHARGE_RT_MAX_DIFF = 0.33     # min

# Number of spectra read from the spectrum source per batch
DEFAULT_SPECTRUM_BATCH_SIZE = 1000
