"""Adduct candidates and neutral mass calculation.

Adducts are configured as ``"formula:signs:prior"`` strings, e.g. ``"H:+:0.9"``
(protonation), ``"Na:+:0.05"`` or ``"H-1:-:0.9"`` (deprotonation). The number of
sign characters is the charge. Singly charged adducts are expanded to their
z-fold multiples (``2H++``, ``3H+++``) up to the maximum charge, with the prior
raised to the power of z.

The ion mass of an adduct is its formula mass minus charge times the electron
mass, so that ``H+`` contributes exactly one proton mass.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..constants import ELECTRON_MASS, ELEMENT_MASSES, PROTON_MASS

ELEMENT_COUNT = re.compile(r"([A-Z][a-z]?)(-?\d*)")


@dataclass(frozen=True)
class Adduct:
    """One adduct candidate.

    Attributes
    ----------
    formula : str
        Elemental formula of the added (or, with negative counts, removed) atoms
    charge : int
        Signed charge
    prior : float
        Relative probability used to rank competing explanations
    mass : float
        Mass added to the neutral molecule, electrons accounted for
    multiplicity : int
        Number of times the base formula is added
    """
    formula: str
    charge: int
    prior: float
    mass: float
    multiplicity: int = 1

    @property
    def label(self) -> str:
        signs = ("+" if self.charge > 0 else "-") * abs(self.charge)
        prefix = str(self.multiplicity) if self.multiplicity > 1 else ""
        return f"{prefix}{self.formula}{signs}"

    def mz(self, neutral_mass: float) -> float:
        """m/z of the neutral molecule carrying this adduct."""
        return (neutral_mass + self.mass) / abs(self.charge)

    def neutral_mass(self, mz: float) -> float:
        """Neutral molecular weight of an ion observed at ``mz``."""
        return mz * abs(self.charge) - self.mass


def formula_mass(formula: str) -> float:
    """Monoisotopic mass of a formula such as ``NH4`` or ``H-1``.

    Raises
    ------
    ValueError
        For unknown elements or unparsable text
    """
    if not formula:
        raise ValueError("Empty adduct formula")

    mass = 0.0
    consumed = 0
    for match in ELEMENT_COUNT.finditer(formula):
        if match.start() != consumed:
            break
        element, count = match.group(1), match.group(2)
        if element not in ELEMENT_MASSES:
            raise ValueError(f"Unknown element {element!r} in adduct formula {formula!r}")
        n = int(count) if count not in ("", "-") else (-1 if count == "-" else 1)
        mass += n * ELEMENT_MASSES[element]
        consumed = match.end()

    if consumed != len(formula):
        raise ValueError(f"Cannot parse adduct formula {formula!r}")
    return mass


def parse_adduct(text: str) -> Adduct:
    """Parse a ``"formula:signs:prior"`` adduct definition.

    Examples
    --------
    >>> parse_adduct("Na:+:0.05").label
    'Na+'
    >>> round(parse_adduct("H:+:0.9").mass, 6)
    1.007276
    """
    parts = text.split(":")
    if len(parts) != 3:
        raise ValueError(f"Adduct definition must be 'formula:signs:prior', got {text!r}")

    formula, signs, prior_text = (p.strip() for p in parts)
    if not signs or set(signs) - {"+"} and set(signs) - {"-"}:
        raise ValueError(f"Invalid charge signs {signs!r} in adduct {text!r}")

    charge = len(signs) if signs[0] == "+" else -len(signs)
    prior = float(prior_text)
    if not 0.0 < prior <= 1.0:
        raise ValueError(f"Adduct prior must be within (0, 1], got {prior}")

    mass = formula_mass(formula) - charge * ELECTRON_MASS
    return Adduct(formula=formula, charge=charge, prior=prior, mass=mass)


def expand_adducts(definitions: Iterable[str], max_charge: int) -> List[Adduct]:
    """Parse adduct definitions and add multiply charged variants.

    Only adducts with ``|charge| <= max_charge`` are returned, ordered by
    absolute charge and then by descending prior.
    """
    expanded = []
    for text in definitions:
        base = parse_adduct(text)
        if abs(base.charge) > max_charge:
            continue
        expanded.append(base)
        if abs(base.charge) != 1:
            continue
        for z in range(2, max_charge + 1):
            expanded.append(Adduct(
                formula=base.formula,
                charge=base.charge * z,
                prior=base.prior ** z,
                mass=base.mass * z,
                multiplicity=z,
            ))

    expanded.sort(key=lambda a: (abs(a.charge), -a.prior, a.label))
    return expanded


def build_adduct_table(definitions: Iterable[str], max_charge: int) -> Dict[str, Adduct]:
    """Adducts keyed by their label, as stored on ions and groups."""
    return {a.label: a for a in expand_adducts(definitions, max_charge)}


def best_adduct_for_charge(adducts: Iterable[Adduct], charge: int) -> Optional[Adduct]:
    """Highest-prior adduct with the given absolute charge, if any."""
    candidates = [a for a in adducts if abs(a.charge) == abs(charge)]
    if not candidates:
        return None
    return max(candidates, key=lambda a: (a.prior, -len(a.label)))


def molecular_weight(
    mz: float,
    charge: int,
    adduct: Optional[Adduct] = None,
) -> float:
    """Neutral mass of an ion.

    Uses the adduct mass when the adduct is known, otherwise assumes
    protonation (deprotonation for negative charge):
    M = |z| * m/z - z * proton_mass

    Args:
        mz: Observed m/z
        charge: Signed effective charge (never 0)
        adduct: Resolved adduct, or None

    Returns:
        Neutral mass in Da
    """
    if adduct is not None:
        return adduct.neutral_mass(mz)
    return abs(charge) * mz - charge * PROTON_MASS
