"""
Physical Constants and Identifiers for Stochastic Volume Calculations
=====================================================================

Defines the fundamental constants used to convert sampled hit fractions
into atom counts, the material and domain identifiers of the reference
MSR model, and the nuclide data (atomic masses, natural abundances)
needed to build material compositions.

Units
-----
- Lengths in centimeters, volumes in cm^3 (nuclear convention)
- Atom densities in atoms/barn-cm
- Atomic masses in g/mol
"""

import enum

import numpy as np

# =============================================================================
# FUNDAMENTAL PHYSICAL CONSTANTS
# =============================================================================

AVOGADRO = 6.02214076e23          # atoms/mol  (Avogadro's number)
BARN_TO_CM2 = 1.0e-24             # cm^2/barn

ATOMS_PER_BARN_CM = 1.0 / BARN_TO_CM2
"""Conversion from atom density [atoms/b-cm] x volume [cm^3] to atoms.

An atom density of 1 atom/b-cm is 1e24 atoms/cm^3, so the number of atoms
of a nuclide in a region is N [atoms/b-cm] * V [cm^3] * 1e24.
"""

# =============================================================================
# DOMAIN TYPES
# =============================================================================


class DomainType(enum.Enum):
    """Kind of geometric domain whose volume is estimated.

    A sampled point belongs to a CELL domain when the cell id appears
    anywhere on the point's cell path (any geometry level), to a UNIVERSE
    domain when the universe id does, and to a MATERIAL domain when the
    point is filled with that material.
    """
    CELL = 'cell'
    MATERIAL = 'material'
    UNIVERSE = 'universe'

    @classmethod
    def from_string(cls, value: str) -> 'DomainType':
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(d.value for d in cls)
            raise ValueError(
                f"Unknown domain type '{value}'. Use one of: {valid}"
            ) from None


class ThresholdType(enum.Enum):
    """Uncertainty metric used to stop an iterated volume calculation."""
    STD_DEV = 'std_dev'
    REL_ERR = 'rel_err'
    VARIANCE = 'variance'


# =============================================================================
# MATERIAL IDENTIFIERS (reference MSR model)
# =============================================================================

MAT_FUEL_SALT = 1
"""Material ID for FLiBe + UF4 fuel salt."""

MAT_GRAPHITE_MOD = 2
"""Material ID for graphite moderator (in-core)."""

MAT_GRAPHITE_REF = 3
"""Material ID for graphite reflector (ex-core)."""

MATERIAL_NAMES = {
    MAT_FUEL_SALT: 'Fuel Salt',
    MAT_GRAPHITE_MOD: 'Graphite Moderator',
    MAT_GRAPHITE_REF: 'Graphite Reflector',
}
"""Mapping from material ID to human-readable name."""

# =============================================================================
# NUCLIDE DATA
# =============================================================================

ATOMIC_MASS = {
    'Li6': 6.0151228874,
    'Li7': 7.0160034366,
    'Be9': 9.012183065,
    'C12': 12.0,
    'C13': 13.00335483507,
    'F19': 18.99840316273,
    'U235': 235.0439301,
    'U238': 238.0507884,
}
"""Atomic masses [g/mol] (AME2016)."""

C13_ABUNDANCE = 0.0107
"""Natural atom fraction of C-13 in carbon."""

CARBON_MASS = (1.0 - C13_ABUNDANCE) * ATOMIC_MASS['C12'] \
    + C13_ABUNDANCE * ATOMIC_MASS['C13']
"""Molar mass of natural carbon [g/mol] (~12.011)."""


def uranium_atom_fractions(enrichment: float) -> np.ndarray:
    """Convert a U-235 mass fraction into (U-235, U-238) atom fractions.

    Parameters
    ----------
    enrichment : float
        U-235 weight fraction, 0 < enrichment < 1.

    Returns
    -------
    ndarray, shape (2,)
        Atom fractions of U-235 and U-238 (sum to 1).
    """
    if not 0.0 < enrichment < 1.0:
        raise ValueError(f"enrichment must be in (0, 1), got {enrichment}")
    moles = np.array([enrichment / ATOMIC_MASS['U235'],
                      (1.0 - enrichment) / ATOMIC_MASS['U238']])
    return moles / moles.sum()
