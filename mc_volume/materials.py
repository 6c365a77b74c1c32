"""
Material Compositions for Volume and Atom-Count Estimation
==========================================================

Provides the material composition registry consumed by the volume
sampler: for a material id it returns the nuclide indices present in the
material and their atom densities. Nuclides are numbered globally in the
order they are first registered, so that atom counts from different
materials (and different partial runs) can be summed position-wise.

Reference materials for the 40 MWth Marine MSR:
  1. Fuel salt (FLiBe + UF4) with enrichment and temperature dependence
  2. Graphite moderator (IG-110 nuclear grade)
  3. Graphite reflector (same material, separate instance for tallying)

Units
-----
Mass densities in g/cm^3, atom densities in atoms/barn-cm.

Density Correlations
--------------------
- FLiBe salt: rho [kg/m^3] = 2413.0 - 0.488 * T[C]
- IG-110 graphite: 1780 kg/m^3 (temperature independent here)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Tuple

import numpy as np

from .constants import (
    AVOGADRO, BARN_TO_CM2, ATOMIC_MASS, C13_ABUNDANCE, CARBON_MASS,
    MAT_FUEL_SALT, MAT_GRAPHITE_MOD, MAT_GRAPHITE_REF, MATERIAL_NAMES,
    uranium_atom_fractions,
)

logger = logging.getLogger(__name__)


# =============================================================================
# MATERIAL DATACLASS
# =============================================================================

@dataclass
class Material:
    """Homogeneous material described by nuclide atom densities.

    Attributes
    ----------
    mat_id : int
        Unique material identifier.
    name : str
        Human-readable material name.
    nuclides : ndarray of int, shape (n,)
        Global nuclide indices present in the material (unique).
    atom_densities : ndarray, shape (n,)
        Atom density of each nuclide [atoms/b-cm], parallel to ``nuclides``.
    density : float
        Mass density [g/cm^3], informational.
    temperature : float
        Temperature [K], informational.
    """
    mat_id: int
    name: str
    nuclides: np.ndarray = field(repr=False)
    atom_densities: np.ndarray = field(repr=False)
    density: float = 0.0
    temperature: float = 293.6

    def __post_init__(self):
        self.nuclides = np.asarray(self.nuclides, dtype=np.int64)
        self.atom_densities = np.asarray(self.atom_densities, dtype=np.float64)
        if self.nuclides.shape != self.atom_densities.shape:
            raise ValueError(
                f"Material {self.mat_id}: {self.nuclides.size} nuclides but "
                f"{self.atom_densities.size} atom densities"
            )
        if np.unique(self.nuclides).size != self.nuclides.size:
            raise ValueError(f"Material {self.mat_id}: duplicate nuclide indices")
        if np.any(self.atom_densities < 0.0):
            raise ValueError(f"Material {self.mat_id}: negative atom density")

    @property
    def total_atom_density(self) -> float:
        """Sum of all nuclide atom densities [atoms/b-cm]."""
        return float(np.sum(self.atom_densities))


# =============================================================================
# REGISTRY
# =============================================================================

class MaterialRegistry:
    """Registry of materials and the global nuclide index table.

    Examples
    --------
    >>> reg = MaterialRegistry()
    >>> mat = reg.add_material(7, 'water', {'H1': 0.0667, 'O16': 0.0334})
    >>> reg.nuclide_names
    ['H1', 'O16']
    """

    def __init__(self):
        self._nuclide_names: List[str] = []
        self._nuclide_index: Dict[str, int] = {}
        self._materials: Dict[int, Material] = {}

    # ---- Nuclides ----
    def nuclide_index(self, name: str) -> int:
        """Index of a nuclide, registering it on first use."""
        idx = self._nuclide_index.get(name)
        if idx is None:
            idx = len(self._nuclide_names)
            self._nuclide_names.append(name)
            self._nuclide_index[name] = idx
        return idx

    def nuclide_name(self, index: int) -> str:
        if not 0 <= index < len(self._nuclide_names):
            raise KeyError(f"No nuclide with index {index}")
        return self._nuclide_names[index]

    @property
    def nuclide_names(self) -> List[str]:
        return list(self._nuclide_names)

    # ---- Materials ----
    def add_material(self, mat_id: int, name: str,
                     composition: Mapping[str, float],
                     density: float = 0.0,
                     temperature: float = 293.6) -> Material:
        """Register a material from a {nuclide name: atom density} mapping.

        Parameters
        ----------
        mat_id : int
            Material identifier; must not already be registered.
        name : str
            Material name.
        composition : mapping of str -> float
            Atom density of each nuclide [atoms/b-cm].
        density : float
            Mass density [g/cm^3].
        temperature : float
            Temperature [K].

        Returns
        -------
        Material
            The registered material.
        """
        if mat_id in self._materials:
            raise ValueError(f"Material {mat_id} is already registered")
        nuclides = [self.nuclide_index(nuc) for nuc in composition]
        densities = [float(composition[nuc]) for nuc in composition]
        mat = Material(mat_id=mat_id, name=name,
                       nuclides=np.array(nuclides, dtype=np.int64),
                       atom_densities=np.array(densities),
                       density=density, temperature=temperature)
        self._materials[mat_id] = mat
        logger.debug("Registered material %d (%s) with %d nuclides",
                     mat_id, name, len(nuclides))
        return mat

    def __getitem__(self, mat_id: int) -> Material:
        try:
            return self._materials[mat_id]
        except KeyError:
            raise KeyError(f"No material with id {mat_id}") from None

    def __contains__(self, mat_id) -> bool:
        return mat_id in self._materials

    def __iter__(self) -> Iterator[Material]:
        return iter(self._materials.values())

    def __len__(self) -> int:
        return len(self._materials)

    @property
    def ids(self) -> List[int]:
        return list(self._materials)

    def composition(self, mat_id: int) -> Tuple[np.ndarray, np.ndarray]:
        """Return (nuclide indices, atom densities [atoms/b-cm]) of a material."""
        mat = self[mat_id]
        return mat.nuclides, mat.atom_densities

    def summary(self) -> str:
        """Return a formatted table of all registered compositions."""
        lines = []
        for mat in self:
            lines.append(f"Material: {mat.name} (ID={mat.mat_id})")
            lines.append(f"  Density:     {mat.density:.4f} g/cm^3")
            lines.append(f"  Temperature: {mat.temperature:.1f} K")
            lines.append(f"  {'Nuclide':>8s}  {'N [at/b-cm]':>12s}")
            for idx, n in zip(mat.nuclides, mat.atom_densities):
                lines.append(f"  {self.nuclide_name(int(idx)):>8s}  {n:12.5e}")
        return "\n".join(lines)


# =============================================================================
# REFERENCE COMPOSITIONS
# =============================================================================

# Fuel salt molar composition (mol fraction of formula units)
_LIF_FRACTION = 0.645
_BEF2_FRACTION = 0.305
_UF4_FRACTION = 0.05
_LI7_ENRICHMENT = 0.99995         # atom fraction of Li-7 in lithium

# IG-110 graphite density [g/cm^3]
_GRAPHITE_DENSITY = 1.780


def flibe_density(temperature: float) -> float:
    """FLiBe + UF4 salt density [g/cm^3] at temperature [K]."""
    T_C = temperature - 273.15
    return (2413.0 - 0.488 * T_C) / 1000.0


def fuel_salt_composition(enrichment: float = 0.12,
                          temperature: float = 923.15) -> Dict[str, float]:
    """Atom densities of FLiBe + UF4 fuel salt.

    The salt is treated as a mixture of formula units LiF, BeF2 and UF4
    in the reference mole fractions. The number density of formula units
    follows from the temperature-dependent mass density and the mean
    molar mass of the mixture; each nuclide density is then the formula
    unit density times the number of atoms of that nuclide per unit.

    Parameters
    ----------
    enrichment : float
        U-235 mass fraction in uranium. Default 0.12 (12% HALEU).
    temperature : float
        Salt temperature [K]. Default 923.15 K (650 C).

    Returns
    -------
    dict
        Nuclide name -> atom density [atoms/b-cm].
    """
    u_frac = uranium_atom_fractions(enrichment)
    li_mass = (_LI7_ENRICHMENT * ATOMIC_MASS['Li7']
               + (1.0 - _LI7_ENRICHMENT) * ATOMIC_MASS['Li6'])
    u_mass = u_frac[0] * ATOMIC_MASS['U235'] + u_frac[1] * ATOMIC_MASS['U238']
    f_mass = ATOMIC_MASS['F19']

    molar_mass = (_LIF_FRACTION * (li_mass + f_mass)
                  + _BEF2_FRACTION * (ATOMIC_MASS['Be9'] + 2.0 * f_mass)
                  + _UF4_FRACTION * (u_mass + 4.0 * f_mass))

    # formula units per barn-cm
    units = flibe_density(temperature) * AVOGADRO / molar_mass * BARN_TO_CM2

    return {
        'Li6': units * _LIF_FRACTION * (1.0 - _LI7_ENRICHMENT),
        'Li7': units * _LIF_FRACTION * _LI7_ENRICHMENT,
        'Be9': units * _BEF2_FRACTION,
        'F19': units * (_LIF_FRACTION + 2.0 * _BEF2_FRACTION + 4.0 * _UF4_FRACTION),
        'U235': units * _UF4_FRACTION * u_frac[0],
        'U238': units * _UF4_FRACTION * u_frac[1],
    }


def graphite_composition(density: float = _GRAPHITE_DENSITY) -> Dict[str, float]:
    """Atom densities of natural-carbon graphite at a mass density [g/cm^3]."""
    carbon = density * AVOGADRO / CARBON_MASS * BARN_TO_CM2
    return {
        'C12': carbon * (1.0 - C13_ABUNDANCE),
        'C13': carbon * C13_ABUNDANCE,
    }


def create_msr_materials(enrichment: float = 0.12,
                         temperature: float = 923.15) -> MaterialRegistry:
    """Create the registry of all materials of the reference MSR model.

    Parameters
    ----------
    enrichment : float
        U-235 mass fraction. Default 0.12 (12% HALEU).
    temperature : float
        Core average temperature [K]. Default 923.15 K (650 C).
        The reflector is set to (temperature - 50 K).

    Returns
    -------
    MaterialRegistry
        Registry with MAT_FUEL_SALT (1), MAT_GRAPHITE_MOD (2) and
        MAT_GRAPHITE_REF (3).
    """
    registry = MaterialRegistry()
    registry.add_material(
        MAT_FUEL_SALT,
        f"FLiBe+UF4 ({enrichment*100:.1f}% enr, {temperature-273.15:.0f}C)",
        fuel_salt_composition(enrichment, temperature),
        density=flibe_density(temperature),
        temperature=temperature,
    )
    registry.add_material(
        MAT_GRAPHITE_MOD,
        f"IG-110 {MATERIAL_NAMES[MAT_GRAPHITE_MOD]}",
        graphite_composition(),
        density=_GRAPHITE_DENSITY,
        temperature=temperature,
    )
    registry.add_material(
        MAT_GRAPHITE_REF,
        f"IG-110 {MATERIAL_NAMES[MAT_GRAPHITE_REF]}",
        graphite_composition(),
        density=_GRAPHITE_DENSITY,
        temperature=temperature - 50.0,
    )
    return registry
