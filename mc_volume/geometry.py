"""
Reference Hexagonal Lattice Geometry for Volume Sampling
========================================================

Point-location oracle for the channel-type graphite-moderated MSR:
  - Cylindrical fuel salt channels in a hexagonal lattice
  - Graphite moderator matrix surrounding the channels
  - Annular radial graphite reflector
  - Axial graphite reflector slabs above and below the core
  - Nothing (outside the model) beyond the reflectors

Any object exposing ``locate(x, y, z)``, ``cell_ids`` and ``universe_ids``
can be used in place of :class:`MSRGeometry` by the volume sampler.

Coordinate System
-----------------
- Origin at the center of the core (axially and radially)
- x, y: radial coordinates [cm]
- z: axial coordinate [cm], z=0 at core midplane

Geometry Hierarchy
------------------
Universe 0 (root)
    Cell 10  core cylinder, filled with universe 1
    Cell 20  radial reflector annulus      (graphite reflector)
    Cell 30  axial reflector slabs         (graphite reflector)
Universe 1 (core lattice)
    Cell 1   fuel salt channels            (fuel salt)
    Cell 2   graphite matrix               (graphite moderator)

A point inside a fuel channel therefore lies on the cell path (10, 1)
and the universe path (0, 1).
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .constants import (
    DomainType, MAT_FUEL_SALT, MAT_GRAPHITE_MOD, MAT_GRAPHITE_REF,
)

logger = logging.getLogger(__name__)


# =============================================================================
# GEOMETRY CONSTANTS (converted to cm)
# =============================================================================

_CORE_RADIUS_M = 0.6225          # m (core_diameter / 2 ~ 1.245 / 2)
_CORE_HEIGHT_M = 1.494           # m (H/D = 1.2 * 1.245)
_CHANNEL_RADIUS_M = 0.0125       # m (channel_diameter / 2 = 25 mm / 2)
_CHANNEL_PITCH_M = 0.05          # m (50 mm hex pitch)
_REFLECTOR_THICKNESS_M = 0.15    # m (150 mm graphite reflector)

DEFAULT_CORE_RADIUS = _CORE_RADIUS_M * 100.0        # cm
DEFAULT_CORE_HEIGHT = _CORE_HEIGHT_M * 100.0         # cm
DEFAULT_CHANNEL_RADIUS = _CHANNEL_RADIUS_M * 100.0   # cm
DEFAULT_CHANNEL_PITCH = _CHANNEL_PITCH_M * 100.0     # cm
DEFAULT_REFLECTOR_THICKNESS = _REFLECTOR_THICKNESS_M * 100.0  # cm
DEFAULT_N_CHANNELS = 562

# Cell and universe identifiers
UNIVERSE_ROOT = 0
UNIVERSE_LATTICE = 1

CELL_FUEL = 1
CELL_MODERATOR = 2
CELL_CORE = 10
CELL_RADIAL_REFLECTOR = 20
CELL_AXIAL_REFLECTOR = 30


# =============================================================================
# LOCATION RECORD
# =============================================================================

@dataclass(frozen=True)
class Location:
    """Result of a point query against a geometry.

    Attributes
    ----------
    cells : tuple of int
        Cell ids containing the point, outermost level first.
    universes : tuple of int
        Universe ids containing the point, parallel to ``cells``.
    material : int or None
        Id of the material filling the point; None for a void cell.
    """
    cells: Tuple[int, ...]
    universes: Tuple[int, ...]
    material: Optional[int]


# =============================================================================
# HELPER: HEXAGONAL GEOMETRY
# =============================================================================

def _hex_axial_to_cartesian(q: int, r: int, pitch: float) -> Tuple[float, float]:
    """Convert axial hex coordinates (q, r) to Cartesian (x, y).

    Uses flat-top hexagon orientation where the hex grid basis vectors are:
      e_q = (pitch, 0)
      e_r = (pitch/2, pitch * sqrt(3)/2)
    """
    x = pitch * (q + 0.5 * r)
    y = pitch * (math.sqrt(3.0) / 2.0) * r
    return x, y


# =============================================================================
# MSR GEOMETRY CLASS
# =============================================================================

class MSRGeometry:
    """3D hexagonal-lattice cylindrical MSR geometry.

    All dimensions are stored and computed in centimeters.

    Parameters
    ----------
    core_radius : float
        Core radius [cm].
    core_height : float
        Core full height [cm].
    channel_radius : float
        Fuel channel radius [cm].
    channel_pitch : float
        Hex lattice flat-to-flat pitch [cm].
    reflector_thickness : float
        Radial and axial reflector thickness [cm].
    n_channels : int
        Expected number of fuel channels (for validation). Pass 0 to skip
        the check.
    """

    def __init__(self,
                 core_radius: float = DEFAULT_CORE_RADIUS,
                 core_height: float = DEFAULT_CORE_HEIGHT,
                 channel_radius: float = DEFAULT_CHANNEL_RADIUS,
                 channel_pitch: float = DEFAULT_CHANNEL_PITCH,
                 reflector_thickness: float = DEFAULT_REFLECTOR_THICKNESS,
                 n_channels: int = DEFAULT_N_CHANNELS):

        if min(core_radius, core_height, channel_pitch) <= 0.0:
            raise ValueError("Core radius, core height and channel pitch must be positive")
        if channel_radius < 0.0 or reflector_thickness < 0.0:
            raise ValueError("Channel radius and reflector thickness must be non-negative")
        if 2.0 * channel_radius > channel_pitch:
            raise ValueError(
                f"Channel diameter {2*channel_radius:.3f} cm exceeds "
                f"pitch {channel_pitch:.3f} cm"
            )

        self.core_radius = core_radius
        self.core_height = core_height
        self.core_half_height = core_height / 2.0
        self.channel_radius = channel_radius
        self.channel_pitch = channel_pitch
        self.reflector_thickness = reflector_thickness
        self.outer_radius = core_radius + reflector_thickness
        self.axial_half_height = self.core_half_height + reflector_thickness

        self._channel_centers = self._generate_hex_lattice()
        self.n_channels = len(self._channel_centers)
        if self.n_channels > 0:
            self._centers_array = np.array(self._channel_centers)  # (N, 2)
        else:
            self._centers_array = np.empty((0, 2))

        self.channel_area = math.pi * channel_radius**2  # cm^2

        if n_channels > 0 and abs(self.n_channels - n_channels) > 20:
            logger.warning("Expected ~%d channels, generated %d",
                           n_channels, self.n_channels)

    def _generate_hex_lattice(self) -> List[Tuple[float, float]]:
        """Channel centers whose full channel circle fits inside the core."""
        centers = []
        pitch = self.channel_pitch
        R = self.core_radius

        max_index = int(math.ceil(R / pitch)) + 2

        for q in range(-max_index, max_index + 1):
            for r in range(-max_index, max_index + 1):
                x, y = _hex_axial_to_cartesian(q, r, pitch)
                dist = math.sqrt(x * x + y * y)
                if dist + self.channel_radius <= R:
                    centers.append((x, y))

        return centers

    # ---- Oracle interface ----
    @property
    def cell_ids(self) -> List[int]:
        return [CELL_FUEL, CELL_MODERATOR, CELL_CORE,
                CELL_RADIAL_REFLECTOR, CELL_AXIAL_REFLECTOR]

    @property
    def universe_ids(self) -> List[int]:
        return [UNIVERSE_ROOT, UNIVERSE_LATTICE]

    def bounding_box(self) -> Tuple[np.ndarray, np.ndarray]:
        """Axis-aligned box (lower_left, upper_right) enclosing the model [cm]."""
        half = np.array([self.outer_radius, self.outer_radius,
                         self.axial_half_height])
        return -half, half

    def locate(self, x: float, y: float, z: float) -> Optional[Location]:
        """Find the cells, universes and material containing a point.

        Parameters
        ----------
        x, y, z : float
            Position coordinates [cm].

        Returns
        -------
        Location or None
            None when the point lies outside the model.
        """
        abs_z = abs(z)
        if abs_z > self.axial_half_height:
            return None

        r2 = x * x + y * y
        if r2 > self.outer_radius * self.outer_radius:
            return None

        if abs_z > self.core_half_height:
            return Location((CELL_AXIAL_REFLECTOR,), (UNIVERSE_ROOT,),
                            MAT_GRAPHITE_REF)

        if r2 > self.core_radius * self.core_radius:
            return Location((CELL_RADIAL_REFLECTOR,), (UNIVERSE_ROOT,),
                            MAT_GRAPHITE_REF)

        if self._in_channel(x, y):
            return Location((CELL_CORE, CELL_FUEL),
                            (UNIVERSE_ROOT, UNIVERSE_LATTICE), MAT_FUEL_SALT)
        return Location((CELL_CORE, CELL_MODERATOR),
                        (UNIVERSE_ROOT, UNIVERSE_LATTICE), MAT_GRAPHITE_MOD)

    def find_material(self, x: float, y: float, z: float) -> Optional[int]:
        """Material id at a point, or None outside the model."""
        loc = self.locate(x, y, z)
        return None if loc is None else loc.material

    def _in_channel(self, x: float, y: float) -> bool:
        if self.n_channels == 0:
            return False
        dx = self._centers_array[:, 0] - x
        dy = self._centers_array[:, 1] - y
        return float(np.min(dx * dx + dy * dy)) <= self.channel_radius**2

    def find_nearest_channel(self, x: float, y: float) -> Tuple[int, float, float, float]:
        """Find the nearest fuel channel to a point.

        Returns
        -------
        tuple
            (channel_index, center_x, center_y, distance) where distance
            is from (x,y) to the channel center [cm].
        """
        if self.n_channels == 0:
            return -1, 0.0, 0.0, float('inf')

        dx = self._centers_array[:, 0] - x
        dy = self._centers_array[:, 1] - y
        dist2 = dx * dx + dy * dy
        idx = int(np.argmin(dist2))
        cx, cy = self._channel_centers[idx]
        return idx, cx, cy, math.sqrt(dist2[idx])

    # ---- Analytic volumes ----
    def get_fuel_volume(self) -> float:
        """Total fuel salt volume = N_channels * pi * R_channel^2 * H_core [cm^3]."""
        return self.n_channels * self.channel_area * self.core_height

    def get_core_volume(self) -> float:
        return math.pi * self.core_radius**2 * self.core_height

    def get_moderator_volume(self) -> float:
        """Graphite moderator volume in the core [cm^3]."""
        return self.get_core_volume() - self.get_fuel_volume()

    def get_radial_reflector_volume(self) -> float:
        return (math.pi * (self.outer_radius**2 - self.core_radius**2)
                * self.core_height)

    def get_axial_reflector_volume(self) -> float:
        """Both axial slabs, top and bottom [cm^3]."""
        return 2.0 * math.pi * self.outer_radius**2 * self.reflector_thickness

    def get_total_volume(self) -> float:
        return math.pi * self.outer_radius**2 * 2.0 * self.axial_half_height

    def analytic_volume(self, domain_type: DomainType, domain_id: int) -> float:
        """Exact volume of a cell, material or universe [cm^3].

        Used to verify stochastic estimates.
        """
        domain_type = DomainType(domain_type)
        if domain_type is DomainType.CELL:
            volumes = {
                CELL_FUEL: self.get_fuel_volume(),
                CELL_MODERATOR: self.get_moderator_volume(),
                CELL_CORE: self.get_core_volume(),
                CELL_RADIAL_REFLECTOR: self.get_radial_reflector_volume(),
                CELL_AXIAL_REFLECTOR: self.get_axial_reflector_volume(),
            }
        elif domain_type is DomainType.MATERIAL:
            volumes = {
                MAT_FUEL_SALT: self.get_fuel_volume(),
                MAT_GRAPHITE_MOD: self.get_moderator_volume(),
                MAT_GRAPHITE_REF: (self.get_radial_reflector_volume()
                                   + self.get_axial_reflector_volume()),
            }
        else:
            volumes = {
                UNIVERSE_ROOT: self.get_total_volume(),
                UNIVERSE_LATTICE: self.get_core_volume(),
            }
        if domain_id not in volumes:
            raise KeyError(f"No {domain_type.value} with id {domain_id}")
        return volumes[domain_id]

    def summary(self) -> str:
        """Return a formatted summary of the geometry."""
        fuel_vol = self.get_fuel_volume()
        mod_vol = self.get_moderator_volume()
        core_vol = self.get_core_volume()
        ref_vol = (self.get_radial_reflector_volume()
                   + self.get_axial_reflector_volume())

        lines = [
            "MSR Geometry Summary",
            "=" * 50,
            f"  Core radius:           {self.core_radius:10.2f} cm",
            f"  Core height:           {self.core_height:10.2f} cm",
            f"  Core volume:           {core_vol:10.0f} cm^3",
            f"  Outer radius:          {self.outer_radius:10.2f} cm",
            f"  Channel radius:        {self.channel_radius:10.2f} cm",
            f"  Channel pitch:         {self.channel_pitch:10.2f} cm",
            f"  Number of channels:    {self.n_channels:10d}",
            f"  Fuel volume:           {fuel_vol:10.0f} cm^3",
            f"  Moderator volume:      {mod_vol:10.0f} cm^3",
            f"  Reflector volume:      {ref_vol:10.0f} cm^3",
            f"  Total height:          {2 * self.axial_half_height:10.1f} cm",
        ]
        return "\n".join(lines)
