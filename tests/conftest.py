"""Shared fixtures: stub geometry oracles and a small material registry."""

import pytest

from mc_volume.geometry import Location, MSRGeometry
from mc_volume.materials import MaterialRegistry, create_msr_materials

WATER_H1 = 0.0667
WATER_O16 = 0.0334
STEEL_FE56 = 0.0848


class UniformGeometry:
    """Every point is in cell 1 / universe 0, filled with material 7."""
    cell_ids = [1]
    universe_ids = [0]

    def locate(self, x, y, z):
        return Location((1,), (0,), 7)


class OutsideGeometry:
    """No point belongs to any cell."""
    cell_ids = [1, 2]
    universe_ids = [0]

    def locate(self, x, y, z):
        return None


class HalfSpaceGeometry:
    """Cell 1 (material 7) for x < split, void cell 2 otherwise."""
    cell_ids = [1, 2]
    universe_ids = [0]

    def __init__(self, split=0.5):
        self.split = split

    def locate(self, x, y, z):
        if x < self.split:
            return Location((1,), (0,), 7)
        return Location((2,), (0,), None)


@pytest.fixture
def registry():
    reg = MaterialRegistry()
    reg.add_material(7, 'water', {'H1': WATER_H1, 'O16': WATER_O16}, density=1.0)
    reg.add_material(8, 'steel', {'Fe56': STEEL_FE56}, density=7.85)
    return reg


@pytest.fixture
def uniform_geometry():
    return UniformGeometry()


@pytest.fixture
def outside_geometry():
    return OutsideGeometry()


@pytest.fixture
def half_space():
    return HalfSpaceGeometry()


@pytest.fixture(scope='session')
def msr_geometry():
    return MSRGeometry()


@pytest.fixture(scope='session')
def msr_materials():
    return create_msr_materials()


@pytest.fixture
def unit_cube():
    return {'lower_left': (0.0, 0.0, 0.0), 'upper_right': (1.0, 1.0, 1.0)}
