"""
Stochastic Volume Calculation Package
=====================================

Monte Carlo estimation of the volume of cells, materials and universes of
a combinatorial geometry, together with the number of atoms of every
nuclide inside them, for the 40 MWth Marine Molten Salt Reactor (MSR)
model and any other geometry exposing the same point-location interface.

Modules
-------
constants
    Physical constants, domain types, material ids and nuclide data.
config
    Default seeds, sample counts and output locations.
materials
    Material composition registry and the FLiBe + UF4 / graphite
    compositions of the reference model.
geometry
    Hexagonal lattice MSR geometry with a point-location oracle and
    analytic reference volumes.
volume
    Volume sampler, per-domain results and their statistical combination.
output
    HDF5 results files and summary tables.
plotting
    Convergence figures.
run_volume
    Command-line driver.
"""

from .constants import DomainType, ThresholdType
from .geometry import Location, MSRGeometry
from .materials import Material, MaterialRegistry, create_msr_materials
from .volume import (
    Result, Threshold, VolumeCalculation, VolumeCalculationSet,
    combine, combine_results, reduce_results, run_partitioned,
    read_volume_calcs, write_volume_calcs,
)

__version__ = "0.1.0"
__author__ = "MSR Design Team"
