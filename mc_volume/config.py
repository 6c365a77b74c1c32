"""
Default Settings for Stochastic Volume Calculations

Module-level defaults used when a volume calculation descriptor leaves a
value unspecified, plus the locations where the command-line driver
writes its results.

Usage:
    from mc_volume.config import DEFAULT_SEED, RESULTS_DIR
"""

import os

# =============================================================================
# SAMPLING
# =============================================================================

DEFAULT_SEED = 1                  # master seed of the sampling stream
DEFAULT_SEED_OFFSET = 0           # first stream block used by a run
DEFAULT_N_SAMPLES = 100_000       # points per batch (CLI demo)
DEFAULT_MAX_ITERATIONS = 50       # cap on batches when a threshold is set

# =============================================================================
# OUTPUT
# =============================================================================

HDF5_FILETYPE = 'volume'
HDF5_VERSION = (1, 0)             # (major, minor) of the results layout

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
RESULTS_DIR = os.path.join(PROJECT_ROOT, 'results')
FIGURES_DIR = os.path.join(PROJECT_ROOT, 'figures')
