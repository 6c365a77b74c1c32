#!/usr/bin/env python3
"""
Stochastic Volume Calculation Driver
====================================

Runs one or more volume calculations against the reference MSR model,
prints a summary table for each, and writes one HDF5 results file per
calculation (``volume_1.h5``, ``volume_2.h5``, ...).

Usage
-----
    # Built-in demo: cells, materials and universes of the MSR model
    python3 -m mc_volume.run_volume

    # Calculations described in an XML file
    python3 -m mc_volume.run_volume --input volume.xml

    # Four independent partial runs merged, with a convergence figure
    python3 -m mc_volume.run_volume --workers 4 --plot

    # Keep sampling until every volume has < 1% relative error
    python3 -m mc_volume.run_volume --threshold 0.01 --threshold-type rel_err
"""

import argparse
import logging
import os
import sys
import time
import traceback
from dataclasses import replace
from typing import List, Optional

import numpy as np

from .config import DEFAULT_N_SAMPLES, RESULTS_DIR
from .constants import DomainType, ThresholdType
from .geometry import MSRGeometry
from .logging_config import setup_logging
from .materials import create_msr_materials
from .output import format_summary, write_results_hdf5
from .plotting import plot_convergence, save_figure
from .volume import (
    Threshold, VolumeCalculation, VolumeCalculationSet, combine_results,
    read_volume_calcs, run_partitioned,
)

logger = logging.getLogger(__name__)

BANNER = """
================================================================================
  STOCHASTIC VOLUME CALCULATION
  40 MWth Marine Molten Salt Reactor - Reference Model
================================================================================
"""

DIVIDER = "=" * 80


def demo_calculations(geometry: MSRGeometry, n_samples: int,
                      threshold: Optional[Threshold] = None) -> VolumeCalculationSet:
    """Cell, material and universe calculations over the whole model."""
    lower_left, upper_right = geometry.bounding_box()
    domains = [
        (DomainType.CELL, geometry.cell_ids),
        (DomainType.MATERIAL, [1, 2, 3]),
        (DomainType.UNIVERSE, geometry.universe_ids),
    ]
    return VolumeCalculationSet(
        VolumeCalculation(domain_type=dtype, domain_ids=ids, n_samples=n_samples,
                          lower_left=lower_left, upper_right=upper_right,
                          threshold=threshold)
        for dtype, ids in domains
    )


def convergence_history(calc: VolumeCalculation, geometry, materials,
                        n_batches: int) -> List[list]:
    """Cumulative per-domain results after each of ``n_batches`` batches."""
    history = []
    results = None
    for k in range(n_batches):
        batch = calc._execute(geometry, materials,
                              calc.seed_offset + k * calc.n_samples)
        results = batch if results is None else combine_results(results, batch)
        history.append(results)
    return history


def _reference_volumes(calc: VolumeCalculation, geometry: MSRGeometry) -> dict:
    reference = {}
    for domain_id in calc.domain_ids:
        try:
            reference[domain_id] = geometry.analytic_volume(calc.domain_type, domain_id)
        except KeyError:
            continue
    return reference


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Stochastic volume and atom-count estimation for the MSR model.")
    parser.add_argument('--input', '-i', help="XML file with <volume_calc> elements")
    parser.add_argument('--samples', '-n', type=int, default=DEFAULT_N_SAMPLES,
                        help="samples per batch for the built-in demo")
    parser.add_argument('--seed-offset', type=int, default=None,
                        help="override the seed offset of every calculation")
    parser.add_argument('--workers', type=int, default=1,
                        help="independent partial runs to merge")
    parser.add_argument('--threshold', type=float, default=None,
                        help="uncertainty trigger for the built-in demo")
    parser.add_argument('--threshold-type', default=ThresholdType.REL_ERR.value,
                        choices=[t.value for t in ThresholdType])
    parser.add_argument('--enrichment', type=float, default=0.12,
                        help="U-235 mass fraction of the fuel salt")
    parser.add_argument('--temperature', type=float, default=923.15,
                        help="core temperature [K]")
    parser.add_argument('--output', '-o', default=RESULTS_DIR,
                        help="directory for HDF5 results and figures")
    parser.add_argument('--plot', action='store_true',
                        help="write a convergence figure per calculation")
    parser.add_argument('--batches', type=int, default=10,
                        help="batches shown in convergence figures")
    parser.add_argument('--verbose', '-v', action='store_true')
    return parser


def main(argv=None) -> int:
    """Execute the volume calculations; returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    print(BANNER)
    t_start = time.perf_counter()

    geometry = MSRGeometry()
    materials = create_msr_materials(args.enrichment, args.temperature)
    print(geometry.summary())
    print()
    print(materials.summary())

    if args.input:
        calcs = read_volume_calcs(args.input)
    else:
        threshold = None
        if args.threshold is not None:
            threshold = Threshold(ThresholdType(args.threshold_type), args.threshold)
        calcs = demo_calculations(geometry, args.samples, threshold)

    os.makedirs(args.output, exist_ok=True)
    errors = []

    with calcs:
        for i, calc in enumerate(calcs, start=1):
            if args.seed_offset is not None:
                calc = replace(calc, seed_offset=args.seed_offset)

            print()
            print(DIVIDER)
            print(f"  [{i}/{len(calcs)}] {calc.domain_type.value.upper()} VOLUMES "
                  f"{list(calc.domain_ids)}")
            print(DIVIDER)

            try:
                if args.workers > 1:
                    results = run_partitioned(calc, geometry, materials, args.workers)
                else:
                    results = calc.execute(geometry, materials)

                print(format_summary(calc, results, materials,
                                     _reference_volumes(calc, geometry)))
                path = os.path.join(args.output, f'volume_{i}.h5')
                write_results_hdf5(path, calc, results, materials)
                print(f"\n  Results saved: {path}")

                if args.plot:
                    history = convergence_history(calc, geometry, materials,
                                                  args.batches)
                    fig = plot_convergence(history, calc.domain_ids,
                                           _reference_volumes(calc, geometry),
                                           title=f"{calc.domain_type.value} volumes")
                    fig_path = save_figure(fig, f'volume_{i}_convergence',
                                           directory=args.output)
                    print(f"  Figure saved:  {fig_path}")
            except Exception as e:
                print(f"\n  *** VOLUME CALCULATION {i} FAILED: {e} ***")
                traceback.print_exc()
                errors.append((i, str(e)))

    t_elapsed = time.perf_counter() - t_start
    print(f"\n{DIVIDER}")
    print(f"  Elapsed time:   {t_elapsed:.1f} s  (NumPy {np.__version__})")
    if errors:
        print(f"  ERRORS ({len(errors)}):")
        for i, err in errors:
            print(f"    - calculation {i}: {err}")
    print(DIVIDER)
    return 1 if errors else 0


if __name__ == '__main__':
    sys.exit(main())
