"""
HDF5 Output of Volume Calculation Results
=========================================

File layout
-----------
/ (attributes)
    filetype        'volume'
    version         (major, minor)
    date_and_time   creation time stamp
    domain_type     'cell' | 'material' | 'universe'
    domain_ids      ids in calculation order
    samples         samples per batch
    iterations      batches merged into the results
    seed_offset     first stream block
    lower_left, upper_right
    threshold_type, threshold   (only for triggered calculations)
/domain_<id>/
    volume          (2,)   mean, std-dev [cm^3]
    nuclide_indices (n,)   global nuclide indices
    nuclides        (n,)   nuclide names (when a registry is given)
    atoms           (n, 2) mean, std-dev of atom counts
    attribute num_samples
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple

import h5py
import numpy as np

from .config import HDF5_FILETYPE, HDF5_VERSION
from .volume import Result, VolumeCalculation

logger = logging.getLogger(__name__)


def write_results_hdf5(filename, calc: VolumeCalculation,
                       results: Sequence[Result], materials=None) -> None:
    """Write volume calculation results to an HDF5 file.

    Parameters
    ----------
    filename : str or PathLike
        Path of the HDF5 file to write (overwritten).
    calc : VolumeCalculation
        Calculation that produced ``results``.
    results : sequence of Result
        One result per domain, in ``calc.domain_ids`` order.
    materials : MaterialRegistry, optional
        Used to store nuclide names next to the indices.
    """
    if len(results) != len(calc.domain_ids):
        raise ValueError(
            f"{len(results)} results for {len(calc.domain_ids)} domains"
        )

    iterations = results[0].num_samples // calc.n_samples if results else 0

    with h5py.File(filename, 'w') as f:
        f.attrs['filetype'] = HDF5_FILETYPE
        f.attrs['version'] = np.array(HDF5_VERSION)
        f.attrs['date_and_time'] = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        f.attrs['domain_type'] = calc.domain_type.value
        f.attrs['domain_ids'] = np.array(calc.domain_ids, dtype=np.int64)
        f.attrs['samples'] = calc.n_samples
        f.attrs['iterations'] = iterations
        f.attrs['seed_offset'] = calc.seed_offset
        f.attrs['lower_left'] = np.array(calc.lower_left)
        f.attrs['upper_right'] = np.array(calc.upper_right)
        if calc.threshold is not None:
            f.attrs['threshold_type'] = calc.threshold.kind.value
            f.attrs['threshold'] = calc.threshold.value

        for domain_id, result in zip(calc.domain_ids, results):
            group = f.create_group(f'domain_{domain_id}')
            group.attrs['num_samples'] = result.num_samples
            group.create_dataset('volume', data=np.array(result.volume))
            group.create_dataset('nuclide_indices',
                                 data=np.array(result.nuclides, dtype=np.int64))
            if materials is not None:
                names = [materials.nuclide_name(i) for i in result.nuclides]
                group.create_dataset('nuclides', data=np.array(names, dtype='S'))
            atoms = np.column_stack([result.atoms, result.uncertainty]) \
                if result.nuclides else np.empty((0, 2))
            group.create_dataset('atoms', data=atoms)

    logger.info("Wrote %d domain result(s) to %s", len(results), filename)


def read_results_hdf5(filename) -> Tuple[Dict[int, Result], dict]:
    """Read a results file written by :func:`write_results_hdf5`.

    Returns
    -------
    results : dict
        Domain id -> Result.
    metadata : dict
        Root attributes, plus 'nuclide_names' (domain id -> list of names)
        when names were stored.
    """
    results: Dict[int, Result] = {}
    names: Dict[int, list] = {}
    with h5py.File(filename, 'r') as f:
        filetype = f.attrs.get('filetype')
        if isinstance(filetype, bytes):
            filetype = filetype.decode()
        if filetype != HDF5_FILETYPE:
            raise ValueError(f"{filename} is not a volume results file "
                             f"(filetype={filetype!r})")
        metadata = {key: _attr_value(value) for key, value in f.attrs.items()}

        for domain_id in metadata['domain_ids']:
            group = f[f'domain_{domain_id}']
            atoms = group['atoms'][()]
            results[int(domain_id)] = Result(
                volume=tuple(group['volume'][()]),
                nuclides=group['nuclide_indices'][()].tolist(),
                atoms=atoms[:, 0].tolist(),
                uncertainty=atoms[:, 1].tolist(),
                num_samples=int(group.attrs['num_samples']),
            )
            if 'nuclides' in group:
                names[int(domain_id)] = [n.decode() for n in group['nuclides'][()]]

    if names:
        metadata['nuclide_names'] = names
    return results, metadata


def _attr_value(value):
    if isinstance(value, bytes):
        return value.decode()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def write_summary(filename, calc: VolumeCalculation, results: Sequence[Result],
                  materials=None, reference: Optional[Dict[int, float]] = None) -> None:
    """Write the plain-text summary table of :func:`format_summary`."""
    with open(filename, 'w') as f:
        f.write(format_summary(calc, results, materials, reference))
        f.write("\n")


def format_summary(calc: VolumeCalculation, results: Sequence[Result],
                   materials=None, reference: Optional[Dict[int, float]] = None) -> str:
    """Human-readable table of volumes (and atoms when a registry is given).

    ``reference`` maps domain id -> exact volume for a deviation column.
    """
    lines = [
        f"Volume calculation ({calc.domain_type.value}s), "
        f"{results[0].num_samples if results else 0} samples",
        "=" * 72,
        f"  {'Domain':>8s}  {'Volume [cm^3]':>14s}  {'Std dev':>12s}  "
        f"{'Rel err':>8s}" + (f"  {'Exact':>14s}  {'Dev/sigma':>9s}" if reference else ""),
    ]
    for domain_id, r in zip(calc.domain_ids, results):
        rel = f"{r.relative_error:8.4f}" if r.mean > 0.0 else f"{'-':>8s}"
        line = f"  {domain_id:>8d}  {r.mean:14.6e}  {r.std_dev:12.4e}  {rel}"
        if reference and domain_id in reference:
            exact = reference[domain_id]
            dev = (r.mean - exact) / r.std_dev if r.std_dev > 0.0 else 0.0
            line += f"  {exact:14.6e}  {dev:9.2f}"
        lines.append(line)
        if materials is not None:
            for nuc, atoms, unc in zip(r.nuclides, r.atoms, r.uncertainty):
                lines.append(f"  {'':>8s}    {materials.nuclide_name(nuc):>8s}  "
                             f"{atoms:14.6e} +/- {unc:10.4e} atoms")
    return "\n".join(lines)
