"""
Stochastic Volume Calculation
=============================

Estimates the volume of cells, materials or universes, and the number of
atoms of each nuclide inside them, by sampling points uniformly inside an
axis-aligned bounding box and asking a geometry oracle which domain and
material contains each point.

Estimators
----------
With H hits out of n samples in a box of volume V_box, the hit fraction
p = H/n is a binomial proportion and

    V      = V_box * p
    sigma  = V_box * sqrt(p (1 - p) / n)

A material m contributing H_m hits covers the fraction f_m = H_m/n of the
box; a nuclide with atom density N_k [atoms/b-cm] in that material adds

    atoms_k     += N_k * f_m * V_box * 1e24
    variance_k  += (N_k * V_box * 1e24)^2 * f_m (1 - f_m) / n

Independent partial results (different seed offsets) are merged with
:func:`combine`, a sample-count weighted mean with propagated error.

Random Numbers
--------------
Sample i of a run with seed offset s uses the first three uniforms of block
s + i of a counter-based Philox stream keyed by the master seed. A run is
therefore exactly reproducible, and runs whose offsets are n_samples apart
sample disjoint, independent points.
"""

import functools
import logging
import math
import time
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import lxml.etree as ET
import numpy as np
from scipy import stats

from .config import DEFAULT_MAX_ITERATIONS, DEFAULT_SEED, DEFAULT_SEED_OFFSET
from .constants import ATOMS_PER_BARN_CM, DomainType, ThresholdType

logger = logging.getLogger(__name__)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class Result:
    """Volume and nuclide atom estimates for a single domain.

    Attributes
    ----------
    volume : tuple of float
        (mean, standard deviation) of the domain volume [cm^3].
    nuclides : tuple of int
        Indices of the nuclides present in the domain.
    atoms : tuple of float
        Mean number of atoms of each nuclide, parallel to ``nuclides``.
    uncertainty : tuple of float
        Standard deviation of each atom count, parallel to ``nuclides``.
    num_samples : int
        Number of samples the estimate is based on.
    """
    volume: Tuple[float, float] = (0.0, 0.0)
    nuclides: Tuple[int, ...] = ()
    atoms: Tuple[float, ...] = ()
    uncertainty: Tuple[float, ...] = ()
    num_samples: int = 0

    def __post_init__(self):
        object.__setattr__(self, 'volume', tuple(float(v) for v in self.volume))
        object.__setattr__(self, 'nuclides', tuple(int(i) for i in self.nuclides))
        object.__setattr__(self, 'atoms', tuple(float(a) for a in self.atoms))
        object.__setattr__(self, 'uncertainty',
                           tuple(float(u) for u in self.uncertainty))

        if len(self.volume) != 2:
            raise ValueError(
                f"volume must hold (mean, std_dev), got {len(self.volume)} values"
            )
        if not len(self.nuclides) == len(self.atoms) == len(self.uncertainty):
            raise ValueError(
                f"nuclides ({len(self.nuclides)}), atoms ({len(self.atoms)}) and "
                f"uncertainty ({len(self.uncertainty)}) must have equal length"
            )
        if len(set(self.nuclides)) != len(self.nuclides):
            raise ValueError(f"Duplicate nuclide indices in {self.nuclides}")
        if self.num_samples < 0:
            raise ValueError(f"num_samples must be >= 0, got {self.num_samples}")

    @classmethod
    def empty(cls) -> 'Result':
        """Zero-sample result; the identity of :func:`combine`."""
        return cls()

    @property
    def mean(self) -> float:
        return self.volume[0]

    @property
    def std_dev(self) -> float:
        return self.volume[1]

    @property
    def variance(self) -> float:
        return self.volume[1]**2

    @property
    def relative_error(self) -> float:
        """std_dev / mean; infinite for a domain that was never hit."""
        if self.volume[0] == 0.0:
            return math.inf
        return self.volume[1] / self.volume[0]

    def confidence_interval(self, level: float = 0.95) -> Tuple[float, float]:
        """Two-sided normal-approximation confidence interval of the volume."""
        if not 0.0 < level < 1.0:
            raise ValueError(f"Confidence level must be in (0, 1), got {level}")
        z = stats.norm.ppf(0.5 * (1.0 + level))
        return self.volume[0] - z * self.volume[1], self.volume[0] + z * self.volume[1]

    def atoms_by_nuclide(self) -> Dict[int, Tuple[float, float]]:
        """Mapping nuclide index -> (atoms, uncertainty)."""
        return {nuc: (a, u) for nuc, a, u
                in zip(self.nuclides, self.atoms, self.uncertainty)}

    def __add__(self, other: 'Result') -> 'Result':
        if not isinstance(other, Result):
            return NotImplemented
        return combine(self, other)


def _merge_estimate(n1: int, mean1: float, std1: float,
                    n2: int, mean2: float, std2: float) -> Tuple[float, float]:
    """Sample-weighted mean and propagated std-dev of two estimates.

    The std-dev is sqrt(n1 s1^2 + n2 s2^2) / (n1 + n2). This does not
    reduce to the standard error of the pooled mean (that would need a
    sqrt(n1 + n2) normalisation); it is kept for compatibility with
    existing result files.
    """
    n = n1 + n2
    mean = (n1 * mean1 + n2 * mean2) / n
    std = math.sqrt(n1 * std1 * std1 + n2 * std2 * std2) / n
    return mean, std


def combine(a: Result, b: Result) -> Result:
    """Merge two independent results for the same domain.

    Nuclides present in only one operand are treated as zero atoms with
    zero uncertainty in the other. Neither operand is modified.

    Parameters
    ----------
    a, b : Result
        Independent estimates for one domain.

    Returns
    -------
    Result
        Estimate based on ``a.num_samples + b.num_samples`` samples.
    """
    # An empty operand carries no information
    if b.num_samples == 0:
        return replace(a)
    if a.num_samples == 0:
        return replace(b)

    n1, n2 = a.num_samples, b.num_samples
    volume = _merge_estimate(n1, a.volume[0], a.volume[1],
                             n2, b.volume[0], b.volume[1])

    atoms_a = a.atoms_by_nuclide()
    atoms_b = b.atoms_by_nuclide()
    nuclides = sorted(set(atoms_a) | set(atoms_b))
    atoms = []
    uncertainty = []
    for nuc in nuclides:
        mean1, std1 = atoms_a.get(nuc, (0.0, 0.0))
        mean2, std2 = atoms_b.get(nuc, (0.0, 0.0))
        mean, std = _merge_estimate(n1, mean1, std1, n2, mean2, std2)
        atoms.append(mean)
        uncertainty.append(std)

    return Result(volume=volume, nuclides=nuclides, atoms=atoms,
                  uncertainty=uncertainty, num_samples=n1 + n2)


def combine_results(a: Sequence[Result], b: Sequence[Result]) -> List[Result]:
    """Merge two per-domain result lists element by element."""
    if len(a) != len(b):
        raise ValueError(
            f"Cannot combine {len(a)} domain results with {len(b)} domain results"
        )
    return [combine(ra, rb) for ra, rb in zip(a, b)]


def reduce_results(batches: Iterable[Sequence[Result]]) -> List[Result]:
    """Fold any number of per-domain result lists into one."""
    batches = list(batches)
    if not batches:
        raise ValueError("No result batches to reduce")
    return list(functools.reduce(combine_results, batches))


# =============================================================================
# UNCERTAINTY TRIGGER
# =============================================================================

@dataclass(frozen=True)
class Threshold:
    """Stop criterion for an iterated volume calculation.

    The trigger is satisfied once the chosen metric of every domain's
    volume estimate is at or below ``value``.
    """
    kind: ThresholdType
    value: float

    def __post_init__(self):
        object.__setattr__(self, 'kind', ThresholdType(self.kind))
        if not self.value > 0.0:
            raise ValueError(f"Threshold must be positive, got {self.value}")

    def metric(self, result: Result) -> float:
        if self.kind is ThresholdType.STD_DEV:
            return result.std_dev
        if self.kind is ThresholdType.REL_ERR:
            return result.relative_error
        return result.variance

    def satisfied(self, results: Iterable[Result]) -> bool:
        return all(self.metric(r) <= self.value for r in results)


# =============================================================================
# VOLUME CALCULATION
# =============================================================================

def _check_hit(material: Optional[int], hits: Dict[Optional[int], int]) -> None:
    """Record one hit of ``material``, adding it on first sight."""
    hits[material] = hits.get(material, 0) + 1


# Philox keys are 128-bit
_SEED_LIMIT = 2**128


def _check_seed_offset(seed_offset: int) -> None:
    # Philox.advance wraps the counter on negative offsets instead of raising
    if seed_offset < 0:
        raise ValueError(f"Seed offset must be non-negative, got {seed_offset}")


@dataclass(frozen=True)
class VolumeCalculation:
    """Configuration and driver of one stochastic volume calculation.

    Parameters
    ----------
    domain_type : DomainType or str
        Kind of domain: 'cell', 'material' or 'universe'.
    domain_ids : sequence of int
        Ids of the domains to estimate, in output order.
    n_samples : int
        Number of points sampled per batch.
    lower_left, upper_right : sequence of float
        Corners of the sampling box [cm].
    seed_offset : int
        First stream block used by :meth:`execute`.
    seed : int
        Master seed of the sampling stream.
    threshold : Threshold, optional
        If given, :meth:`execute` runs further batches until every domain
        meets it.
    max_iterations : int
        Maximum number of batches run to meet ``threshold``.
    """
    domain_type: DomainType
    domain_ids: Tuple[int, ...]
    n_samples: int
    lower_left: Tuple[float, float, float]
    upper_right: Tuple[float, float, float]
    seed_offset: int = DEFAULT_SEED_OFFSET
    seed: int = DEFAULT_SEED
    threshold: Optional[Threshold] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    def __post_init__(self):
        domain_type = self.domain_type
        if isinstance(domain_type, str):
            domain_type = DomainType.from_string(domain_type)
        object.__setattr__(self, 'domain_type', DomainType(domain_type))
        object.__setattr__(self, 'domain_ids', tuple(int(i) for i in self.domain_ids))
        object.__setattr__(self, 'lower_left', tuple(float(x) for x in self.lower_left))
        object.__setattr__(self, 'upper_right', tuple(float(x) for x in self.upper_right))

        if not self.domain_ids:
            raise ValueError("A volume calculation needs at least one domain id")
        if len(set(self.domain_ids)) != len(self.domain_ids):
            raise ValueError(f"Duplicate domain ids in {list(self.domain_ids)}")
        if int(self.n_samples) != self.n_samples or self.n_samples <= 0:
            raise ValueError(f"Number of samples must be a positive integer, "
                             f"got {self.n_samples}")
        object.__setattr__(self, 'n_samples', int(self.n_samples))
        _check_seed_offset(self.seed_offset)
        if not 0 <= self.seed < _SEED_LIMIT:
            raise ValueError(f"Seed must be in [0, 2**128), got {self.seed}")
        if len(self.lower_left) != 3 or len(self.upper_right) != 3:
            raise ValueError("Bounding box corners must be 3-D points")
        ll = np.array(self.lower_left)
        ur = np.array(self.upper_right)
        if not (np.all(np.isfinite(ll)) and np.all(np.isfinite(ur))):
            raise ValueError("Bounding box corners must be finite")
        if np.any(ll > ur):
            raise ValueError(
                f"Lower-left corner {self.lower_left} is not below "
                f"upper-right corner {self.upper_right}"
            )
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")

    @property
    def bounding_box_volume(self) -> float:
        """Volume of the sampling box [cm^3]."""
        return float(np.prod(np.subtract(self.upper_right, self.lower_left)))

    # ---- Validation against collaborators ----
    def check_domains(self, geometry, materials=None) -> None:
        """Raise ValueError if any domain id is unknown to the model."""
        if self.domain_type is DomainType.MATERIAL:
            if materials is None:
                raise ValueError("Material volume calculations need a material registry")
            known = set(materials.ids)
        elif self.domain_type is DomainType.CELL:
            known = set(geometry.cell_ids)
        else:
            known = set(geometry.universe_ids)

        missing = [i for i in self.domain_ids if i not in known]
        if missing:
            raise ValueError(
                f"{self.domain_type.value.capitalize()} ids {missing} of the "
                f"volume calculation do not exist in the model"
            )

    # ---- Execution ----
    def execute(self, geometry, materials=None) -> List[Result]:
        """Stochastically determine the volume of every domain.

        Parameters
        ----------
        geometry
            Oracle exposing ``locate(x, y, z)``, ``cell_ids`` and
            ``universe_ids``.
        materials : MaterialRegistry, optional
            Composition lookup. Without it only volumes are estimated.

        Returns
        -------
        list of Result
            One result per entry of ``domain_ids``, in the same order.
        """
        self.check_domains(geometry, materials)
        logger.info("Volume calculation: %d %s domain(s), %d samples per batch",
                    len(self.domain_ids), self.domain_type.value, self.n_samples)

        if self.threshold is None:
            return self._execute(geometry, materials, self.seed_offset)

        results = None
        for iteration in range(self.max_iterations):
            offset = self.seed_offset + iteration * self.n_samples
            batch = self._execute(geometry, materials, offset)
            results = batch if results is None else combine_results(results, batch)
            if self.threshold.satisfied(results):
                logger.info("Threshold %s <= %g met after %d iteration(s)",
                            self.threshold.kind.value, self.threshold.value,
                            iteration + 1)
                return results

        logger.warning("Threshold %s <= %g not met after %d iterations",
                       self.threshold.kind.value, self.threshold.value,
                       self.max_iterations)
        return results

    def _execute(self, geometry, materials=None, seed_offset: int = 0) -> List[Result]:
        """Run one batch of ``n_samples`` points starting at ``seed_offset``."""
        _check_seed_offset(seed_offset)
        t0 = time.perf_counter()
        points = self._sample_points(seed_offset)

        domain_index = {domain_id: i for i, domain_id in enumerate(self.domain_ids)}
        hits: List[Dict[Optional[int], int]] = [{} for _ in self.domain_ids]

        for x, y, z in points.tolist():
            location = geometry.locate(x, y, z)
            if location is None:
                continue
            for i_domain in self._matching_domains(location, domain_index):
                _check_hit(location.material, hits[i_domain])

        results = [self._estimate(domain_hits, materials) for domain_hits in hits]
        logger.debug("Batch at seed offset %d: %d samples, hits %s, %.3f s",
                     seed_offset, self.n_samples,
                     [sum(h.values()) for h in hits], time.perf_counter() - t0)
        return results

    def _sample_points(self, seed_offset: int) -> np.ndarray:
        """Uniform points in the bounding box, shape (n_samples, 3)."""
        bit_generator = np.random.Philox(key=self.seed)
        bit_generator.advance(seed_offset)
        # One Philox block (4 uniforms) per sample; the 4th is discarded
        u = np.random.Generator(bit_generator).random((self.n_samples, 4))[:, :3]
        ll = np.array(self.lower_left)
        ur = np.array(self.upper_right)
        return ll + u * (ur - ll)

    def _matching_domains(self, location, domain_index: Dict[int, int]) -> List[int]:
        if self.domain_type is DomainType.MATERIAL:
            candidates = () if location.material is None else (location.material,)
        elif self.domain_type is DomainType.CELL:
            candidates = location.cells
        else:
            candidates = location.universes
        # dict.fromkeys drops an id repeated on a nested path
        return [domain_index[d] for d in dict.fromkeys(candidates) if d in domain_index]

    def _estimate(self, hits: Dict[Optional[int], int], materials) -> Result:
        """Turn the hit counts of one domain into a Result."""
        n = self.n_samples
        box_volume = self.bounding_box_volume

        atoms: Dict[int, float] = {}
        variance: Dict[int, float] = {}
        for material, count in hits.items():
            if material is None or materials is None:
                continue
            f = count / n
            var_f = f * (1.0 - f) / n
            nuclides, densities = materials.composition(material)
            for nuc, density in zip(nuclides.tolist(), densities.tolist()):
                atoms[nuc] = atoms.get(nuc, 0.0) + density * f
                variance[nuc] = variance.get(nuc, 0.0) + density * density * var_f

        p = sum(hits.values()) / n
        volume = (p * box_volume, math.sqrt(p * (1.0 - p) / n) * box_volume)

        scale = box_volume * ATOMS_PER_BARN_CM
        nuclides = sorted(nuc for nuc, a in atoms.items() if a > 0.0)
        return Result(
            volume=volume,
            nuclides=nuclides,
            atoms=[atoms[nuc] * scale for nuc in nuclides],
            uncertainty=[math.sqrt(variance[nuc]) * scale for nuc in nuclides],
            num_samples=n,
        )

    # ---- XML descriptor ----
    @classmethod
    def from_xml_element(cls, elem) -> 'VolumeCalculation':
        """Create a volume calculation from a ``<volume_calc>`` element.

        Expected children: ``domain_type``, ``domain_ids``, ``samples``,
        ``lower_left``, ``upper_right`` and optionally ``seed_offset``,
        ``seed``, ``max_iterations`` and
        ``<threshold type="rel_err" threshold="0.01"/>``.
        """
        def text(tag, required=True):
            child = elem.find(tag)
            if child is None or child.text is None:
                if required:
                    raise ValueError(f"<volume_calc> is missing <{tag}>")
                return None
            return child.text.strip()

        kwargs = {
            'domain_type': text('domain_type'),
            'domain_ids': [int(x) for x in text('domain_ids').split()],
            'n_samples': int(text('samples')),
            'lower_left': [float(x) for x in text('lower_left').split()],
            'upper_right': [float(x) for x in text('upper_right').split()],
        }
        for tag, key in (('seed_offset', 'seed_offset'), ('seed', 'seed'),
                         ('max_iterations', 'max_iterations')):
            value = text(tag, required=False)
            if value is not None:
                kwargs[key] = int(value)

        threshold_elem = elem.find('threshold')
        if threshold_elem is not None:
            kind = threshold_elem.get('type')
            value = threshold_elem.get('threshold')
            if kind is None or value is None:
                raise ValueError("<threshold> needs 'type' and 'threshold' attributes")
            kwargs['threshold'] = Threshold(ThresholdType(kind), float(value))

        return cls(**kwargs)

    def to_xml_element(self):
        """Return a ``<volume_calc>`` element describing this calculation."""
        elem = ET.Element('volume_calc')
        ET.SubElement(elem, 'domain_type').text = self.domain_type.value
        ET.SubElement(elem, 'domain_ids').text = ' '.join(str(i) for i in self.domain_ids)
        ET.SubElement(elem, 'samples').text = str(self.n_samples)
        ET.SubElement(elem, 'lower_left').text = ' '.join(repr(x) for x in self.lower_left)
        ET.SubElement(elem, 'upper_right').text = ' '.join(repr(x) for x in self.upper_right)
        ET.SubElement(elem, 'seed_offset').text = str(self.seed_offset)
        ET.SubElement(elem, 'seed').text = str(self.seed)
        if self.threshold is not None:
            ET.SubElement(elem, 'max_iterations').text = str(self.max_iterations)
            ET.SubElement(elem, 'threshold', type=self.threshold.kind.value,
                          threshold=repr(self.threshold.value))
        return elem


# =============================================================================
# PARTITIONED RUNS
# =============================================================================

def run_partitioned(calc: VolumeCalculation, geometry, materials=None,
                    n_workers: int = 1, executor=None) -> List[Result]:
    """Run ``n_workers`` independent batches and merge them.

    Worker k samples the stream starting at
    ``calc.seed_offset + k * calc.n_samples``, so the merged result uses
    ``n_workers * calc.n_samples`` distinct points.

    If the calculation has a threshold, further rounds of ``n_workers``
    batches continue along the stream until every domain meets it or
    ``calc.max_iterations`` batches (rounded up to whole rounds) have run.
    Batches are folded in stream order, so the result matches
    :meth:`VolumeCalculation.execute` stopping after the same batch count.

    Parameters
    ----------
    executor : concurrent.futures.Executor, optional
        If given, batches are submitted to it; otherwise they run in turn.
    """
    if n_workers <= 0:
        raise ValueError(f"Number of workers must be positive, got {n_workers}")
    calc.check_domains(geometry, materials)

    def run_round(first_batch):
        offsets = [calc.seed_offset + (first_batch + k) * calc.n_samples
                   for k in range(n_workers)]
        if executor is None:
            return [calc._execute(geometry, materials, off) for off in offsets]
        futures = [executor.submit(calc._execute, geometry, materials, off)
                   for off in offsets]
        return [f.result() for f in futures]

    results = reduce_results(run_round(0))
    n_batches = n_workers
    if calc.threshold is None:
        logger.info("Merged %d partial runs of %d samples", n_workers, calc.n_samples)
        return results

    n_rounds = -(-calc.max_iterations // n_workers)
    for i_round in range(1, n_rounds + 1):
        if calc.threshold.satisfied(results):
            logger.info("Threshold %s <= %g met after %d iteration(s)",
                        calc.threshold.kind.value, calc.threshold.value, n_batches)
            return results
        if i_round == n_rounds:
            break
        results = reduce_results([results] + run_round(n_batches))
        n_batches += n_workers

    logger.warning("Threshold %s <= %g not met after %d iterations",
                   calc.threshold.kind.value, calc.threshold.value, n_batches)
    return results


# =============================================================================
# CALCULATION SET
# =============================================================================

class VolumeCalculationSet:
    """Explicitly owned collection of the volume calculations of one run.

    Usable as a context manager; the collection is released on exit.
    """

    def __init__(self, calculations: Iterable[VolumeCalculation] = ()):
        self._calculations: List[VolumeCalculation] = list(calculations)

    def append(self, calc: VolumeCalculation) -> None:
        if not isinstance(calc, VolumeCalculation):
            raise TypeError(f"Expected VolumeCalculation, got {type(calc).__name__}")
        self._calculations.append(calc)

    def __iter__(self):
        return iter(self._calculations)

    def __len__(self) -> int:
        return len(self._calculations)

    def __getitem__(self, index: int) -> VolumeCalculation:
        return self._calculations[index]

    def clear(self) -> None:
        """Release all calculations."""
        self._calculations.clear()

    def __enter__(self) -> 'VolumeCalculationSet':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    def execute_all(self, geometry, materials=None) -> List[List[Result]]:
        """Execute every calculation in order."""
        return [calc.execute(geometry, materials) for calc in self._calculations]

    @classmethod
    def from_xml_element(cls, root) -> 'VolumeCalculationSet':
        return cls(VolumeCalculation.from_xml_element(e)
                   for e in root.iter('volume_calc'))

    def to_xml_element(self):
        root = ET.Element('volume_calcs')
        for calc in self._calculations:
            root.append(calc.to_xml_element())
        return root


def read_volume_calcs(path) -> VolumeCalculationSet:
    """Read all ``<volume_calc>`` elements of an XML file."""
    tree = ET.parse(str(path))
    calcs = VolumeCalculationSet.from_xml_element(tree.getroot())
    if len(calcs) == 0:
        raise ValueError(f"No <volume_calc> elements found in {path}")
    logger.info("Read %d volume calculation(s) from %s", len(calcs), path)
    return calcs


def write_volume_calcs(path, calcs: VolumeCalculationSet) -> None:
    tree = ET.ElementTree(calcs.to_xml_element())
    tree.write(str(path), pretty_print=True, xml_declaration=True, encoding='utf-8')
