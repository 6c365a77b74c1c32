"""
Tests for the stochastic volume sampler.

Covers:
- Single-material and empty-geometry scenarios
- Cell, material and universe domain matching
- Determinism and seed-offset partitioning of the sampling stream
- Statistical behaviour (unbiasedness, 1/sqrt(N) uncertainty)
- Configuration validation
- Threshold-triggered iteration and partitioned runs
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import numpy as np
import pytest

from mc_volume.constants import ATOMS_PER_BARN_CM, DomainType, ThresholdType
from mc_volume.volume import (
    Result, Threshold, VolumeCalculation, VolumeCalculationSet, combine,
    run_partitioned,
)


def make_calc(domain_ids=(1,), n_samples=1000, domain_type='cell', **kwargs):
    kwargs.setdefault('lower_left', (0.0, 0.0, 0.0))
    kwargs.setdefault('upper_right', (1.0, 1.0, 1.0))
    return VolumeCalculation(domain_type=domain_type, domain_ids=domain_ids,
                             n_samples=n_samples, **kwargs)


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:

    def test_unit_cube_single_material(self, uniform_geometry, registry):
        calc = make_calc(domain_ids=[1], n_samples=1000)
        (result,) = calc.execute(uniform_geometry, registry)

        assert result.num_samples == 1000
        assert result.volume[0] == pytest.approx(1.0)
        assert result.volume[1] == pytest.approx(0.0)

        nuclides, densities = registry.composition(7)
        assert result.nuclides == tuple(sorted(nuclides.tolist()))
        expected = dict(zip(nuclides.tolist(), densities * ATOMS_PER_BARN_CM))
        for nuc, atoms in zip(result.nuclides, result.atoms):
            assert atoms == pytest.approx(expected[nuc])
        assert len(result.uncertainty) == len(result.nuclides)

    def test_all_points_outside(self, outside_geometry, registry):
        calc = make_calc(domain_ids=[1, 2], n_samples=500)
        results = calc.execute(outside_geometry, registry)

        assert len(results) == 2
        for r in results:
            assert r.volume == (0.0, 0.0)
            assert r.nuclides == ()
            assert r.atoms == ()
            assert r.uncertainty == ()
            assert r.num_samples == 500

    def test_results_follow_domain_order(self, half_space, registry):
        forward = make_calc(domain_ids=[1, 2], n_samples=2000).execute(half_space, registry)
        backward = make_calc(domain_ids=[2, 1], n_samples=2000).execute(half_space, registry)
        assert forward[0] == backward[1]
        assert forward[1] == backward[0]

    def test_bounding_box_scales_volume(self, uniform_geometry):
        calc = make_calc(lower_left=(-1.0, 0.0, 2.0), upper_right=(1.0, 3.0, 2.5))
        assert calc.bounding_box_volume == pytest.approx(3.0)
        (result,) = calc.execute(uniform_geometry)
        assert result.mean == pytest.approx(3.0)


# =============================================================================
# Domain types
# =============================================================================

class TestDomainTypes:

    def test_void_hits_count_towards_cell_volume(self, half_space, registry):
        calc = make_calc(domain_ids=[2], n_samples=4000)
        (result,) = calc.execute(half_space, registry)
        assert 0.0 < result.mean < 1.0
        assert result.nuclides == ()

    def test_material_domain(self, half_space, registry):
        calc = make_calc(domain_ids=[7, 8], n_samples=4000, domain_type='material')
        water, steel = calc.execute(half_space, registry)
        assert abs(water.mean - 0.5) < 5 * water.std_dev
        assert len(water.nuclides) == 2
        # steel is registered but never placed in the geometry
        assert steel.volume == (0.0, 0.0)
        assert steel.nuclides == ()

    def test_material_domain_requires_registry(self, half_space):
        calc = make_calc(domain_ids=[7], domain_type=DomainType.MATERIAL)
        with pytest.raises(ValueError, match="registry"):
            calc.execute(half_space)

    def test_universe_domain(self, uniform_geometry):
        calc = make_calc(domain_ids=[0], domain_type='universe', n_samples=200)
        (result,) = calc.execute(uniform_geometry)
        assert result.mean == pytest.approx(1.0)

    def test_unknown_domain_rejected(self, half_space, registry):
        calc = make_calc(domain_ids=[1, 99])
        with pytest.raises(ValueError, match=r"\[99\]"):
            calc.execute(half_space, registry)

    def test_volume_only_without_registry(self, half_space):
        (result,) = make_calc(domain_ids=[1], n_samples=1000).execute(half_space)
        assert result.mean > 0.0
        assert result.nuclides == ()


# =============================================================================
# Random stream
# =============================================================================

class TestSampling:

    def test_points_inside_box(self):
        calc = make_calc(lower_left=(-2.0, 1.0, 0.0), upper_right=(2.0, 3.0, 0.5),
                         n_samples=5000)
        points = calc._sample_points(0)
        assert points.shape == (5000, 3)
        assert np.all(points >= np.array(calc.lower_left))
        assert np.all(points <= np.array(calc.upper_right))

    def test_identical_runs_are_bit_identical(self, half_space, registry):
        calc = make_calc(domain_ids=[1, 2], n_samples=3000, seed_offset=17)
        assert calc.execute(half_space, registry) == calc.execute(half_space, registry)

    def test_seed_offset_shifts_stream(self):
        calc = make_calc(n_samples=200)
        base = calc._sample_points(0)
        shifted = calc._sample_points(5)
        np.testing.assert_array_equal(shifted[:-5], base[5:])

    def test_different_offsets_sample_different_points(self):
        calc = make_calc(n_samples=100)
        assert not np.array_equal(calc._sample_points(0), calc._sample_points(100))

    def test_different_seeds_sample_different_points(self):
        a = make_calc(n_samples=100, seed=1)
        b = make_calc(n_samples=100, seed=2)
        assert not np.array_equal(a._sample_points(0), b._sample_points(0))

    def test_split_batches_reproduce_single_run(self, half_space, registry):
        (full,) = make_calc(n_samples=1000).execute(half_space, registry)

        half = make_calc(n_samples=500)
        (first,) = half._execute(half_space, registry, 0)
        (second,) = half._execute(half_space, registry, 500)
        merged = combine(first, second)

        assert merged.num_samples == 1000
        assert merged.mean == pytest.approx(full.mean)
        assert merged.atoms == pytest.approx(full.atoms)


# =============================================================================
# Statistics
# =============================================================================

class TestStatistics:

    @pytest.mark.parametrize('n_samples', [1, 10, 1000])
    def test_volume_bounded_by_box(self, half_space, n_samples):
        (result,) = make_calc(n_samples=n_samples).execute(half_space)
        assert 0.0 <= result.mean <= 1.0

    def test_estimate_is_unbiased(self, half_space):
        (result,) = make_calc(n_samples=20000).execute(half_space)
        assert abs(result.mean - 0.5) < 5 * result.std_dev

    def test_std_dev_shrinks_as_inverse_sqrt_n(self, half_space):
        (small,) = make_calc(n_samples=1000).execute(half_space)
        (large,) = make_calc(n_samples=16000).execute(half_space)
        assert small.std_dev / large.std_dev == pytest.approx(4.0, rel=0.1)

    def test_binomial_uncertainty(self, half_space):
        (result,) = make_calc(n_samples=2000).execute(half_space)
        p = result.mean
        assert result.std_dev == pytest.approx(math.sqrt(p * (1 - p) / 2000))

    def test_atom_uncertainty_follows_volume(self, half_space, registry):
        (result,) = make_calc(n_samples=2000).execute(half_space, registry)
        nuclides, densities = registry.composition(7)
        density = dict(zip(nuclides.tolist(), densities.tolist()))
        for nuc, atoms, unc in zip(result.nuclides, result.atoms, result.uncertainty):
            assert atoms == pytest.approx(density[nuc] * result.mean * ATOMS_PER_BARN_CM)
            assert unc == pytest.approx(density[nuc] * result.std_dev * ATOMS_PER_BARN_CM)


# =============================================================================
# Validation
# =============================================================================

class TestValidation:

    def test_zero_samples_rejected(self):
        with pytest.raises(ValueError, match="samples"):
            make_calc(n_samples=0)

    def test_empty_domain_list_rejected(self):
        with pytest.raises(ValueError, match="domain"):
            make_calc(domain_ids=[])

    def test_duplicate_domains_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            make_calc(domain_ids=[1, 1])

    def test_inverted_box_rejected(self):
        with pytest.raises(ValueError, match="not below"):
            make_calc(lower_left=(0.0, 2.0, 0.0), upper_right=(1.0, 1.0, 1.0))

    def test_non_finite_box_rejected(self):
        with pytest.raises(ValueError, match="finite"):
            make_calc(upper_right=(1.0, np.inf, 1.0))

    def test_two_dimensional_box_rejected(self):
        with pytest.raises(ValueError, match="3-D"):
            make_calc(lower_left=(0.0, 0.0), upper_right=(1.0, 1.0))

    def test_negative_seed_offset_rejected(self):
        with pytest.raises(ValueError, match="offset"):
            make_calc(seed_offset=-1)

    def test_negative_batch_offset_rejected(self, uniform_geometry):
        with pytest.raises(ValueError, match="offset"):
            make_calc()._execute(uniform_geometry, seed_offset=-1)

    @pytest.mark.parametrize('seed', [-1, 2**128])
    def test_seed_out_of_key_range_rejected(self, seed):
        with pytest.raises(ValueError, match="Seed must be"):
            make_calc(seed=seed)

    def test_largest_seed_accepted(self, uniform_geometry):
        (result,) = make_calc(n_samples=10, seed=2**128 - 1).execute(uniform_geometry)
        assert result.num_samples == 10

    def test_unknown_domain_type_rejected(self):
        with pytest.raises(ValueError, match="domain type"):
            make_calc(domain_type='surface')

    def test_degenerate_box_allowed(self, uniform_geometry):
        calc = make_calc(upper_right=(1.0, 1.0, 0.0))
        (result,) = calc.execute(uniform_geometry)
        assert result.volume == (0.0, 0.0)

    def test_calculation_is_immutable(self):
        calc = make_calc()
        with pytest.raises(AttributeError):
            calc.n_samples = 5

    def test_corners_stored_as_float_tuples(self):
        calc = make_calc(lower_left=np.zeros(3), upper_right=[1, 2, 3])
        assert calc.lower_left == (0.0, 0.0, 0.0)
        assert calc.upper_right == (1.0, 2.0, 3.0)
        assert all(type(x) is float for x in calc.lower_left + calc.upper_right)

    def test_replace_revalidates(self):
        with pytest.raises(ValueError):
            replace(make_calc(), n_samples=-3)


# =============================================================================
# Threshold trigger
# =============================================================================

class TestThreshold:

    def test_threshold_validation(self):
        with pytest.raises(ValueError):
            Threshold(ThresholdType.STD_DEV, 0.0)
        assert Threshold('variance', 1.0).kind is ThresholdType.VARIANCE

    def test_iterates_until_met(self, half_space):
        calc = make_calc(n_samples=100,
                         threshold=Threshold(ThresholdType.REL_ERR, 0.05))
        (result,) = calc.execute(half_space)
        # a single batch of 100 gives ~10% relative error; the merged
        # std-dev convention drops below 5% after the second batch
        assert result.num_samples == 200
        assert result.relative_error <= 0.05

    def test_gives_up_after_max_iterations(self, outside_geometry, caplog):
        calc = make_calc(n_samples=50, max_iterations=3,
                         threshold=Threshold(ThresholdType.REL_ERR, 0.01))
        with caplog.at_level(logging.WARNING, logger='mc_volume'):
            (result,) = calc.execute(outside_geometry)
        assert result.num_samples == 150
        assert "not met after 3 iterations" in caplog.text

    def test_std_dev_metric(self):
        threshold = Threshold(ThresholdType.STD_DEV, 0.1)
        assert threshold.satisfied([Result((1.0, 0.05), num_samples=10)])
        assert not threshold.satisfied([Result((1.0, 0.05), num_samples=10),
                                         Result((1.0, 0.2), num_samples=10)])


# =============================================================================
# Partitioned runs and calculation sets
# =============================================================================

class TestPartitioned:

    def test_sample_counts_add_up(self, half_space, registry):
        calc = make_calc(domain_ids=[1, 2], n_samples=400)
        results = run_partitioned(calc, half_space, registry, n_workers=3)
        assert [r.num_samples for r in results] == [1200, 1200]

    def test_executor_matches_sequential(self, half_space, registry):
        calc = make_calc(domain_ids=[1, 2], n_samples=300)
        sequential = run_partitioned(calc, half_space, registry, n_workers=4)
        with ThreadPoolExecutor(max_workers=4) as pool:
            parallel = run_partitioned(calc, half_space, registry, n_workers=4,
                                       executor=pool)
        assert parallel == sequential

    def test_threshold_met_within_first_round(self, half_space):
        calc = make_calc(n_samples=100,
                         threshold=Threshold(ThresholdType.REL_ERR, 0.05))
        results = run_partitioned(calc, half_space, n_workers=2)
        assert results[0].num_samples == 200
        assert results == calc.execute(half_space)

    def test_threshold_drives_further_rounds(self, half_space, caplog):
        calc = make_calc(n_samples=100, max_iterations=6,
                         threshold=Threshold(ThresholdType.STD_DEV, 1e-4))
        with caplog.at_level(logging.WARNING, logger='mc_volume'):
            results = run_partitioned(calc, half_space, n_workers=2)
        assert results[0].num_samples == 600
        assert "not met after 6 iterations" in caplog.text
        # batches are folded in stream order, as in a single-worker run
        assert results == calc.execute(half_space)

    def test_rounds_cover_max_iterations(self, outside_geometry):
        calc = make_calc(n_samples=50, max_iterations=5,
                         threshold=Threshold(ThresholdType.REL_ERR, 0.01))
        (result,) = run_partitioned(calc, outside_geometry, n_workers=2)
        assert result.num_samples == 300

    def test_invalid_worker_count(self, half_space):
        with pytest.raises(ValueError):
            run_partitioned(make_calc(), half_space, n_workers=0)

    def test_calculation_set_lifecycle(self, uniform_geometry):
        with VolumeCalculationSet([make_calc(n_samples=10)]) as calcs:
            calcs.append(make_calc(n_samples=20))
            results = calcs.execute_all(uniform_geometry)
            assert len(calcs) == 2
        assert [r[0].num_samples for r in results] == [10, 20]
        assert len(calcs) == 0

    def test_calculation_set_rejects_other_types(self):
        with pytest.raises(TypeError):
            VolumeCalculationSet().append({'n_samples': 10})
