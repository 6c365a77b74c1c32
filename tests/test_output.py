"""
Tests for HDF5 result files and summary tables.
"""

import h5py
import pytest

from mc_volume.output import (
    format_summary, read_results_hdf5, write_results_hdf5, write_summary,
)
from mc_volume.volume import Result, Threshold, VolumeCalculation


@pytest.fixture
def calc():
    return VolumeCalculation(domain_type='cell', domain_ids=[1, 2], n_samples=1000,
                             lower_left=(0, 0, 0), upper_right=(1, 1, 1),
                             seed_offset=3000,
                             threshold=Threshold('std_dev', 0.01))


@pytest.fixture
def results():
    return [
        Result(volume=(0.5, 0.0158), nuclides=[0, 1], atoms=[3.3e22, 1.7e22],
               uncertainty=[1.1e21, 5.2e20], num_samples=2000),
        Result(volume=(0.0, 0.0), num_samples=2000),
    ]


class TestHDF5:

    def test_round_trip(self, tmp_path, calc, results, registry):
        path = tmp_path / 'volume_1.h5'
        write_results_hdf5(path, calc, results, registry)
        loaded, meta = read_results_hdf5(path)

        assert loaded == {1: results[0], 2: results[1]}
        assert meta['filetype'] == 'volume'
        assert meta['domain_type'] == 'cell'
        assert meta['domain_ids'] == [1, 2]
        assert meta['samples'] == 1000
        assert meta['iterations'] == 2
        assert meta['seed_offset'] == 3000
        assert meta['threshold_type'] == 'std_dev'
        assert meta['lower_left'] == [0.0, 0.0, 0.0]
        assert meta['nuclide_names'][1] == ['H1', 'O16']
        assert meta['nuclide_names'][2] == []

    def test_layout(self, tmp_path, calc, results):
        path = tmp_path / 'volume.h5'
        write_results_hdf5(path, calc, results)
        with h5py.File(path, 'r') as f:
            assert set(f.keys()) == {'domain_1', 'domain_2'}
            assert f['domain_1/atoms'].shape == (2, 2)
            assert f['domain_2/atoms'].shape == (0, 2)
            assert f['domain_1'].attrs['num_samples'] == 2000
            assert 'nuclides' not in f['domain_1']

    def test_result_count_must_match(self, tmp_path, calc, results):
        with pytest.raises(ValueError, match="1 results for 2 domains"):
            write_results_hdf5(tmp_path / 'x.h5', calc, results[:1])

    def test_foreign_file_rejected(self, tmp_path):
        path = tmp_path / 'other.h5'
        with h5py.File(path, 'w') as f:
            f.attrs['filetype'] = 'statepoint'
        with pytest.raises(ValueError, match="not a volume results file"):
            read_results_hdf5(path)


class TestSummary:

    def test_table_contains_domains(self, calc, results, registry):
        text = format_summary(calc, results, registry, reference={1: 0.5})
        assert 'Volume calculation (cells), 2000 samples' in text
        assert 'O16' in text
        assert 'Dev/sigma' in text

    def test_write_summary(self, tmp_path, calc, results):
        path = tmp_path / 'summary.txt'
        write_summary(path, calc, results)
        assert '5.000000e-01' in path.read_text()
