"""
Unit tests for keyframe filtering and indexing.

Properties:
    - Filtering twice gives the same retained set as filtering once
    - Every retained time has IMU coverage
    - Retained times are strictly increasing with dense indices
"""

import numpy as np
import pytest

from vicon2gt.calibration.keyframes import KeyframeCatalog, filter_and_index
from vicon2gt.errors import ConfigurationError


@pytest.fixture
def propagator(stationary_propagator):
    return stationary_propagator(t_start=0.0, t_end=5.0)


RAW_TIMES = [6.0, 0.5, -1.0, 2.0, 2.0, 4.9, 5.0, 0.0, 7.5]


class TestFilterAndIndex:
    def test_removes_uncovered_times(self, propagator):
        catalog = filter_and_index(RAW_TIMES, propagator)
        assert catalog.times == (0.0, 0.5, 2.0, 4.9, 5.0)
        assert catalog.indices == (0, 1, 2, 3, 4)

    def test_idempotent(self, propagator):
        once = filter_and_index(RAW_TIMES, propagator)
        twice = filter_and_index(once.times, propagator)
        assert once == twice

    def test_coverage_invariant(self, propagator):
        catalog = filter_and_index(RAW_TIMES, propagator)
        assert all(propagator.has_bounding_imu(t) for t in catalog.times)

    def test_strictly_increasing(self, propagator):
        rng = np.random.default_rng(3)
        raw = rng.uniform(-1.0, 6.0, 200)
        catalog = filter_and_index(raw, propagator)
        assert np.all(np.diff(catalog.times) > 0)
        assert list(catalog.indices) == list(range(len(catalog)))

    def test_empty_input_is_fatal(self, propagator):
        with pytest.raises(ConfigurationError):
            filter_and_index([], propagator)

    def test_all_uncovered_is_fatal(self, propagator):
        with pytest.raises(ConfigurationError):
            filter_and_index([-3.0, 10.0], propagator)


class TestKeyframeCatalog:
    def test_retain_keeps_indices(self):
        catalog = KeyframeCatalog(times=(0.0, 0.5, 1.0), indices=(0, 1, 2))
        kept = catalog.retain([0.0, 1.0])
        assert kept.times == (0.0, 1.0)
        assert kept.indices == (0, 2)
        assert kept.index_of(1.0) == 2
        assert list(kept) == [(0.0, 0), (1.0, 2)]
        assert len(catalog) == 3

    def test_rejects_unsorted(self):
        with pytest.raises(ValueError):
            KeyframeCatalog(times=(1.0, 0.5), indices=(0, 1))

    def test_rejects_length_mismatch(self):
        with pytest.raises(ValueError):
            KeyframeCatalog(times=(0.0,), indices=(0, 1))
