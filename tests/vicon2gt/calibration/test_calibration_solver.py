"""
Scenario tests for ViconGraphSolver.

Scenarios:
    1. Stationary rig, identity calibration: the seed is already optimal,
       and all-zero preintegrated deltas still give the identity calibration
    2. Time offset estimation without rate information stays at its prior
    3. A keyframe without mocap is dropped from values and output
    4. Relinearization rounds, cancellation and fatal inputs
"""

import numpy as np
import pytest

from vicon2gt.calibration import LoopState, ViconGraphSolver, read_state_csv, write_state_csv
from vicon2gt.config import CalibrationConfig
from vicon2gt.errors import ConfigurationError, InternalConsistencyError
from vicon2gt.estimators import CALIB_ROTATION, CALIB_TRANSLATION, G, T, X

TIMES = [0.0, 0.5, 1.0]


def solve(interpolator, propagator, config=None, times=TIMES, **kwargs):
    solver = ViconGraphSolver(config or CalibrationConfig(), propagator, interpolator, times)
    return solver.build_and_solve(**kwargs)


class TestStationaryIdentity:
    def test_recovers_identity(self, static_interpolator, stationary_propagator):
        result = solve(static_interpolator(), stationary_propagator())

        np.testing.assert_allclose(result.R_BtoI, np.eye(3), atol=1e-9)
        np.testing.assert_allclose(result.p_BinI, np.zeros(3), atol=1e-9)
        np.testing.assert_allclose(result.gravity, [0.0, 0.0, 9.8], atol=1e-9)
        assert result.times == TIMES
        assert len(result.states) == 3
        for state in result.states:
            np.testing.assert_allclose(state.q, [1.0, 0.0, 0.0, 0.0], atol=1e-9)
            np.testing.assert_allclose(state.v, np.zeros(3), atol=1e-9)
            np.testing.assert_allclose(state.p, np.zeros(3), atol=1e-9)
        assert result.converged
        assert result.time_offset is None
        assert not result.cancelled

    def test_gravity_prior_keeps_magnitude(self, static_interpolator, stationary_propagator):
        config = CalibrationConfig(enforce_grav_mag=True)
        result = solve(static_interpolator(), stationary_propagator(), config)
        assert np.linalg.norm(result.gravity) == pytest.approx(9.8, abs=1e-6)
        assert result.rounds[0].num_factors == 6

    def test_zero_deltas_with_gravity_prior(self, static_interpolator, stationary_propagator):
        """All-zero preintegrated motion under identity mocap poses."""
        config = CalibrationConfig(enforce_grav_mag=True)
        result = solve(static_interpolator(), stationary_propagator(gravity=np.zeros(3)), config)

        np.testing.assert_allclose(result.R_BtoI, np.eye(3), atol=1e-6)
        np.testing.assert_allclose(result.p_BinI, np.zeros(3), atol=1e-6)
        assert np.linalg.norm(result.gravity) == pytest.approx(9.8, abs=1e-2)
        assert result.dropped == []
        assert len(result.states) == 3
        for state in result.states:
            np.testing.assert_allclose(state.q, [1.0, 0.0, 0.0, 0.0], atol=1e-6)


class TestTimeOffset:
    def test_stays_near_prior(self, static_interpolator, stationary_propagator):
        config = CalibrationConfig(estimate_toff_vicon_to_imu=True, toff_imu_to_vicon=0.01)
        result = solve(static_interpolator(), stationary_propagator(), config)
        assert result.time_offset is not None
        assert abs(result.time_offset - 0.01) < 0.02
        assert result.values.exists(T(0))


class TestDroppedKeyframe:
    def test_dropped_keyframe_is_absent_everywhere(self, static_interpolator, stationary_propagator, tmp_path):
        result = solve(static_interpolator(failing_times=[0.5]), stationary_propagator())

        assert result.times == [0.0, 1.0]
        assert result.dropped == [0.5]
        assert not result.values.exists(X(1))
        assert result.values.exists(X(0)) and result.values.exists(X(2))
        assert result.rounds[0].num_keyframes == 2
        assert result.rounds[0].num_factors == 3

        path = write_state_csv(tmp_path / "states.csv", result.times, result.states)
        times_ns, states = read_state_csv(path)
        assert times_ns.tolist() == [0, 1_000_000_000]
        assert len(states) == 2

    def test_all_dropped_is_fatal(self, static_interpolator, stationary_propagator):
        with pytest.raises(ConfigurationError, match="no keyframe"):
            solve(static_interpolator(failing_times=TIMES), stationary_propagator())

    def test_no_covered_keyframe_is_fatal(self, static_interpolator, stationary_propagator):
        with pytest.raises(ConfigurationError):
            solve(static_interpolator(), stationary_propagator(t_start=5.0, t_end=6.0))
        with pytest.raises(ConfigurationError):
            solve(static_interpolator(), stationary_propagator(), times=[])


class TestRounds:
    def test_relinearization_rounds(self, static_interpolator, stationary_propagator):
        prop = stationary_propagator()
        config = CalibrationConfig(num_loop_relin=2)
        result = solve(static_interpolator(), prop, config)

        assert len(result.rounds) == 3
        assert [r.round_index for r in result.rounds] == [0, 1, 2]
        # two IMU factors per round
        assert len(prop.calls) == 6
        for summary in result.rounds:
            assert summary.num_keyframes == 3
            assert summary.build_time >= 0.0
            assert summary.optimize_time >= 0.0
            assert summary.total_time >= summary.build_time

    def test_later_rounds_start_from_solution(self, static_interpolator, stationary_propagator):
        """Only the first round seeds from the configuration."""
        p_meas = np.array([0.5, -0.2, 1.0])
        prop = stationary_propagator()
        config = CalibrationConfig(p_BinI=np.array([0.05, 0.0, 0.0]), num_loop_relin=1)
        result = solve(static_interpolator(p=p_meas), prop, config)
        assert len(result.rounds) == 2
        # the second build reuses round-one states instead of reseeding
        assert result.rounds[1].initial_error == pytest.approx(result.rounds[0].final_error, abs=1e-9)

    def test_cancellation_stops_after_partial_solve(self, static_interpolator, stationary_propagator):
        polls = []

        def should_continue():
            polls.append(None)
            return len(polls) <= 2

        config = CalibrationConfig(num_loop_relin=3)
        result = solve(static_interpolator(), stationary_propagator(), config, should_continue=should_continue)

        assert result.cancelled
        assert len(result.rounds) == 1
        assert result.times == [0.0, 0.5]
        assert not result.values.exists(X(2))
        for key in (CALIB_ROTATION, CALIB_TRANSLATION, G(0)):
            assert result.values.exists(key)

    def test_consistency_error_surfaces(self, static_interpolator, stationary_propagator):
        with pytest.raises(InternalConsistencyError):
            solve(static_interpolator(), stationary_propagator(duration_error=1e-3))


def test_loop_states():
    assert [s.name for s in LoopState] == ["BUILDING", "SOLVING", "ADVANCING", "DONE"]
