"""End-to-end calibration on simulated recordings.

The simulator produces noiseless IMU and mocap streams for a known
extrinsic calibration. The estimator starts from the identity calibration
and must recover the true one together with the keyframe states.
"""

import unittest

import numpy as np

from vicon2gt.calibration import ViconGraphSolver
from vicon2gt.config import CalibrationConfig
from vicon2gt.coords.rotations import so3_exp, so3_log
from vicon2gt.sensors import ImuPropagator, PoseInterpolator
from vicon2gt.sim import generate_vicon_imu_data

TRUE_R_BtoI = so3_exp(np.array([0.05, -0.08, 0.12]))
TRUE_P_BinI = np.array([0.04, -0.02, 0.06])


def run(data, config):
    propagator = ImuPropagator(data.t_imu, data.gyro, data.accel)
    interpolator = PoseInterpolator(data.t_vicon, data.vicon_positions, data.vicon_quaternions)
    solver = ViconGraphSolver(config, propagator, interpolator, data.keyframe_times)
    return solver.build_and_solve()


class TestSynchronizedClocks(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.data = generate_vicon_imu_data(
            duration=8.0,
            imu_rate=1000.0,
            R_BtoI=TRUE_R_BtoI,
            p_BinI=TRUE_P_BinI,
            gyro_bias=np.array([0.002, -0.001, 0.003]),
            accel_bias=np.array([0.05, -0.04, 0.02]),
        )
        cls.result = run(cls.data, CalibrationConfig(enforce_grav_mag=True, num_loop_relin=2))

    def test_recovers_extrinsics(self):
        rot_err = so3_log(self.result.R_BtoI.T @ TRUE_R_BtoI)
        self.assertLess(np.linalg.norm(rot_err), 1e-2)
        np.testing.assert_allclose(self.result.p_BinI, TRUE_P_BinI, atol=1e-2)

    def test_recovers_gravity(self):
        np.testing.assert_allclose(self.result.gravity, self.data.gravity, atol=1e-2)
        self.assertAlmostEqual(np.linalg.norm(self.result.gravity), 9.8, places=4)

    def test_recovers_states(self):
        self.assertEqual(len(self.result.states), len(self.data.keyframe_times))
        for est, true in zip(self.result.states, self.data.true_states):
            np.testing.assert_allclose(est.p, true.p, atol=1e-2)
            np.testing.assert_allclose(est.v, true.v, atol=5e-2)
            self.assertLess(np.linalg.norm(so3_log(est.R.T @ true.R)), 1e-2)

    def test_recovers_biases(self):
        bg = np.mean([s.bg for s in self.result.states], axis=0)
        ba = np.mean([s.ba for s in self.result.states], axis=0)
        np.testing.assert_allclose(bg, [0.002, -0.001, 0.003], atol=2e-3)
        np.testing.assert_allclose(ba, [0.05, -0.04, 0.02], atol=5e-2)

    def test_rounds(self):
        self.assertEqual(len(self.result.rounds), 3)
        self.assertEqual(self.result.dropped, [])
        self.assertLess(self.result.rounds[-1].final_error, self.result.rounds[0].initial_error)
        self.assertIsNone(self.result.time_offset)


class TestClockOffset(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.data = generate_vicon_imu_data(
            duration=8.0, imu_rate=1000.0, R_BtoI=TRUE_R_BtoI, p_BinI=TRUE_P_BinI, toff=0.01
        )
        config = CalibrationConfig(
            enforce_grav_mag=True, estimate_toff_vicon_to_imu=True, num_loop_relin=2
        )
        cls.result = run(cls.data, config)

    def test_recovers_offset(self):
        self.assertIsNotNone(self.result.time_offset)
        self.assertAlmostEqual(self.result.time_offset, 0.01, delta=2e-3)

    def test_recovers_extrinsics(self):
        rot_err = so3_log(self.result.R_BtoI.T @ TRUE_R_BtoI)
        self.assertLess(np.linalg.norm(rot_err), 2e-2)
        np.testing.assert_allclose(self.result.p_BinI, TRUE_P_BinI, atol=2e-2)


if __name__ == "__main__":
    unittest.main()
