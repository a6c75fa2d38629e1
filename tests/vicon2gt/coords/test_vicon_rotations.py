"""
Unit tests for vicon2gt.coords.rotations.

Tests verify:
    1. Quaternion / rotation matrix consistency
    2. Exponential and logarithm maps are inverse of each other
    3. Right Jacobian (and its inverse) against numerical differentiation
    4. Right-perturbation retraction: zero step and δ then -δ
"""

import unittest

import numpy as np

from vicon2gt.coords import (
    quat_conjugate,
    quat_exp,
    quat_log,
    quat_multiply,
    quat_normalize,
    quat_slerp,
    quat_to_rotation_matrix,
    right_jacobian,
    right_jacobian_inverse,
    rotation_matrix_to_quat,
    skew,
    so3_exp,
    so3_log,
)

TEST_VECTORS = [
    np.array([0.0, 0.0, 0.0]),
    np.array([1e-10, -2e-10, 0.0]),
    np.array([0.1, -0.2, 0.3]),
    np.array([1.2, 0.4, -0.7]),
    np.array([0.0, 0.0, 3.0]),
]


class TestQuaternionBasics(unittest.TestCase):
    def test_skew_matches_cross_product(self):
        a = np.array([1.0, -2.0, 0.5])
        b = np.array([0.3, 0.7, -1.1])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b), atol=1e-15)

    def test_normalize_forces_positive_scalar(self):
        q = quat_normalize(np.array([-2.0, 0.0, 0.0, 0.0]))
        np.testing.assert_allclose(q, [1.0, 0.0, 0.0, 0.0])

    def test_normalize_rejects_zero(self):
        with self.assertRaises(ValueError):
            quat_normalize(np.zeros(4))

    def test_multiply_matches_matrix_product(self):
        q1 = quat_exp(np.array([0.3, -0.1, 0.2]))
        q2 = quat_exp(np.array([-0.5, 0.4, 0.9]))
        R = quat_to_rotation_matrix(quat_multiply(q1, q2))
        np.testing.assert_allclose(R, quat_to_rotation_matrix(q1) @ quat_to_rotation_matrix(q2), atol=1e-12)

    def test_conjugate_is_inverse(self):
        q = quat_exp(np.array([0.7, 0.2, -0.4]))
        np.testing.assert_allclose(quat_multiply(q, quat_conjugate(q)), [1.0, 0.0, 0.0, 0.0], atol=1e-12)

    def test_matrix_round_trip(self):
        for phi in TEST_VECTORS:
            R = so3_exp(phi)
            q = rotation_matrix_to_quat(R)
            np.testing.assert_allclose(quat_to_rotation_matrix(q), R, atol=1e-12)
            self.assertGreaterEqual(q[0], 0.0)

    def test_quat_to_rotation_matrix_rejects_bad_shape(self):
        with self.assertRaises(ValueError):
            quat_to_rotation_matrix(np.zeros(3))


class TestExpLog(unittest.TestCase):
    def test_quat_exp_matches_so3_exp(self):
        for phi in TEST_VECTORS:
            np.testing.assert_allclose(
                quat_to_rotation_matrix(quat_exp(phi)), so3_exp(phi), atol=1e-12
            )

    def test_log_inverts_exp(self):
        for phi in TEST_VECTORS:
            np.testing.assert_allclose(so3_log(so3_exp(phi)), phi, atol=1e-9)
            np.testing.assert_allclose(quat_log(quat_exp(phi)), phi, atol=1e-9)

    def test_exp_is_orthonormal(self):
        for phi in TEST_VECTORS:
            R = so3_exp(phi)
            np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
            self.assertAlmostEqual(np.linalg.det(R), 1.0, places=12)


class TestRightJacobian(unittest.TestCase):
    def test_right_jacobian_first_order(self):
        """Exp(φ + δ) ≈ Exp(φ) Exp(Jr(φ) δ)."""
        eps = 1e-6
        for phi in TEST_VECTORS[2:]:
            Jr = right_jacobian(phi)
            J_num = np.zeros((3, 3))
            for i in range(3):
                d = np.zeros(3)
                d[i] = eps
                J_num[:, i] = (
                    so3_log(so3_exp(phi).T @ so3_exp(phi + d))
                    - so3_log(so3_exp(phi).T @ so3_exp(phi - d))
                ) / (2 * eps)
            np.testing.assert_allclose(Jr, J_num, atol=1e-6)

    def test_inverse(self):
        for phi in TEST_VECTORS:
            np.testing.assert_allclose(
                right_jacobian(phi) @ right_jacobian_inverse(phi), np.eye(3), atol=1e-9
            )


class TestRetraction(unittest.TestCase):
    def test_zero_step_leaves_orientation(self):
        q = quat_exp(np.array([0.4, -0.3, 1.1]))
        np.testing.assert_allclose(quat_multiply(q, quat_exp(np.zeros(3))), q, atol=1e-15)

    def test_step_then_negative_step_returns(self):
        q = quat_exp(np.array([0.4, -0.3, 1.1]))
        delta = np.array([0.05, -0.02, 0.03])
        back = quat_normalize(quat_multiply(quat_multiply(q, quat_exp(delta)), quat_exp(-delta)))
        np.testing.assert_allclose(back, quat_normalize(q), atol=1e-12)


class TestSlerp(unittest.TestCase):
    def test_endpoints_and_midpoint(self):
        q0 = np.array([1.0, 0.0, 0.0, 0.0])
        q1 = quat_exp(np.array([0.0, 0.0, 1.0]))
        np.testing.assert_allclose(quat_slerp(q0, q1, 0.0), q0, atol=1e-12)
        np.testing.assert_allclose(quat_slerp(q0, q1, 1.0), q1, atol=1e-12)
        np.testing.assert_allclose(quat_log(quat_slerp(q0, q1, 0.5)), [0.0, 0.0, 0.5], atol=1e-12)

    def test_shortest_arc(self):
        q0 = np.array([1.0, 0.0, 0.0, 0.0])
        q1 = -quat_exp(np.array([0.2, 0.0, 0.0]))
        np.testing.assert_allclose(quat_log(quat_slerp(q0, q1, 0.5)), [0.1, 0.0, 0.0], atol=1e-12)


if __name__ == "__main__":
    unittest.main()
