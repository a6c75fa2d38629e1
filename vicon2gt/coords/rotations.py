"""Rotation representations and SO(3) operations.

This module provides the rotation helpers used throughout the estimator:
- Quaternions (unit quaternions, q = [qw, qx, qy, qz], Hamilton product)
- Rotation matrices (3x3 orthogonal matrices, SO(3))
- Exponential / logarithm maps between so(3) and SO(3)
- Right Jacobians of SO(3), needed for manifold residual derivatives

Conventions:
- Quaternions: [qw, qx, qy, qz] where qw is the scalar part
- A quaternion q and its matrix R = quat_to_rotation_matrix(q) rotate
  vectors from a local frame into a parent frame: v_parent = R @ v_local
- Perturbations are right-multiplicative: R ⊕ δ = R @ Exp(δ)
"""

import numpy as np
from numpy.typing import NDArray

_SMALL_ANGLE = 1e-8


def skew(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """Skew-symmetric (cross-product) matrix.

    Args:
        v: 3-vector.

    Returns:
        3x3 matrix [v]x such that [v]x @ w = v x w.
    """
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ],
        dtype=np.float64,
    )


def quat_normalize(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Normalize quaternion to unit length with non-negative scalar part."""
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm == 0.0 or not np.isfinite(norm):
        raise ValueError(f"Cannot normalize quaternion {q}")
    q = q / norm
    if q[0] < 0.0:
        q = -q
    return q


def quat_multiply(q1: NDArray[np.float64], q2: NDArray[np.float64]) -> NDArray[np.float64]:
    """Hamilton product q1 ⊗ q2.

    The result corresponds to the rotation matrix R(q1) @ R(q2).
    """
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array(
        [
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        ],
        dtype=np.float64,
    )


def quat_conjugate(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Conjugate (inverse for unit quaternions)."""
    return np.array([q[0], -q[1], -q[2], -q[3]], dtype=np.float64)


def quat_to_rotation_matrix(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert quaternion to rotation matrix.

    Args:
        q: Unit quaternion as numpy array [qw, qx, qy, qz].

    Returns:
        3x3 rotation matrix R such that v_parent = R @ v_local.

    Raises:
        ValueError: If q is not a 4-element array.
    """
    q = np.asarray(q, dtype=np.float64)
    if q.shape != (4,):
        raise ValueError(f"Expected 4-element quaternion, got shape {q.shape}")

    qw, qx, qy, qz = q

    R = np.array(
        [
            [
                1.0 - 2.0 * (qy * qy + qz * qz),
                2.0 * (qx * qy - qw * qz),
                2.0 * (qx * qz + qw * qy),
            ],
            [
                2.0 * (qx * qy + qw * qz),
                1.0 - 2.0 * (qx * qx + qz * qz),
                2.0 * (qy * qz - qw * qx),
            ],
            [
                2.0 * (qx * qz - qw * qy),
                2.0 * (qy * qz + qw * qx),
                1.0 - 2.0 * (qx * qx + qy * qy),
            ],
        ],
        dtype=np.float64,
    )

    return R


def rotation_matrix_to_quat(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Convert rotation matrix to quaternion.

    Extracts a unit quaternion from a 3x3 rotation matrix using
    Shepperd's method for numerical stability. The returned quaternion
    has a non-negative scalar part.

    Args:
        R: 3x3 rotation matrix (orthogonal matrix in SO(3)).

    Returns:
        Unit quaternion as numpy array [qw, qx, qy, qz].

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    # Shepperd's method: choose largest diagonal element for stability
    trace = np.trace(R)

    if trace > 0:
        s = 0.5 / np.sqrt(trace + 1.0)
        qw = 0.25 / s
        qx = (R[2, 1] - R[1, 2]) * s
        qy = (R[0, 2] - R[2, 0]) * s
        qz = (R[1, 0] - R[0, 1]) * s
    elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
        qw = (R[2, 1] - R[1, 2]) / s
        qx = 0.25 * s
        qy = (R[0, 1] + R[1, 0]) / s
        qz = (R[0, 2] + R[2, 0]) / s
    elif R[1, 1] > R[2, 2]:
        s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
        qw = (R[0, 2] - R[2, 0]) / s
        qx = (R[0, 1] + R[1, 0]) / s
        qy = 0.25 * s
        qz = (R[1, 2] + R[2, 1]) / s
    else:
        s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
        qw = (R[1, 0] - R[0, 1]) / s
        qx = (R[0, 2] + R[2, 0]) / s
        qy = (R[1, 2] + R[2, 1]) / s
        qz = 0.25 * s

    return quat_normalize(np.array([qw, qx, qy, qz], dtype=np.float64))


def quat_exp(phi: NDArray[np.float64]) -> NDArray[np.float64]:
    """Map a rotation vector to a unit quaternion.

    Args:
        phi: Rotation vector (axis * angle) in radians, shape (3,).

    Returns:
        Unit quaternion [qw, qx, qy, qz] with R(q) = Exp(phi).
    """
    phi = np.asarray(phi, dtype=np.float64)
    theta = np.linalg.norm(phi)
    if theta < _SMALL_ANGLE:
        q = np.concatenate(([1.0], 0.5 * phi))
        return q / np.linalg.norm(q)
    half = 0.5 * theta
    return np.concatenate(([np.cos(half)], np.sin(half) * phi / theta))


def quat_log(q: NDArray[np.float64]) -> NDArray[np.float64]:
    """Map a unit quaternion to its rotation vector in [-π, π]."""
    q = np.asarray(q, dtype=np.float64)
    if q[0] < 0.0:
        q = -q
    v = q[1:4]
    n = np.linalg.norm(v)
    if n < _SMALL_ANGLE:
        return 2.0 * v / q[0]
    angle = 2.0 * np.arctan2(n, q[0])
    return angle * v / n


def so3_exp(phi: NDArray[np.float64]) -> NDArray[np.float64]:
    """Exponential map so(3) -> SO(3) (Rodrigues' formula)."""
    phi = np.asarray(phi, dtype=np.float64)
    theta = np.linalg.norm(phi)
    K = skew(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + K + 0.5 * K @ K
    return (
        np.eye(3)
        + (np.sin(theta) / theta) * K
        + ((1.0 - np.cos(theta)) / theta**2) * K @ K
    )


def so3_log(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """Logarithm map SO(3) -> so(3), returned as a rotation vector.

    Goes through the quaternion to stay well conditioned near π.
    """
    return quat_log(rotation_matrix_to_quat(R))


def right_jacobian(phi: NDArray[np.float64]) -> NDArray[np.float64]:
    """Right Jacobian of SO(3).

    Satisfies Exp(phi + δ) ≈ Exp(phi) @ Exp(Jr(phi) @ δ).
    """
    phi = np.asarray(phi, dtype=np.float64)
    theta = np.linalg.norm(phi)
    K = skew(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) - 0.5 * K
    return (
        np.eye(3)
        - ((1.0 - np.cos(theta)) / theta**2) * K
        + ((theta - np.sin(theta)) / theta**3) * K @ K
    )


def right_jacobian_inverse(phi: NDArray[np.float64]) -> NDArray[np.float64]:
    """Inverse of the right Jacobian of SO(3).

    Satisfies Log(Exp(phi) @ Exp(δ)) ≈ phi + Jr⁻¹(phi) @ δ.
    """
    phi = np.asarray(phi, dtype=np.float64)
    theta = np.linalg.norm(phi)
    K = skew(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * K
    return (
        np.eye(3)
        + 0.5 * K
        + (1.0 / theta**2 - (1.0 + np.cos(theta)) / (2.0 * theta * np.sin(theta))) * K @ K
    )


def quat_slerp(
    q0: NDArray[np.float64],
    q1: NDArray[np.float64],
    alpha: float,
) -> NDArray[np.float64]:
    """Spherical linear interpolation between two unit quaternions.

    Args:
        q0: Quaternion at alpha = 0.
        q1: Quaternion at alpha = 1.
        alpha: Interpolation fraction in [0, 1].

    Returns:
        Interpolated unit quaternion along the shortest arc.
    """
    q0 = np.asarray(q0, dtype=np.float64)
    q1 = np.asarray(q1, dtype=np.float64)
    if np.dot(q0, q1) < 0.0:
        q1 = -q1
    delta = quat_log(quat_multiply(quat_conjugate(q0), q1))
    return quat_normalize(quat_multiply(q0, quat_exp(alpha * delta)))
