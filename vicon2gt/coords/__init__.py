"""Rotation representations and SO(3) operations.

Quaternions are scalar-first Hamilton quaternions [qw, qx, qy, qz];
perturbations are applied on the right, R ⊕ δ = R @ Exp(δ).
"""

from vicon2gt.coords.rotations import (
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

__all__ = [
    "skew",
    "quat_conjugate",
    "quat_exp",
    "quat_log",
    "quat_multiply",
    "quat_normalize",
    "quat_slerp",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    "so3_exp",
    "so3_log",
    "right_jacobian",
    "right_jacobian_inverse",
]
