"""
Data structures shared by the inertial and motion-capture components.

This module defines:
    - NavState: per-keyframe IMU state (orientation, biases, velocity, position)
    - ImuNoise: continuous-time IMU noise densities
    - PreintegratedDelta: relative motion measurement between two keyframes

Frame Conventions:
    - I: IMU (sensor) frame
    - B: mocap body frame (rigid body tracked by the motion-capture system)
    - V: mocap reference frame (the "world" of the motion-capture system)

Quaternion Convention:
    - Scalar-first Hamilton [qw, qx, qy, qz]
    - NavState.q rotates IMU-frame vectors into V: v_V = R(q) @ v_I

NavState tangent layout (15-dim), in storage order:
    [δθ (0:3), δbg (3:6), δv (6:9), δba (9:12), δp (12:15)]
with the orientation perturbed on the right, q ⊕ δθ = q ⊗ exp(δθ).
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from vicon2gt.coords.rotations import (
    quat_conjugate,
    quat_exp,
    quat_log,
    quat_multiply,
    quat_normalize,
    quat_to_rotation_matrix,
)

NAV_STATE_DIM = 15
IDX_THETA = slice(0, 3)
IDX_BG = slice(3, 6)
IDX_V = slice(6, 9)
IDX_BA = slice(9, 12)
IDX_P = slice(12, 15)


def _vec3(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {np.shape(value)}")
    return arr.copy()


@dataclass(frozen=True)
class NavState:
    """
    Inertial navigation state at one keyframe.

    Attributes:
        q: Orientation quaternion IMU -> V, [qw, qx, qy, qz].
        bg: Gyroscope bias (rad/s).
        v: Velocity of the IMU in V (m/s).
        ba: Accelerometer bias (m/s²).
        p: Position of the IMU in V (m).

    Example:
        >>> state = NavState.identity()
        >>> moved = state.retract(np.r_[np.zeros(12), 1.0, 0.0, 0.0])
        >>> moved.p
        array([1., 0., 0.])
    """

    q: np.ndarray
    bg: np.ndarray = field(default_factory=lambda: np.zeros(3))
    v: np.ndarray = field(default_factory=lambda: np.zeros(3))
    ba: np.ndarray = field(default_factory=lambda: np.zeros(3))
    p: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        q = np.asarray(self.q, dtype=np.float64).reshape(-1)
        if q.shape != (4,):
            raise ValueError(f"q must have shape (4,), got {np.shape(self.q)}")
        object.__setattr__(self, "q", quat_normalize(q))
        object.__setattr__(self, "bg", _vec3(self.bg, "bg"))
        object.__setattr__(self, "v", _vec3(self.v, "v"))
        object.__setattr__(self, "ba", _vec3(self.ba, "ba"))
        object.__setattr__(self, "p", _vec3(self.p, "p"))

    @classmethod
    def identity(cls) -> "NavState":
        """State at the origin with identity orientation and zero biases."""
        return cls(q=np.array([1.0, 0.0, 0.0, 0.0]))

    @property
    def R(self) -> np.ndarray:
        """Rotation matrix IMU -> V."""
        return quat_to_rotation_matrix(self.q)

    def retract(self, delta: np.ndarray) -> "NavState":
        """Apply a 15-dim tangent update and return the new state."""
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (NAV_STATE_DIM,):
            raise ValueError(f"delta must have shape ({NAV_STATE_DIM},), got {delta.shape}")
        return NavState(
            q=quat_multiply(self.q, quat_exp(delta[IDX_THETA])),
            bg=self.bg + delta[IDX_BG],
            v=self.v + delta[IDX_V],
            ba=self.ba + delta[IDX_BA],
            p=self.p + delta[IDX_P],
        )

    def local(self, other: "NavState") -> np.ndarray:
        """Tangent vector δ such that self.retract(δ) == other."""
        delta = np.zeros(NAV_STATE_DIM)
        delta[IDX_THETA] = quat_log(quat_multiply(quat_conjugate(self.q), other.q))
        delta[IDX_BG] = other.bg - self.bg
        delta[IDX_V] = other.v - self.v
        delta[IDX_BA] = other.ba - self.ba
        delta[IDX_P] = other.p - self.p
        return delta


@dataclass(frozen=True)
class ImuNoise:
    """
    Continuous-time IMU noise densities.

    Attributes:
        sigma_w: Gyroscope white noise density (rad/s/√Hz).
        sigma_a: Accelerometer white noise density (m/s²/√Hz).
        sigma_wb: Gyroscope bias random walk (rad/s²/√Hz).
        sigma_ab: Accelerometer bias random walk (m/s³/√Hz).
    """

    sigma_w: float = 1.6968e-04
    sigma_a: float = 2.0000e-03
    sigma_wb: float = 1.9393e-05
    sigma_ab: float = 3.0000e-03

    def __post_init__(self) -> None:
        for name in ("sigma_w", "sigma_a", "sigma_wb", "sigma_ab"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be finite and non-negative, got {value}")


@dataclass
class PreintegratedDelta:
    """
    Preintegrated IMU measurement between two keyframe times.

    The deltas are expressed in the IMU frame of the first keyframe and
    were computed with the bias linearization point (bias_gyro_lin,
    bias_accel_lin). The covariance is ordered like the IMU factor
    residual: [rotation, velocity, position, gyro bias, accel bias].

    Attributes:
        dt: Elapsed time t1 - t0 (s).
        q: Preintegrated rotation, [qw, qx, qy, qz].
        v: Preintegrated velocity change (m/s).
        p: Preintegrated position change (m).
        covariance: 15x15 measurement covariance.
        bias_gyro_lin: Gyroscope bias used for integration.
        bias_accel_lin: Accelerometer bias used for integration.
        d_rot_d_bg: ∂rotation/∂bg (3x3).
        d_vel_d_bg: ∂velocity/∂bg (3x3).
        d_vel_d_ba: ∂velocity/∂ba (3x3).
        d_pos_d_bg: ∂position/∂bg (3x3).
        d_pos_d_ba: ∂position/∂ba (3x3).
    """

    dt: float
    q: np.ndarray
    v: np.ndarray
    p: np.ndarray
    covariance: np.ndarray
    bias_gyro_lin: np.ndarray
    bias_accel_lin: np.ndarray
    d_rot_d_bg: np.ndarray
    d_vel_d_bg: np.ndarray
    d_vel_d_ba: np.ndarray
    d_pos_d_bg: np.ndarray
    d_pos_d_ba: np.ndarray
    num_samples: Optional[int] = None

    def __post_init__(self) -> None:
        if self.covariance.shape != (NAV_STATE_DIM, NAV_STATE_DIM):
            raise ValueError(
                f"covariance must have shape ({NAV_STATE_DIM}, {NAV_STATE_DIM}), "
                f"got {self.covariance.shape}"
            )
