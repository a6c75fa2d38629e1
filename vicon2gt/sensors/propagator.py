"""
IMU preintegration between keyframe times.

The Propagator answers two questions for the graph assembler:
    - has_bounding_imu(t): is there inertial data on both sides of t?
    - propagate(t0, t1, bg, ba): the preintegrated relative motion between
      t0 and t1, linearized about the given bias estimate.

ImuPropagator implements both from raw IMU samples. Preintegration runs on
SO(3) with a midpoint (averaged-sample) discretisation, and propagates the
measurement covariance and the first-order bias Jacobians alongside the
deltas:

    ΔR_{k+1} = ΔR_k Exp((ω̄ - bg) δt)
    Δv_{k+1} = Δv_k + ΔR_k (ā - ba) δt
    Δp_{k+1} = Δp_k + Δv_k δt + ½ ΔR_k (ā - ba) δt²

where ω̄, ā are the averages of consecutive gyro / accelerometer samples.
Discrete white noise variances are σ²/δt; bias random walk adds σ_b² Δt to
the bias blocks of the 15x15 covariance.
"""

from typing import Optional, Protocol, Tuple

import numpy as np

from vicon2gt.coords.rotations import (
    right_jacobian,
    rotation_matrix_to_quat,
    skew,
    so3_exp,
)
from vicon2gt.sensors.types import ImuNoise, PreintegratedDelta


class Propagator(Protocol):
    """Interface the graph assembler needs from the inertial side."""

    def has_bounding_imu(self, t: float) -> bool:
        ...

    def propagate(
        self,
        t0: float,
        t1: float,
        bias_gyro: np.ndarray,
        bias_accel: np.ndarray,
    ) -> Tuple[Optional[PreintegratedDelta], bool]:
        ...


class ImuPropagator:
    """
    Preintegrates raw IMU samples between arbitrary times.

    Args:
        t: IMU timestamps (N,), strictly increasing, seconds.
        gyro: Gyroscope samples (N, 3), rad/s, IMU frame.
        accel: Accelerometer samples (N, 3), m/s², IMU frame (specific force).
        noise: IMU noise densities.

    Example:
        >>> prop = ImuPropagator(t, gyro, accel)
        >>> delta, ok = prop.propagate(0.0, 0.1, np.zeros(3), np.zeros(3))
        >>> delta.dt
        0.1
    """

    def __init__(
        self,
        t: np.ndarray,
        gyro: np.ndarray,
        accel: np.ndarray,
        noise: Optional[ImuNoise] = None,
    ):
        t = np.asarray(t, dtype=float)
        gyro = np.asarray(gyro, dtype=float)
        accel = np.asarray(accel, dtype=float)

        if t.ndim != 1:
            raise ValueError(f"t must be 1D, got shape {t.shape}")
        if gyro.shape != (len(t), 3):
            raise ValueError(f"gyro must have shape ({len(t)}, 3), got {gyro.shape}")
        if accel.shape != (len(t), 3):
            raise ValueError(f"accel must have shape ({len(t)}, 3), got {accel.shape}")
        if len(t) > 1 and np.any(np.diff(t) <= 0):
            raise ValueError("IMU timestamps must be strictly increasing")

        self.t = t
        self.gyro = gyro
        self.accel = accel
        self.noise = noise or ImuNoise()

    def has_bounding_imu(self, t: float) -> bool:
        """True iff there is an IMU sample at or before t and one at or after t."""
        if len(self.t) == 0:
            return False
        return bool(self.t[0] <= t <= self.t[-1])

    def _sample_at(self, t: float) -> Tuple[np.ndarray, np.ndarray]:
        """Linearly interpolated (gyro, accel) at time t."""
        gyro = np.array([np.interp(t, self.t, self.gyro[:, i]) for i in range(3)])
        accel = np.array([np.interp(t, self.t, self.accel[:, i]) for i in range(3)])
        return gyro, accel

    def select_imu_readings(self, t0: float, t1: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        IMU readings covering [t0, t1], with interpolated boundary samples.

        Returns:
            Tuple (t, gyro, accel) whose first time is t0 and last is t1.
        """
        inside = (self.t > t0) & (self.t < t1)
        g0, a0 = self._sample_at(t0)
        g1, a1 = self._sample_at(t1)
        t = np.concatenate(([t0], self.t[inside], [t1]))
        gyro = np.vstack((g0, self.gyro[inside], g1))
        accel = np.vstack((a0, self.accel[inside], a1))
        return t, gyro, accel

    def propagate(
        self,
        t0: float,
        t1: float,
        bias_gyro: np.ndarray,
        bias_accel: np.ndarray,
    ) -> Tuple[Optional[PreintegratedDelta], bool]:
        """
        Preintegrate IMU readings from t0 to t1.

        Args:
            t0: Start time (s).
            t1: End time (s), must be greater than t0.
            bias_gyro: Gyroscope bias linearization point (3,).
            bias_accel: Accelerometer bias linearization point (3,).

        Returns:
            Tuple (delta, success). delta is None when the interval is not
            covered by IMU data.
        """
        if t1 <= t0 or not (self.has_bounding_imu(t0) and self.has_bounding_imu(t1)):
            return None, False

        bg = np.asarray(bias_gyro, dtype=float).reshape(3)
        ba = np.asarray(bias_accel, dtype=float).reshape(3)
        t, gyro, accel = self.select_imu_readings(t0, t1)

        sigma_w2 = self.noise.sigma_w**2
        sigma_a2 = self.noise.sigma_a**2

        dR = np.eye(3)
        dv = np.zeros(3)
        dp = np.zeros(3)
        J_Rg = np.zeros((3, 3))
        J_Vg = np.zeros((3, 3))
        J_Va = np.zeros((3, 3))
        J_Pg = np.zeros((3, 3))
        J_Pa = np.zeros((3, 3))
        P = np.zeros((9, 9))
        I3 = np.eye(3)

        n_steps = 0
        for k in range(len(t) - 1):
            dt = t[k + 1] - t[k]
            if dt <= 0.0:
                continue
            n_steps += 1

            w = 0.5 * (gyro[k] + gyro[k + 1]) - bg
            a = 0.5 * (accel[k] + accel[k + 1]) - ba
            dR_k = so3_exp(w * dt)
            Jr_k = right_jacobian(w * dt)
            a_x = skew(a)

            # Error-state transition and noise maps, order [θ, v, p]
            A = np.eye(9)
            A[0:3, 0:3] = dR_k.T
            A[3:6, 0:3] = -dR @ a_x * dt
            A[6:9, 0:3] = -0.5 * dR @ a_x * dt**2
            A[6:9, 3:6] = I3 * dt
            B_g = np.zeros((9, 3))
            B_g[0:3] = Jr_k * dt
            B_a = np.zeros((9, 3))
            B_a[3:6] = dR * dt
            B_a[6:9] = 0.5 * dR * dt**2
            P = A @ P @ A.T + (sigma_w2 / dt) * B_g @ B_g.T + (sigma_a2 / dt) * B_a @ B_a.T

            # Bias Jacobians (use values before this step's update)
            J_Pa = J_Pa + J_Va * dt - 0.5 * dR * dt**2
            J_Pg = J_Pg + J_Vg * dt - 0.5 * dR @ a_x @ J_Rg * dt**2
            J_Va = J_Va - dR * dt
            J_Vg = J_Vg - dR @ a_x @ J_Rg * dt
            J_Rg = dR_k.T @ J_Rg - Jr_k * dt

            dp = dp + dv * dt + 0.5 * dR @ a * dt**2
            dv = dv + dR @ a * dt
            dR = dR @ dR_k

        DT = t1 - t0
        covariance = np.zeros((15, 15))
        covariance[0:9, 0:9] = P
        covariance[9:12, 9:12] = I3 * self.noise.sigma_wb**2 * DT
        covariance[12:15, 12:15] = I3 * self.noise.sigma_ab**2 * DT

        delta = PreintegratedDelta(
            dt=DT,
            q=rotation_matrix_to_quat(dR),
            v=dv,
            p=dp,
            covariance=0.5 * (covariance + covariance.T),
            bias_gyro_lin=bg.copy(),
            bias_accel_lin=ba.copy(),
            d_rot_d_bg=J_Rg,
            d_vel_d_bg=J_Vg,
            d_vel_d_ba=J_Va,
            d_pos_d_bg=J_Pg,
            d_pos_d_ba=J_Pa,
            num_samples=n_steps,
        )
        return delta, True
