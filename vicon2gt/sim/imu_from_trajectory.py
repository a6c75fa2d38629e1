"""
Generate synthetic IMU and motion-capture streams from an analytic trajectory.

The trajectory describes the IMU frame I in the mocap reference V:

    R_I(t) = Exp(φ(t)),  p_I(t)

with smooth sinusoidal φ(t) and p(t) so every derivative is exact.

IMU forward model (gravity g is the reaction direction, (0, 0, 9.8) by default):
    - Gyroscope:      ω_I = Jr(φ) φ̇ + bg + n_g
    - Accelerometer:  f_I = R_Iᵀ (p̈ + g) + ba + n_a

Mocap forward model, with the rigid body B attached to the IMU through
(R_BtoI, p_BinI) and a clock running toff ahead of the IMU clock:
    R_B(s) = R_I(s - toff) R_BtoI
    p_B(s) = p_I(s - toff) + R_I(s - toff) p_BinI
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from vicon2gt.coords.rotations import (
    right_jacobian,
    rotation_matrix_to_quat,
    so3_exp,
)
from vicon2gt.sensors.types import ImuNoise, NavState


@dataclass
class TrajectoryParams:
    """
    Shape of the analytic trajectory.

    Attributes:
        rot_amplitude: Amplitude of each rotation-vector component (rad).
        rot_frequency: Angular frequency of each rotation component (rad/s).
        pos_amplitude: Amplitude of each position component (m).
        pos_frequency: Angular frequency of each position component (rad/s).
    """

    rot_amplitude: np.ndarray = field(default_factory=lambda: np.array([0.3, 0.25, 0.6]))
    rot_frequency: np.ndarray = field(default_factory=lambda: np.array([0.9, 1.3, 0.5]))
    pos_amplitude: np.ndarray = field(default_factory=lambda: np.array([1.5, 1.0, 0.4]))
    pos_frequency: np.ndarray = field(default_factory=lambda: np.array([0.6, 1.2, 0.8]))


def sample_trajectory(
    t: np.ndarray, params: Optional[TrajectoryParams] = None
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Evaluate the analytic trajectory and its derivatives.

    Args:
        t: Sample times (N,), seconds.
        params: Trajectory shape.

    Returns:
        Tuple (phi, phi_dot, p, v, a), each (N, 3).
    """
    params = params or TrajectoryParams()
    t = np.asarray(t, dtype=float).reshape(-1, 1)

    A, w = params.rot_amplitude, params.rot_frequency
    phi = A * np.sin(w * t)
    phi_dot = A * w * np.cos(w * t)

    B, k = params.pos_amplitude, params.pos_frequency
    p = B * np.sin(k * t)
    v = B * k * np.cos(k * t)
    a = -B * k**2 * np.sin(k * t)
    return phi, phi_dot, p, v, a


def compute_gyro_body(phi: np.ndarray, phi_dot: np.ndarray) -> np.ndarray:
    """
    Body-frame angular rate of R(t) = Exp(φ(t)).

        ω = Jr(φ) φ̇

    Args:
        phi: Rotation vectors (N, 3).
        phi_dot: Their time derivatives (N, 3).

    Returns:
        Angular rates (N, 3), rad/s.
    """
    return np.array([right_jacobian(f) @ fd for f, fd in zip(phi, phi_dot)])


def compute_specific_force_body(
    accel_ref: np.ndarray, rotations: List[np.ndarray], gravity: np.ndarray
) -> np.ndarray:
    """
    Specific force measured by an ideal accelerometer.

        f = Rᵀ (a + g)

    A sensor at rest with identity orientation reads +g.
    """
    return np.array([R.T @ (a + gravity) for R, a in zip(rotations, accel_ref)])


@dataclass
class SyntheticDataset:
    """
    Simulated IMU, mocap and keyframe streams plus their ground truth.

    Attributes:
        t_imu, gyro, accel: IMU samples.
        t_vicon, vicon_positions, vicon_quaternions: Mocap body poses in the
            mocap clock.
        keyframe_times: Keyframe times in the IMU clock.
        true_states: IMU NavState at each keyframe.
        R_BtoI, p_BinI: True extrinsic calibration.
        gravity: True gravity in V.
        toff: True mocap clock offset (s).
    """

    t_imu: np.ndarray
    gyro: np.ndarray
    accel: np.ndarray
    t_vicon: np.ndarray
    vicon_positions: np.ndarray
    vicon_quaternions: np.ndarray
    keyframe_times: np.ndarray
    true_states: List[NavState]
    R_BtoI: np.ndarray
    p_BinI: np.ndarray
    gravity: np.ndarray
    toff: float


def generate_vicon_imu_data(
    duration: float = 12.0,
    imu_rate: float = 200.0,
    vicon_rate: float = 100.0,
    keyframe_rate: float = 10.0,
    R_BtoI: Optional[np.ndarray] = None,
    p_BinI: Optional[np.ndarray] = None,
    gravity: Optional[np.ndarray] = None,
    toff: float = 0.0,
    gyro_bias: Optional[np.ndarray] = None,
    accel_bias: Optional[np.ndarray] = None,
    noise: Optional[ImuNoise] = None,
    params: Optional[TrajectoryParams] = None,
    keyframe_margin: float = 1.5,
    seed: int = 42,
) -> SyntheticDataset:
    """
    Simulate one recording session.

    Args:
        duration: Length of the IMU recording (s).
        imu_rate: IMU sample rate (Hz).
        vicon_rate: Mocap sample rate (Hz).
        keyframe_rate: Keyframe rate (Hz).
        R_BtoI: True extrinsic rotation (default identity).
        p_BinI: True extrinsic translation (default zero).
        gravity: True gravity in V (default (0, 0, 9.8)).
        toff: Mocap clock minus IMU clock (s).
        gyro_bias: Constant gyroscope bias (default zero).
        accel_bias: Constant accelerometer bias (default zero).
        noise: White-noise densities of the IMU; None for noiseless data.
        params: Trajectory shape.
        keyframe_margin: Keyframes start and end this far (s) inside the
            recording so their mocap neighbourhood is covered.
        seed: Random seed of the IMU noise.

    Returns:
        SyntheticDataset.
    """
    R_BtoI = np.eye(3) if R_BtoI is None else np.asarray(R_BtoI, dtype=float)
    p_BinI = np.zeros(3) if p_BinI is None else np.asarray(p_BinI, dtype=float)
    gravity = np.array([0.0, 0.0, 9.8]) if gravity is None else np.asarray(gravity, dtype=float)
    bg = np.zeros(3) if gyro_bias is None else np.asarray(gyro_bias, dtype=float)
    ba = np.zeros(3) if accel_bias is None else np.asarray(accel_bias, dtype=float)
    if keyframe_margin * 2 >= duration:
        raise ValueError(f"duration {duration} s is too short for margin {keyframe_margin} s")

    # IMU
    t_imu = np.arange(0.0, duration + 0.5 / imu_rate, 1.0 / imu_rate)
    phi, phi_dot, _, _, a = sample_trajectory(t_imu, params)
    rotations = [so3_exp(f) for f in phi]
    gyro = compute_gyro_body(phi, phi_dot) + bg
    accel = compute_specific_force_body(a, rotations, gravity) + ba
    if noise is not None:
        rng = np.random.default_rng(seed)
        gyro = gyro + rng.normal(0.0, noise.sigma_w * np.sqrt(imu_rate), gyro.shape)
        accel = accel + rng.normal(0.0, noise.sigma_a * np.sqrt(imu_rate), accel.shape)

    # Mocap, stamped in its own clock
    t_vicon = np.arange(toff, duration + toff + 0.5 / vicon_rate, 1.0 / vicon_rate)
    phi_v, _, p_v, _, _ = sample_trajectory(t_vicon - toff, params)
    vicon_positions = np.zeros((len(t_vicon), 3))
    vicon_quaternions = np.zeros((len(t_vicon), 4))
    for i, (f, p) in enumerate(zip(phi_v, p_v)):
        R_I = so3_exp(f)
        vicon_quaternions[i] = rotation_matrix_to_quat(R_I @ R_BtoI)
        vicon_positions[i] = p + R_I @ p_BinI

    # Keyframes and ground truth
    keyframe_times = np.arange(keyframe_margin, duration - keyframe_margin, 1.0 / keyframe_rate)
    phi_k, _, p_k, v_k, _ = sample_trajectory(keyframe_times, params)
    true_states = [
        NavState(q=rotation_matrix_to_quat(so3_exp(f)), bg=bg, v=v, ba=ba, p=p)
        for f, p, v in zip(phi_k, p_k, v_k)
    ]

    return SyntheticDataset(
        t_imu=t_imu,
        gyro=gyro,
        accel=accel,
        t_vicon=t_vicon,
        vicon_positions=vicon_positions,
        vicon_quaternions=vicon_quaternions,
        keyframe_times=keyframe_times,
        true_states=true_states,
        R_BtoI=R_BtoI,
        p_BinI=p_BinI,
        gravity=gravity,
        toff=float(toff),
    )
