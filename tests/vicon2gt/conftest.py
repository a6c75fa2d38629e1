"""
Shared test doubles for the calibration tests.

The doubles implement the Propagator / Interpolator interfaces with closed
form answers, so the graph logic can be tested without real sensor data.
"""

from typing import Iterable, Optional

import numpy as np
import pytest

from vicon2gt.sensors.types import PreintegratedDelta


class StaticInterpolator:
    """Returns the same pose for every query, except at failing times."""

    def __init__(
        self,
        q: Optional[np.ndarray] = None,
        p: Optional[np.ndarray] = None,
        covariance: Optional[np.ndarray] = None,
        failing_times: Iterable[float] = (),
    ):
        self.q = np.array([1.0, 0.0, 0.0, 0.0]) if q is None else np.asarray(q, dtype=float)
        self.p = np.zeros(3) if p is None else np.asarray(p, dtype=float)
        self.covariance = (
            np.diag([1e-4, 1e-4, 1e-4, 1e-6, 1e-6, 1e-6]) if covariance is None else covariance
        )
        self.failing_times = list(failing_times)
        self.queries = []

    def get_pose(self, t):
        self.queries.append(t)
        if any(abs(t - tf) < 1e-6 for tf in self.failing_times):
            return np.full(4, np.nan), np.full(3, np.nan), np.full((6, 6), np.nan), False
        return self.q.copy(), self.p.copy(), np.array(self.covariance, dtype=float), True


class StationaryPropagator:
    """
    Preintegration of an IMU at rest with identity orientation.

    The accelerometer reads +g, so Δv = g Δt and Δp = ½ g Δt².
    """

    def __init__(
        self,
        t_start: float = -10.0,
        t_end: float = 10.0,
        gravity: Optional[np.ndarray] = None,
        covariance_scale: float = 1e-6,
        duration_error: float = 0.0,
        fail: bool = False,
    ):
        self.t_start = t_start
        self.t_end = t_end
        self.gravity = np.array([0.0, 0.0, 9.8]) if gravity is None else gravity
        self.covariance_scale = covariance_scale
        self.duration_error = duration_error
        self.fail = fail
        self.calls = []

    def has_bounding_imu(self, t):
        return self.t_start <= t <= self.t_end

    def propagate(self, t0, t1, bias_gyro, bias_accel):
        self.calls.append((t0, t1, np.array(bias_gyro), np.array(bias_accel)))
        if self.fail:
            return None, False
        dt = t1 - t0
        I3 = np.eye(3)
        delta = PreintegratedDelta(
            dt=dt + self.duration_error,
            q=np.array([1.0, 0.0, 0.0, 0.0]),
            v=self.gravity * dt,
            p=0.5 * self.gravity * dt**2,
            covariance=np.eye(15) * self.covariance_scale,
            bias_gyro_lin=np.array(bias_gyro, dtype=float),
            bias_accel_lin=np.array(bias_accel, dtype=float),
            d_rot_d_bg=-I3 * dt,
            d_vel_d_bg=np.zeros((3, 3)),
            d_vel_d_ba=-I3 * dt,
            d_pos_d_bg=np.zeros((3, 3)),
            d_pos_d_ba=-0.5 * I3 * dt**2,
        )
        return delta, True


@pytest.fixture
def static_interpolator():
    return StaticInterpolator


@pytest.fixture
def stationary_propagator():
    return StationaryPropagator
