"""Run configuration for the mocap-to-IMU estimator.

All options have defaults, so an empty JSON object is a valid config:

    {
        "grav_inV": [0.0, 0.0, 9.8],
        "R_BtoI": [1, 0, 0, 0, 1, 0, 0, 0, 1],
        "p_BinI": [0.0, 0.0, 0.0],
        "toff_imu_to_vicon": 0.0,
        "enforce_grav_mag": false,
        "estimate_toff_vicon_to_imu": false,
        "num_loop_relin": 0,
        "gyroscope_noise_density": 1.6968e-04,
        "accelerometer_noise_density": 2.0e-03,
        "gyroscope_random_walk": 1.9393e-05,
        "accelerometer_random_walk": 3.0e-03,
        "vicon_rotation_sigma": 0.01,
        "vicon_position_sigma": 0.001
    }
"""

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np

from vicon2gt.errors import ConfigurationError
from vicon2gt.estimators.factor_graph import LevenbergMarquardtParams
from vicon2gt.sensors.types import ImuNoise

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationConfig:
    """
    Options of one calibration run.

    Attributes:
        grav_inV: Initial gravity vector in the mocap reference frame (m/s²).
        R_BtoI: Initial extrinsic rotation, body -> IMU (3x3).
        p_BinI: Initial extrinsic translation, body origin in IMU frame (m).
        toff_imu_to_vicon: Initial time offset added to keyframe times
            before querying the mocap trajectory (s).
        enforce_grav_mag: Constrain ‖g‖ to ‖grav_inV‖ with a prior.
        estimate_toff_vicon_to_imu: Estimate the time offset.
        num_loop_relin: Extra relinearization rounds (0 = single pass).
        gravity_magnitude_sigma: Std-dev of the gravity magnitude prior.
        toff_prior_sigma: Std-dev of the time-offset prior (s).
        max_iterations: Solver iteration cap per round.
        relative_error_tol: Solver relative error decrease tolerance.
        absolute_error_tol: Solver absolute error decrease tolerance.
        lambda_initial: Initial Levenberg-Marquardt damping.
        lambda_upper_bound: Upper bound of the damping.
        gyroscope_noise_density: Gyroscope white noise (rad/s/√Hz).
        accelerometer_noise_density: Accelerometer white noise (m/s²/√Hz).
        gyroscope_random_walk: Gyroscope bias random walk (rad/s²/√Hz).
        accelerometer_random_walk: Accelerometer bias random walk (m/s³/√Hz).
        vicon_rotation_sigma: Std-dev of one mocap orientation sample (rad).
        vicon_position_sigma: Std-dev of one mocap position sample (m).
    """

    grav_inV: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 9.8]))
    R_BtoI: np.ndarray = field(default_factory=lambda: np.eye(3))
    p_BinI: np.ndarray = field(default_factory=lambda: np.zeros(3))
    toff_imu_to_vicon: float = 0.0
    enforce_grav_mag: bool = False
    estimate_toff_vicon_to_imu: bool = False
    num_loop_relin: int = 0
    gravity_magnitude_sigma: float = 1e-5
    toff_prior_sigma: float = 0.02
    max_iterations: int = 20
    relative_error_tol: float = 1e-10
    absolute_error_tol: float = 1e-10
    lambda_initial: float = 1e-5
    lambda_upper_bound: float = 1e20
    gyroscope_noise_density: float = ImuNoise.sigma_w
    accelerometer_noise_density: float = ImuNoise.sigma_a
    gyroscope_random_walk: float = ImuNoise.sigma_wb
    accelerometer_random_walk: float = ImuNoise.sigma_ab
    vicon_rotation_sigma: float = 0.01
    vicon_position_sigma: float = 0.001

    def __post_init__(self) -> None:
        grav = np.asarray(self.grav_inV, dtype=float).reshape(-1)
        if grav.shape != (3,) or not np.all(np.isfinite(grav)):
            raise ConfigurationError(f"grav_inV must be 3 finite values, got {self.grav_inV}")
        object.__setattr__(self, "grav_inV", grav)

        R = np.asarray(self.R_BtoI, dtype=float)
        if R.size != 9:
            raise ConfigurationError(f"R_BtoI must have 9 values, got {R.size}")
        R = R.reshape(3, 3)
        if not np.allclose(R @ R.T, np.eye(3), atol=1e-6) or np.linalg.det(R) <= 0:
            raise ConfigurationError(f"R_BtoI is not a rotation matrix:\n{R}")
        object.__setattr__(self, "R_BtoI", R)

        p = np.asarray(self.p_BinI, dtype=float).reshape(-1)
        if p.shape != (3,) or not np.all(np.isfinite(p)):
            raise ConfigurationError(f"p_BinI must be 3 finite values, got {self.p_BinI}")
        object.__setattr__(self, "p_BinI", p)

        if not np.isfinite(self.toff_imu_to_vicon):
            raise ConfigurationError("toff_imu_to_vicon must be finite")
        if int(self.num_loop_relin) != self.num_loop_relin or self.num_loop_relin < 0:
            raise ConfigurationError(
                f"num_loop_relin must be a non-negative integer, got {self.num_loop_relin}"
            )
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        for name in (
            "gravity_magnitude_sigma",
            "toff_prior_sigma",
            "vicon_rotation_sigma",
            "vicon_position_sigma",
        ):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0):
                raise ConfigurationError(f"{name} must be positive, got {value}")
        for name in (
            "gyroscope_noise_density",
            "accelerometer_noise_density",
            "gyroscope_random_walk",
            "accelerometer_random_walk",
        ):
            value = getattr(self, name)
            if not (np.isfinite(value) and value >= 0):
                raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")

    @property
    def num_rounds(self) -> int:
        """Total number of build-and-solve rounds."""
        return int(self.num_loop_relin) + 1

    def solver_params(self) -> LevenbergMarquardtParams:
        return LevenbergMarquardtParams(
            max_iterations=int(self.max_iterations),
            relative_error_tol=self.relative_error_tol,
            absolute_error_tol=self.absolute_error_tol,
            lambda_initial=self.lambda_initial,
            lambda_upper_bound=self.lambda_upper_bound,
        )

    def imu_noise(self) -> ImuNoise:
        return ImuNoise(
            sigma_w=self.gyroscope_noise_density,
            sigma_a=self.accelerometer_noise_density,
            sigma_wb=self.gyroscope_random_walk,
            sigma_ab=self.accelerometer_random_walk,
        )

    def vicon_covariance(self) -> np.ndarray:
        """Covariance of one mocap pose sample, ordered [rotation, position]."""
        return np.diag([self.vicon_rotation_sigma**2] * 3 + [self.vicon_position_sigma**2] * 3)

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "CalibrationConfig":
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            logger.warning("ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in options.items() if k in known})

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "CalibrationConfig":
        """Load a config from a JSON file."""
        try:
            with open(path, "r") as f:
                options = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read config {path}: {e}") from e
        if not isinstance(options, dict):
            raise ConfigurationError(f"config {path} must hold a JSON object")
        return cls.from_dict(options)

    def describe(self) -> str:
        """Human-readable summary of the initial values and flags."""
        return (
            f"init_grav_inV: {self.grav_inV}\n"
            f"init_R_BtoI:\n{self.R_BtoI}\n"
            f"init_p_BinI: {self.p_BinI}\n"
            f"init_toff_imu_to_vicon: {self.toff_imu_to_vicon}\n"
            f"enforce_grav_mag: {int(self.enforce_grav_mag)}\n"
            f"estimate_toff_vicon_to_imu: {int(self.estimate_toff_vicon_to_imu)}\n"
            f"num_loop_relin: {self.num_loop_relin}\n"
            f"imu_noise: gyro {self.gyroscope_noise_density:.4e}, accel {self.accelerometer_noise_density:.4e}, "
            f"gyro_rw {self.gyroscope_random_walk:.4e}, accel_rw {self.accelerometer_random_walk:.4e}\n"
            f"vicon_sigma: rotation {self.vicon_rotation_sigma:.4e}, position {self.vicon_position_sigma:.4e}"
        )
