"""
Simulation utilities for synthetic IMU and motion-capture recordings.

Modules:
    imu_from_trajectory: IMU (gyro, specific force) and mocap body poses
        generated from an analytic IMU trajectory

The forward models follow the estimator's conventions:
    - Accelerometers measure specific force f = Rᵀ (a + g)
    - Gyroscopes measure the body-frame angular rate
    - The mocap tracks a body rigidly attached through (R_BtoI, p_BinI)
"""

from vicon2gt.sim.imu_from_trajectory import (
    SyntheticDataset,
    TrajectoryParams,
    compute_gyro_body,
    compute_specific_force_body,
    generate_vicon_imu_data,
    sample_trajectory,
)

__all__ = [
    "SyntheticDataset",
    "TrajectoryParams",
    "sample_trajectory",
    "compute_gyro_body",
    "compute_specific_force_body",
    "generate_vicon_imu_data",
]
