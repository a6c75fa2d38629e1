"""
Mocap-to-IMU calibration graph and its solve loop.

Available components:
    - keyframes: KeyframeCatalog and filter_and_index
    - factors: pose, time-offset pose, preintegrated IMU and prior residuals
    - graph_builder: ViconGraphBuilder (one construction pass)
    - solver: ViconGraphSolver (relinearization rounds)
    - export: state CSV and info report
"""

from vicon2gt.calibration.export import (
    read_state_csv,
    write_info_file,
    write_state_csv,
)
from vicon2gt.calibration.factors import (
    create_gravity_magnitude_prior,
    create_preintegrated_imu_factor,
    create_prior_factor,
    create_vicon_pose_factor,
    create_vicon_pose_timeoffset_factor,
)
from vicon2gt.calibration.graph_builder import CalibrationContext, ViconGraphBuilder
from vicon2gt.calibration.keyframes import KeyframeCatalog, filter_and_index
from vicon2gt.calibration.solver import (
    CalibrationResult,
    LoopState,
    RoundSummary,
    ViconGraphSolver,
)

__all__ = [
    "KeyframeCatalog",
    "filter_and_index",
    "create_prior_factor",
    "create_gravity_magnitude_prior",
    "create_vicon_pose_factor",
    "create_vicon_pose_timeoffset_factor",
    "create_preintegrated_imu_factor",
    "CalibrationContext",
    "ViconGraphBuilder",
    "CalibrationResult",
    "LoopState",
    "RoundSummary",
    "ViconGraphSolver",
    "write_state_csv",
    "read_state_csv",
    "write_info_file",
]
