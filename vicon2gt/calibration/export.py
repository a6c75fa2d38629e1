"""
Writers and readers for the estimator outputs.

State file (CSV, one row per keyframe in time order):

    #time(ns),px,py,pz,qw,qx,qy,qz,vx,vy,vz,bgx,bgy,bgz,bax,bay,baz

time(ns) is floor(1e9 * t); every other field has six significant digits.

Info file: plain-text report of the calibration, gravity and time offset.
"""

import logging
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

from vicon2gt.calibration.solver import CalibrationResult
from vicon2gt.coords.rotations import quat_to_rotation_matrix
from vicon2gt.sensors.types import NavState

logger = logging.getLogger(__name__)

STATE_HEADER = "#time(ns),px,py,pz,qw,qx,qy,qz,vx,vy,vz,bgx,bgy,bgz,bax,bay,baz"
STATE_DTYPE = np.dtype(
    [("time_ns", np.int64)] + [(name, np.float64) for name in STATE_HEADER.split(",")[1:]]
)
# integer nanoseconds, six significant digits elsewhere
STATE_FMT = ["%d"] + ["%.6g"] * 16

PathLike = Union[str, Path]


def time_to_ns(t: float) -> int:
    """Keyframe time in seconds to integer nanoseconds, rounding down."""
    return int(np.floor(1e9 * t))


def _prepare(path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        logger.info("replacing existing file %s", path)
    return path


def write_state_csv(path: PathLike, times: Sequence[float], states: Sequence[NavState]) -> Path:
    """
    Write keyframe states to a CSV file.

    Args:
        path: Output file. Replaced if it exists, parents are created.
        times: Keyframe times (s).
        states: NavState of each keyframe.

    Returns:
        Path of the written file.
    """
    if len(times) != len(states):
        raise ValueError(f"got {len(times)} times but {len(states)} states")
    path = _prepare(path)
    rows = np.array(
        [
            (time_to_ns(t), *np.concatenate((state.p, state.q, state.v, state.bg, state.ba)))
            for t, state in zip(times, states)
        ],
        dtype=STATE_DTYPE,
    )
    np.savetxt(path, rows, delimiter=",", fmt=STATE_FMT, header=STATE_HEADER[1:], comments="#")
    logger.info("saved %d states to %s", len(states), path)
    return path


def read_state_csv(path: PathLike) -> Tuple[np.ndarray, List[NavState]]:
    """
    Read a state file written by write_state_csv.

    Returns:
        Tuple (times_ns, states), times as int64 nanoseconds.
    """
    data = np.loadtxt(path, delimiter=",", comments="#", ndmin=2)
    if data.size == 0:
        return np.zeros(0, dtype=np.int64), []
    if data.shape[1] != 17:
        raise ValueError(f"expected 17 columns in {path}, got {data.shape[1]}")
    # nanosecond stamps exceed float64 precision, parse them as integers
    times_ns = np.loadtxt(path, delimiter=",", comments="#", usecols=0, dtype=np.int64, ndmin=1)
    states = [NavState(q=x[4:8], p=x[1:4], v=x[8:11], bg=x[11:14], ba=x[14:17]) for x in data]
    return times_ns, states


def write_info_file(path: PathLike, result: CalibrationResult) -> Path:
    """
    Write the human-readable calibration report.

    Sections: R_BtoI, q_BtoI, p_BinI, gravity, gravity norm and
    t_off_vicon_to_imu (0.0 when the offset was not estimated).
    """
    path = _prepare(path)
    R_BtoI = quat_to_rotation_matrix(result.q_BtoI)
    toff = result.time_offset if result.time_offset is not None else 0.0
    fmt = {"float_kind": lambda x: f"{x:.6f}"}

    lines = [
        "R_BtoI:",
        *(" ".join(f"{x:.6f}" for x in row) for row in R_BtoI),
        "",
        "q_BtoI (qw, qx, qy, qz):",
        np.array2string(result.q_BtoI, formatter=fmt),
        "",
        "p_BinI:",
        np.array2string(result.p_BinI, formatter=fmt),
        "",
        "gravity:",
        np.array2string(result.gravity, formatter=fmt),
        "",
        "gravity norm:",
        f"{np.linalg.norm(result.gravity):.6f}",
        "",
        "t_off_vicon_to_imu:",
        f"{toff:.9f}",
        "",
    ]
    with open(path, "w") as f:
        f.write("\n".join(lines))
    logger.info("saved calibration report to %s", path)
    return path
