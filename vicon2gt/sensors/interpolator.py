"""
Motion-capture pose lookup at arbitrary times.

PoseInterpolator brackets the query time with two recorded mocap samples
and interpolates between them:
    - position: linear interpolation
    - orientation: spherical linear interpolation (slerp)

Each result carries a 6x6 covariance ordered [rotation (rad), position (m)].
A query fails (success = False) when it falls outside the recording or
inside a tracking drop-out, i.e. the bracketing samples are further apart
than max_gap.
"""

from typing import Optional, Protocol, Tuple

import numpy as np

from vicon2gt.coords.rotations import quat_normalize, quat_slerp

PoseLookup = Tuple[np.ndarray, np.ndarray, np.ndarray, bool]

DEFAULT_POSE_COVARIANCE = np.diag([1e-4, 1e-4, 1e-4, 1e-6, 1e-6, 1e-6])


class Interpolator(Protocol):
    """Interface the graph assembler needs from the mocap side."""

    def get_pose(self, t: float) -> PoseLookup:
        """Return (q_body_to_ref, p_body_in_ref, covariance_6x6, success)."""
        ...


class PoseInterpolator:
    """
    Interpolates a recorded mocap trajectory.

    Args:
        t: Mocap timestamps (N,), strictly increasing, seconds.
        positions: Body positions in the reference frame (N, 3), m.
        quaternions: Body-to-reference orientations (N, 4), [qw, qx, qy, qz].
        covariance: 6x6 covariance of one pose sample, [rotation, position].
        max_gap: Largest allowed spacing of bracketing samples (s).

    Example:
        >>> interp = PoseInterpolator(t, positions, quaternions)
        >>> q, p, cov, ok = interp.get_pose(1.234)
    """

    def __init__(
        self,
        t: np.ndarray,
        positions: np.ndarray,
        quaternions: np.ndarray,
        covariance: Optional[np.ndarray] = None,
        max_gap: float = 0.1,
    ):
        t = np.asarray(t, dtype=float)
        positions = np.asarray(positions, dtype=float)
        quaternions = np.asarray(quaternions, dtype=float)

        if t.ndim != 1:
            raise ValueError(f"t must be 1D, got shape {t.shape}")
        if positions.shape != (len(t), 3):
            raise ValueError(f"positions must have shape ({len(t)}, 3), got {positions.shape}")
        if quaternions.shape != (len(t), 4):
            raise ValueError(f"quaternions must have shape ({len(t)}, 4), got {quaternions.shape}")
        if len(t) > 1 and np.any(np.diff(t) <= 0):
            raise ValueError("Mocap timestamps must be strictly increasing")
        if max_gap <= 0:
            raise ValueError(f"max_gap must be positive, got {max_gap}")

        if covariance is None:
            covariance = DEFAULT_POSE_COVARIANCE
        covariance = np.asarray(covariance, dtype=float)
        if covariance.shape != (6, 6):
            raise ValueError(f"covariance must have shape (6, 6), got {covariance.shape}")

        self.t = t
        self.positions = positions
        self.quaternions = np.array([quat_normalize(q) for q in quaternions]) if len(t) else quaternions
        self.covariance = covariance.copy()
        self.max_gap = float(max_gap)

    def get_pose(self, t: float) -> PoseLookup:
        """
        Interpolated mocap pose at time t.

        Returns:
            Tuple (q, p, covariance, success). On failure q and p are NaN.
        """
        failed = (np.full(4, np.nan), np.full(3, np.nan), np.full((6, 6), np.nan), False)
        if len(self.t) == 0 or not np.isfinite(t):
            return failed
        if t < self.t[0] or t > self.t[-1]:
            return failed

        i1 = int(np.searchsorted(self.t, t, side="left"))
        if self.t[i1] == t:
            return self.quaternions[i1].copy(), self.positions[i1].copy(), self.covariance.copy(), True

        i0 = i1 - 1
        t0, t1 = self.t[i0], self.t[i1]
        if t1 - t0 > self.max_gap:
            return failed

        alpha = (t - t0) / (t1 - t0)
        p = (1.0 - alpha) * self.positions[i0] + alpha * self.positions[i1]
        q = quat_slerp(self.quaternions[i0], self.quaternions[i1], alpha)
        return q, p, self.covariance.copy(), True
