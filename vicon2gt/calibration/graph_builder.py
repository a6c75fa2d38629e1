"""
Construction of the calibration factor graph.

One build pass turns the keyframe catalog into a fresh FactorGraph:

    1. (Re)seed calibration, gravity and time offset when initializing.
    2. Add the gravity magnitude and time-offset priors when enabled.
    3. For each keyframe, in time order:
        - query the mocap pose at t + toff and check its neighbourhood
        - drop the keyframe if the pose is unusable
        - seed its NavState when needed
        - add the mocap pose factor
        - bridge to the previous kept keyframe with a preintegrated IMU factor

Dropped keyframes never appear in the returned graph, values or catalog.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from vicon2gt.calibration.factors import (
    create_gravity_magnitude_prior,
    create_preintegrated_imu_factor,
    create_prior_factor,
    create_vicon_pose_factor,
    create_vicon_pose_timeoffset_factor,
    information_from_covariance,
)
from vicon2gt.calibration.keyframes import KeyframeCatalog
from vicon2gt.config import CalibrationConfig
from vicon2gt.coords.rotations import quat_to_rotation_matrix, rotation_matrix_to_quat
from vicon2gt.errors import (
    InternalConsistencyError,
    MeasurementGapError,
    NumericalSingularityError,
)
from vicon2gt.estimators.factor_graph import Factor, FactorGraph
from vicon2gt.estimators.keys import CALIB_ROTATION, CALIB_TRANSLATION, G, T, X
from vicon2gt.estimators.values import EUCLIDEAN, NAV_STATE, UNIT_QUATERNION, Manifold, Values
from vicon2gt.sensors.interpolator import Interpolator
from vicon2gt.sensors.propagator import Propagator
from vicon2gt.sensors.types import NavState

logger = logging.getLogger(__name__)

# Offsets (s) around the query time at which the mocap must also be valid
SUPPORT_OFFSETS = (-1.0, 1.0)

# Largest accepted difference between requested and preintegrated duration (s)
DURATION_TOLERANCE = 1e-9


@dataclass
class CalibrationContext:
    """
    Everything one calibration run carries from round to round.

    Attributes:
        values: Current estimate of every unknown.
        catalog: Keyframes still part of the problem.
        graph: Graph of the latest build pass.
        dropped: Keyframe times dropped so far, in drop order.
        timings: Per-round durations (s) keyed by "build", "optimize", "total".
        cancelled: True once a build pass was interrupted.
    """

    values: Values
    catalog: KeyframeCatalog
    graph: FactorGraph = field(default_factory=FactorGraph)
    dropped: List[float] = field(default_factory=list)
    timings: Dict[str, List[float]] = field(
        default_factory=lambda: {"build": [], "optimize": [], "total": []}
    )
    cancelled: bool = False


def _set_value(values: Values, key, value, manifold: Manifold) -> None:
    if values.exists(key):
        values.update(key, value)
    else:
        values.insert(key, value, manifold)


class ViconGraphBuilder:
    """
    Graph assembler for the mocap-to-IMU problem.

    Args:
        config: Run configuration.
        propagator: IMU preintegration source.
        interpolator: Mocap pose source.

    Example:
        >>> builder = ViconGraphBuilder(config, propagator, interpolator)
        >>> context = CalibrationContext(values=Values(), catalog=catalog)
        >>> context = builder.build(context, initialize_unknowns=True)
        >>> len(context.graph)
    """

    def __init__(
        self,
        config: CalibrationConfig,
        propagator: Propagator,
        interpolator: Interpolator,
    ):
        self.config = config
        self.propagator = propagator
        self.interpolator = interpolator

    def seed_unknowns(self, values: Values) -> None:
        """Set calibration, gravity and time offset to the configured values."""
        cfg = self.config
        _set_value(values, CALIB_ROTATION, rotation_matrix_to_quat(cfg.R_BtoI), UNIT_QUATERNION)
        _set_value(values, CALIB_TRANSLATION, cfg.p_BinI, EUCLIDEAN)
        _set_value(values, G(0), cfg.grav_inV, EUCLIDEAN)
        if cfg.estimate_toff_vicon_to_imu:
            _set_value(values, T(0), np.array([cfg.toff_imu_to_vicon]), EUCLIDEAN)

    def current_time_offset(self, values: Values) -> float:
        """Offset added to keyframe times before querying the mocap (s)."""
        if self.config.estimate_toff_vicon_to_imu:
            return float(values.at(T(0))[0])
        return float(self.config.toff_imu_to_vicon)

    def lookup_vicon(self, query_time: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Mocap pose at query_time, validated for use in a factor.

        Returns:
            Tuple (q, p, covariance).

        Raises:
            MeasurementGapError: If the pose, or a support sample around it, is missing.
            NumericalSingularityError: If the sample covariance is unusable.
        """
        for offset in SUPPORT_OFFSETS:
            _, _, _, ok = self.interpolator.get_pose(query_time + offset)
            if not ok:
                raise MeasurementGapError(query_time, f"no mocap support at {offset:+.1f} s")

        q, p, cov, ok = self.interpolator.get_pose(query_time)
        if not ok:
            raise MeasurementGapError(query_time, "no mocap pose at query time")
        q = np.asarray(q, dtype=float)
        p = np.asarray(p, dtype=float)
        if not (np.all(np.isfinite(q)) and np.all(np.isfinite(p))):
            raise MeasurementGapError(query_time, "mocap pose is not finite")
        information_from_covariance(cov, "mocap pose covariance")
        return q, p, np.asarray(cov, dtype=float)

    def seed_state(self, values: Values, q_meas: np.ndarray, p_meas: np.ndarray) -> NavState:
        """
        NavState consistent with a mocap pose and the current calibration.

        R_I = R_meas R_BtoIᵀ, p_I = p_meas - R_I p_BinI; velocity and
        biases start at zero.
        """
        R_BtoI = quat_to_rotation_matrix(values.at(CALIB_ROTATION))
        p_BinI = values.at(CALIB_TRANSLATION)
        R_I = quat_to_rotation_matrix(q_meas) @ R_BtoI.T
        return NavState(q=rotation_matrix_to_quat(R_I), p=p_meas - R_I @ p_BinI)

    def _pose_factor(self, t: float, idx: int, q_meas, p_meas, cov) -> Factor:
        if self.config.estimate_toff_vicon_to_imu:
            return create_vicon_pose_timeoffset_factor(
                X(idx), CALIB_ROTATION, CALIB_TRANSLATION, T(0), t, self.interpolator, cov
            )
        return create_vicon_pose_factor(X(idx), CALIB_ROTATION, CALIB_TRANSLATION, cov, q_meas, p_meas)

    def _imu_factor(self, values: Values, t_prev: float, idx_prev: int, t: float, idx: int) -> Factor:
        state_prev = values.at(X(idx_prev))
        delta, ok = self.propagator.propagate(t_prev, t, state_prev.bg, state_prev.ba)
        if not ok or delta is None:
            raise InternalConsistencyError(
                f"IMU propagation failed between keyframes {t_prev:.9f} and {t:.9f}"
            )
        if abs(delta.dt - (t - t_prev)) > DURATION_TOLERANCE:
            raise InternalConsistencyError(
                f"preintegrated duration {delta.dt:.12f} s does not match "
                f"keyframe spacing {t - t_prev:.12f} s"
            )
        try:
            return create_preintegrated_imu_factor(X(idx_prev), X(idx), G(0), delta)
        except NumericalSingularityError as e:
            logger.critical(
                "singular preintegration covariance between %.9f and %.9f: %s", t_prev, t, e
            )
            raise InternalConsistencyError(f"singular preintegration covariance: {e}") from e

    def build(
        self,
        context: CalibrationContext,
        initialize_unknowns: bool,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> CalibrationContext:
        """
        Build a fresh graph from the keyframes of the context.

        Args:
            context: Current run state. Left unmodified.
            initialize_unknowns: Seed calibration, gravity, time offset and
                every keyframe state from the configuration and the mocap.
            should_continue: Polled once per keyframe; when it returns
                False the remaining keyframes are skipped.

        Returns:
            New context holding the graph, the updated values and the
            catalog restricted to the keyframes kept in this pass.

        Raises:
            InternalConsistencyError: If IMU preintegration between two
                kept keyframes fails or is inconsistent.
        """
        start = time.perf_counter()
        cfg = self.config
        values = context.values.copy()
        graph = FactorGraph()

        if initialize_unknowns:
            self.seed_unknowns(values)

        if cfg.enforce_grav_mag:
            graph.add_factor(
                create_gravity_magnitude_prior(
                    G(0), float(np.linalg.norm(cfg.grav_inV)), cfg.gravity_magnitude_sigma
                )
            )
        if cfg.estimate_toff_vicon_to_imu:
            graph.add_factor(
                create_prior_factor(T(0), np.array([cfg.toff_imu_to_vicon]), cfg.toff_prior_sigma)
            )

        toff = self.current_time_offset(values)
        kept: List[float] = []
        dropped: List[float] = []
        cancelled = False
        previous: Optional[Tuple[float, int]] = None

        for t, idx in context.catalog:
            if should_continue is not None and not should_continue():
                remaining = len(context.catalog) - len(kept) - len(dropped)
                logger.info("build cancelled with %d keyframes left", remaining)
                cancelled = True
                break

            query_time = t + toff
            try:
                q_meas, p_meas, cov = self.lookup_vicon(query_time)
                pose_factor = self._pose_factor(t, idx, q_meas, p_meas, cov)
            except (MeasurementGapError, NumericalSingularityError) as e:
                logger.debug("dropping keyframe %.9f: %s", t, e)
                dropped.append(t)
                if values.exists(X(idx)):
                    values.erase(X(idx))
                continue

            if initialize_unknowns or not values.exists(X(idx)):
                _set_value(values, X(idx), self.seed_state(values, q_meas, p_meas), NAV_STATE)
            graph.add_factor(pose_factor)

            if previous is not None:
                graph.add_factor(self._imu_factor(values, previous[0], previous[1], t, idx))
            previous = (t, idx)
            kept.append(t)

        if cancelled:
            # Unvisited keyframes leave the problem along with their states
            for t, idx in context.catalog:
                if t not in kept and t not in dropped and values.exists(X(idx)):
                    values.erase(X(idx))

        if dropped:
            logger.warning("dropped %d keyframes without a valid mocap pose", len(dropped))

        elapsed = time.perf_counter() - start
        logger.info(
            "built graph: %d factors, %d keyframes, %d dropped (%.3f s)",
            len(graph), len(kept), len(dropped), elapsed,
        )

        timings = {name: list(durations) for name, durations in context.timings.items()}
        timings.setdefault("build", []).append(elapsed)
        return replace(
            context,
            values=values,
            catalog=context.catalog.retain(kept),
            graph=graph,
            dropped=context.dropped + dropped,
            timings=timings,
            cancelled=context.cancelled or cancelled,
        )
