"""
Calibration loop controller.

Drives the build -> solve -> advance cycle for a fixed number of rounds.
Each round rebuilds the graph so the preintegrated IMU factors are
relinearized about the bias estimates of the previous solution:

    BUILDING  -> SOLVING -> ADVANCING -> BUILDING ... -> DONE

Only the first round seeds the unknowns from the configuration; later
rounds start from the previous round's solution.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from vicon2gt.calibration.graph_builder import CalibrationContext, ViconGraphBuilder
from vicon2gt.calibration.keyframes import KeyframeCatalog, filter_and_index
from vicon2gt.config import CalibrationConfig
from vicon2gt.coords.rotations import quat_to_rotation_matrix
from vicon2gt.errors import ConfigurationError
from vicon2gt.estimators.factor_graph import OptimizationResult
from vicon2gt.estimators.keys import CALIB_ROTATION, CALIB_TRANSLATION, G, T, X
from vicon2gt.estimators.values import Values
from vicon2gt.sensors.interpolator import Interpolator
from vicon2gt.sensors.propagator import Propagator
from vicon2gt.sensors.types import NavState

logger = logging.getLogger(__name__)


class LoopState(Enum):
    BUILDING = "building"
    SOLVING = "solving"
    ADVANCING = "advancing"
    DONE = "done"


@dataclass
class RoundSummary:
    """Diagnostics of one build-and-solve round."""

    round_index: int
    num_keyframes: int
    num_factors: int
    iterations: int
    converged: bool
    initial_error: float
    final_error: float
    termination: str
    build_time: float
    optimize_time: float
    total_time: float


@dataclass
class CalibrationResult:
    """
    Final estimate of a calibration run.

    Attributes:
        values: Solved unknown store.
        catalog: Keyframes kept until the end of the run.
        rounds: Per-round diagnostics.
        dropped: Keyframe times dropped during the run.
        estimate_toff: Whether the time offset was an unknown.
        cancelled: True if a build pass was interrupted.
    """

    values: Values
    catalog: KeyframeCatalog
    rounds: List[RoundSummary] = field(default_factory=list)
    dropped: List[float] = field(default_factory=list)
    estimate_toff: bool = False
    cancelled: bool = False

    @property
    def q_BtoI(self) -> np.ndarray:
        return self.values.at(CALIB_ROTATION)

    @property
    def R_BtoI(self) -> np.ndarray:
        return quat_to_rotation_matrix(self.q_BtoI)

    @property
    def p_BinI(self) -> np.ndarray:
        return self.values.at(CALIB_TRANSLATION)

    @property
    def gravity(self) -> np.ndarray:
        return self.values.at(G(0))

    @property
    def time_offset(self) -> Optional[float]:
        """Estimated time offset, None when it was not estimated."""
        if not self.estimate_toff:
            return None
        return float(self.values.at(T(0))[0])

    @property
    def converged(self) -> bool:
        return bool(self.rounds) and self.rounds[-1].converged

    @property
    def times(self) -> List[float]:
        return list(self.catalog.times)

    @property
    def states(self) -> List[NavState]:
        """Solved NavStates of the kept keyframes, in time order."""
        return [self.values.at(X(idx)) for _, idx in self.catalog]


class ViconGraphSolver:
    """
    Runs the full mocap-to-IMU estimation.

    Args:
        config: Run configuration.
        propagator: IMU preintegration source.
        interpolator: Mocap pose source.
        timestamps: Raw keyframe times (s).

    Raises:
        ConfigurationError: If no keyframe time is covered by IMU data.

    Example:
        >>> solver = ViconGraphSolver(config, propagator, interpolator, timestamps)
        >>> result = solver.build_and_solve()
        >>> result.R_BtoI, result.p_BinI, result.gravity
    """

    def __init__(
        self,
        config: CalibrationConfig,
        propagator: Propagator,
        interpolator: Interpolator,
        timestamps: Sequence[float],
    ):
        self.config = config
        self.builder = ViconGraphBuilder(config, propagator, interpolator)
        self.catalog = filter_and_index(timestamps, propagator)
        logger.info("%d keyframes with IMU coverage", len(self.catalog))

    def build_and_solve(self, should_continue: Optional[Callable[[], bool]] = None) -> CalibrationResult:
        """
        Run every relinearization round and return the final estimate.

        Args:
            should_continue: Cooperative cancellation hook, polled once per
                keyframe while building. After an interrupted build the
                partial graph is still solved, then the run stops.

        Raises:
            ConfigurationError: If no keyframe has a usable mocap pose.
            InternalConsistencyError: If IMU preintegration misbehaves.
        """
        cfg = self.config
        context = CalibrationContext(values=Values(), catalog=self.catalog)
        rounds: List[RoundSummary] = []
        solution: Optional[OptimizationResult] = None
        round_index = 0
        round_start = time.perf_counter()
        state = LoopState.BUILDING

        while state is not LoopState.DONE:
            if state is LoopState.BUILDING:
                logger.info("round %d/%d: building graph", round_index + 1, cfg.num_rounds)
                round_start = time.perf_counter()
                context = self.builder.build(
                    context,
                    initialize_unknowns=(round_index == 0),
                    should_continue=should_continue,
                )
                if len(context.catalog) == 0 and not context.cancelled:
                    raise ConfigurationError("no keyframe has a valid mocap pose")
                state = LoopState.SOLVING

            elif state is LoopState.SOLVING:
                start = time.perf_counter()
                solution = context.graph.optimize(context.values, cfg.solver_params())
                context.timings["optimize"].append(time.perf_counter() - start)
                state = LoopState.ADVANCING

            elif state is LoopState.ADVANCING:
                context = replace(context, values=solution.values)
                context.timings["total"].append(time.perf_counter() - round_start)
                summary = RoundSummary(
                    round_index=round_index,
                    num_keyframes=len(context.catalog),
                    num_factors=len(context.graph),
                    iterations=solution.iterations,
                    converged=solution.converged,
                    initial_error=solution.initial_error,
                    final_error=solution.final_error,
                    termination=solution.termination,
                    build_time=context.timings["build"][-1],
                    optimize_time=context.timings["optimize"][-1],
                    total_time=context.timings["total"][-1],
                )
                rounds.append(summary)
                self._log_round(context.values, summary)

                round_index += 1
                if context.cancelled or round_index >= cfg.num_rounds:
                    state = LoopState.DONE
                else:
                    state = LoopState.BUILDING

        return CalibrationResult(
            values=context.values,
            catalog=context.catalog,
            rounds=rounds,
            dropped=list(context.dropped),
            estimate_toff=cfg.estimate_toff_vicon_to_imu,
            cancelled=context.cancelled,
        )

    def _log_round(self, values: Values, summary: RoundSummary) -> None:
        logger.info(
            "round %d: %d iterations, error %.6e -> %.6e (%s)",
            summary.round_index + 1, summary.iterations,
            summary.initial_error, summary.final_error, summary.termination,
        )
        if not summary.converged:
            logger.warning("round %d did not converge (%s)", summary.round_index + 1, summary.termination)
        logger.info(
            "timing: build %.3f s, optimize %.3f s, total %.3f s",
            summary.build_time, summary.optimize_time, summary.total_time,
        )
        if self.config.estimate_toff_vicon_to_imu:
            logger.info("toff_imu_to_vicon: %.9f s", float(values.at(T(0))[0]))
        gravity = values.at(G(0))
        logger.info("gravity: %s (norm %.6f)", np.array2string(gravity, precision=6), np.linalg.norm(gravity))
        logger.info(
            "R_BtoI:\n%s\np_BinI: %s",
            np.array2string(quat_to_rotation_matrix(values.at(CALIB_ROTATION)), precision=6),
            np.array2string(values.at(CALIB_TRANSLATION), precision=6),
        )
