"""Error kinds raised by the estimator.

- ConfigurationError: fatal, bad inputs or options (e.g. no usable keyframes).
- MeasurementGapError: recoverable per keyframe, no valid mocap sample.
- NumericalSingularityError: a measurement covariance cannot be inverted.
- InternalConsistencyError: a collaborator broke its contract (duration
  mismatch, failed propagation over a validated interval, singular
  preintegration covariance). Surfaced to the caller instead of aborting.

The solver itself never raises; non-convergence is reported in its result.
"""


class Vicon2GTError(Exception):
    """Base class for all estimator errors."""


class ConfigurationError(Vicon2GTError):
    """Invalid configuration or input data that makes the run impossible."""


class MeasurementGapError(Vicon2GTError):
    """No valid motion-capture sample around a keyframe query time."""

    def __init__(self, timestamp: float, reason: str):
        super().__init__(f"no valid mocap pose for keyframe {timestamp:.9f} ({reason})")
        self.timestamp = timestamp
        self.reason = reason


class NumericalSingularityError(Vicon2GTError):
    """A covariance matrix is not finite or not invertible."""


class InternalConsistencyError(Vicon2GTError):
    """A "should never happen" condition was detected."""
