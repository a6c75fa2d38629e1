"""Inertial and motion-capture measurement sources.

- types: NavState, ImuNoise, PreintegratedDelta
- propagator: Propagator interface and the ImuPropagator preintegrator
- interpolator: Interpolator interface and the PoseInterpolator
"""

from vicon2gt.sensors.interpolator import Interpolator, PoseInterpolator
from vicon2gt.sensors.propagator import ImuPropagator, Propagator
from vicon2gt.sensors.types import NAV_STATE_DIM, ImuNoise, NavState, PreintegratedDelta

__all__ = [
    "NAV_STATE_DIM",
    "NavState",
    "ImuNoise",
    "PreintegratedDelta",
    "Propagator",
    "ImuPropagator",
    "Interpolator",
    "PoseInterpolator",
]
