"""Keyframe catalog: which timestamps get a navigation state, and its index.

filter_and_index() turns the raw keyframe (camera) timestamps into an
ordered, IMU-covered set. Each surviving time receives a dense integer
index in time order; X(index) is the key of its navigation state for the
whole run, even if later keyframes are dropped.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Sequence, Tuple

import numpy as np

from vicon2gt.errors import ConfigurationError
from vicon2gt.sensors.propagator import Propagator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyframeCatalog:
    """
    Ordered keyframe times with their state indices.

    Attributes:
        times: Strictly increasing keyframe times (s).
        indices: Index of each time, same order as times.
    """

    times: Tuple[float, ...]
    indices: Tuple[int, ...]
    _lookup: Dict[float, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if len(self.times) != len(self.indices):
            raise ValueError("times and indices must have the same length")
        if any(b <= a for a, b in zip(self.times, self.times[1:])):
            raise ValueError("keyframe times must be strictly increasing")
        object.__setattr__(self, "_lookup", dict(zip(self.times, self.indices)))

    def index_of(self, t: float) -> int:
        return self._lookup[t]

    def retain(self, kept_times: Iterable[float]) -> "KeyframeCatalog":
        """New catalog restricted to kept_times, indices unchanged."""
        kept = set(kept_times)
        pairs = [(t, i) for t, i in zip(self.times, self.indices) if t in kept]
        return KeyframeCatalog(
            times=tuple(t for t, _ in pairs),
            indices=tuple(i for _, i in pairs),
        )

    def __iter__(self) -> Iterator[Tuple[float, int]]:
        return iter(zip(self.times, self.indices))

    def __len__(self) -> int:
        return len(self.times)


def filter_and_index(timestamps: Sequence[float], propagator: Propagator) -> KeyframeCatalog:
    """
    Keep the keyframe times covered by IMU data and index them.

    Args:
        timestamps: Raw keyframe times (s). Sorted and de-duplicated here.
        propagator: Source of IMU coverage information.

    Returns:
        KeyframeCatalog with dense indices 0..N-1 in time order.

    Raises:
        ConfigurationError: If the input is empty, or no time is covered
            by IMU measurements.
    """
    times = np.unique(np.asarray(timestamps, dtype=float).reshape(-1))
    if times.size == 0:
        raise ConfigurationError(
            "keyframe timestamp list is empty; check the camera/keyframe source"
        )

    kept = []
    for t in times:
        if propagator.has_bounding_imu(float(t)):
            kept.append(float(t))
        else:
            logger.debug("deleted keyframe time %.9f (no bounding IMU)", t)

    if not kept:
        raise ConfigurationError(
            "all keyframe timestamps are outside the range of the IMU measurements"
        )
    if len(kept) < times.size:
        logger.info("removed %d keyframes without IMU coverage", times.size - len(kept))

    return KeyframeCatalog(times=tuple(kept), indices=tuple(range(len(kept))))
