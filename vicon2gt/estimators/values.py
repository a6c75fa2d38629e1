"""
Unknown store for factor graph optimization.

Values maps each Symbol to its current estimate together with the manifold
the estimate lives on. The manifold tells the solver how many tangent
dimensions the unknown has and how a tangent-space update is applied:

    - Euclidean:      x ⊕ δ = x + δ
    - UnitQuaternion: q ⊕ δ = q ⊗ exp(δ)          (3 tangent dims)
    - NavStateManifold: orientation by quaternion composition, all other
      blocks by addition                           (15 tangent dims)

Values objects are cheap snapshots: retract() and copy() return new stores
and never modify the original, so a solver can keep its best estimate
while trying steps.
"""

from typing import Dict, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from vicon2gt.coords.rotations import (
    quat_conjugate,
    quat_exp,
    quat_log,
    quat_multiply,
    quat_normalize,
)
from vicon2gt.estimators.keys import Symbol
from vicon2gt.sensors.types import NAV_STATE_DIM, NavState


class Manifold:
    """Interface for the space an unknown lives in."""

    def dim(self, value) -> int:
        raise NotImplementedError

    def retract(self, value, delta: np.ndarray):
        raise NotImplementedError

    def local(self, value, other) -> np.ndarray:
        raise NotImplementedError

    def copy(self, value):
        return value


class Euclidean(Manifold):
    """Vector space unknown (gravity, translation, time offset)."""

    def dim(self, value) -> int:
        return int(np.asarray(value).size)

    def retract(self, value, delta: np.ndarray):
        return np.asarray(value, dtype=float) + delta

    def local(self, value, other) -> np.ndarray:
        return np.asarray(other, dtype=float) - np.asarray(value, dtype=float)

    def copy(self, value):
        return np.array(value, dtype=float)


class UnitQuaternion(Manifold):
    """Orientation unknown stored as [qw, qx, qy, qz]."""

    def dim(self, value) -> int:
        return 3

    def retract(self, value, delta: np.ndarray):
        return quat_normalize(quat_multiply(value, quat_exp(delta)))

    def local(self, value, other) -> np.ndarray:
        return quat_log(quat_multiply(quat_conjugate(value), other))

    def copy(self, value):
        return np.array(value, dtype=float)


class NavStateManifold(Manifold):
    """Keyframe navigation state."""

    def dim(self, value) -> int:
        return NAV_STATE_DIM

    def retract(self, value: NavState, delta: np.ndarray) -> NavState:
        return value.retract(delta)

    def local(self, value: NavState, other: NavState) -> np.ndarray:
        return value.local(other)


EUCLIDEAN = Euclidean()
UNIT_QUATERNION = UnitQuaternion()
NAV_STATE = NavStateManifold()


class Values:
    """
    Current estimates for all unknowns, keyed by Symbol.

    Example:
        >>> from vicon2gt.estimators.keys import G
        >>> values = Values()
        >>> values.insert(G(0), np.array([0.0, 0.0, 9.8]))
        >>> values.at(G(0))
        array([0. , 0. , 9.8])
    """

    def __init__(self) -> None:
        self._values: Dict[Symbol, object] = {}
        self._manifolds: Dict[Symbol, Manifold] = {}

    def insert(self, key: Symbol, value, manifold: Optional[Manifold] = None) -> None:
        """
        Add a new unknown.

        Args:
            key: Identifier of the unknown.
            value: Initial estimate.
            manifold: Space of the unknown. Defaults to NAV_STATE for
                NavState values and EUCLIDEAN otherwise.

        Raises:
            KeyError: If the key already exists.
        """
        if key in self._values:
            raise KeyError(f"Unknown {key} already exists")
        if manifold is None:
            manifold = NAV_STATE if isinstance(value, NavState) else EUCLIDEAN
        self._values[key] = manifold.copy(value)
        self._manifolds[key] = manifold

    def update(self, key: Symbol, value) -> None:
        """Replace the estimate of an existing unknown."""
        if key not in self._values:
            raise KeyError(f"Unknown {key} does not exist")
        self._values[key] = self._manifolds[key].copy(value)

    def erase(self, key: Symbol) -> None:
        """Remove an unknown."""
        del self._values[key]
        del self._manifolds[key]

    def exists(self, key: Symbol) -> bool:
        return key in self._values

    def at(self, key: Symbol):
        """Current estimate of an unknown."""
        try:
            return self._values[key]
        except KeyError:
            raise KeyError(f"Unknown {key} not in values") from None

    def manifold(self, key: Symbol) -> Manifold:
        return self._manifolds[key]

    def dim(self, key: Symbol) -> int:
        """Tangent-space dimension of an unknown."""
        return self._manifolds[key].dim(self._values[key])

    def keys(self) -> List[Symbol]:
        """All keys, sorted."""
        return sorted(self._values)

    def copy(self) -> "Values":
        """Snapshot of the store."""
        out = Values()
        for key, value in self._values.items():
            out.insert(key, value, self._manifolds[key])
        return out

    def retract(self, deltas: Mapping[Symbol, np.ndarray]) -> "Values":
        """
        Return a new store with tangent updates applied.

        Args:
            deltas: Tangent update per key. Keys not present are copied
                unchanged.
        """
        out = Values()
        for key, value in self._values.items():
            manifold = self._manifolds[key]
            if key in deltas:
                value = manifold.retract(value, np.asarray(deltas[key], dtype=float))
            out.insert(key, value, manifold)
        return out

    def local(self, other: "Values") -> Dict[Symbol, np.ndarray]:
        """Tangent difference to another store with the same keys."""
        return {
            key: self._manifolds[key].local(value, other.at(key))
            for key, value in self._values.items()
        }

    def items(self) -> Iterator[Tuple[Symbol, object]]:
        for key in self.keys():
            yield key, self._values[key]

    def __contains__(self, key: Symbol) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Values({', '.join(str(k) for k in self.keys())})"
