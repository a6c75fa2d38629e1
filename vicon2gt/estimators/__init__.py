"""
Factor graph estimation over manifold unknowns.

Available components:
    - Symbol keys (X, C, G, T) identifying unknowns
    - Values: the unknown store with manifold-aware retraction
    - Factor / FactorGraph: residual blocks and their container
    - Levenberg-Marquardt solver (FactorGraph.optimize)
"""

from vicon2gt.estimators.factor_graph import (
    Factor,
    FactorGraph,
    LevenbergMarquardtParams,
    OptimizationResult,
)
from vicon2gt.estimators.keys import CALIB_ROTATION, CALIB_TRANSLATION, C, G, Symbol, T, X
from vicon2gt.estimators.values import (
    EUCLIDEAN,
    NAV_STATE,
    UNIT_QUATERNION,
    Euclidean,
    Manifold,
    NavStateManifold,
    UnitQuaternion,
    Values,
)

__all__ = [
    # Keys
    "Symbol",
    "X",
    "C",
    "G",
    "T",
    "CALIB_ROTATION",
    "CALIB_TRANSLATION",
    # Unknown store
    "Values",
    "Manifold",
    "Euclidean",
    "UnitQuaternion",
    "NavStateManifold",
    "EUCLIDEAN",
    "UNIT_QUATERNION",
    "NAV_STATE",
    # Graph and solver
    "Factor",
    "FactorGraph",
    "LevenbergMarquardtParams",
    "OptimizationResult",
]
