"""
Factor Graph Optimization over manifold unknowns.

A factor graph holds residual blocks ("factors"); the unknowns they touch
live in a separate Values store. Optimization finds the maximum a
posteriori estimate by minimizing the weighted sum of squared residuals
with a damped Gauss-Newton (Levenberg-Marquardt) iteration.

Implements:
    - MAP estimation as nonlinear least squares:
          X̂ = argmin ½ Σ rᵢ(X)ᵀ Λᵢ rᵢ(X)
    - Normal equations in the tangent space of the current estimate:
          (Σ JᵢᵀΛᵢJᵢ + λI) δ = -Σ JᵢᵀΛᵢrᵢ
    - Manifold retraction X ← X ⊕ δ (addition for vectors, quaternion
      composition with the exponential map for orientations)
    - Gain-ratio damping update of λ, bounded above

The solver never raises. It returns its best estimate together with the
number of iterations and whether a convergence criterion was met.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from vicon2gt.estimators.keys import Symbol
from vicon2gt.estimators.values import Values

logger = logging.getLogger(__name__)


class Factor:
    """
    Factor in a factor graph representing a constraint or measurement.

    A factor encodes a Gaussian constraint on a subset of unknowns, which
    is equivalent to a weighted squared residual.

    Attributes:
        keys: Symbols of the unknowns this factor connects.
        residual_func: Function computing residual r(x_subset).
        jacobian_func: Function computing [∂r/∂x₁, ∂r/∂x₂, ...] with respect
            to the tangent space of each unknown.
        information: Information matrix (inverse covariance).
        name: Short factor type name used in diagnostics.
    """

    def __init__(
        self,
        keys: Sequence[Symbol],
        residual_func: Callable[[List[object]], np.ndarray],
        jacobian_func: Callable[[List[object]], List[np.ndarray]],
        information: np.ndarray,
        name: str = "Factor",
    ):
        information = np.atleast_2d(np.asarray(information, dtype=float))
        if information.shape[0] != information.shape[1]:
            raise ValueError(f"Information must be square, got shape {information.shape}")
        if not np.all(np.isfinite(information)):
            raise ValueError("Information matrix must be finite")

        self.keys = tuple(keys)
        self.residual_func = residual_func
        self.jacobian_func = jacobian_func
        self.information = information
        self.name = name

    @property
    def dim(self) -> int:
        """Residual dimension."""
        return self.information.shape[0]

    def residual(self, values: Values) -> np.ndarray:
        x_vars = [values.at(key) for key in self.keys]
        return np.atleast_1d(np.asarray(self.residual_func(x_vars), dtype=float))

    def compute_error(self, values: Values) -> float:
        """
        Compute the error of this factor.

        Implements: error = ½ rᵀ Λ r where r is the residual.
        """
        r = self.residual(values)
        return 0.5 * float(r @ self.information @ r)

    def linearize(self, values: Values) -> Tuple[np.ndarray, List[np.ndarray]]:
        """
        Linearize the factor around the current estimate.

        Returns:
            Tuple of (residual, jacobians) where jacobians is a list of
            Jacobian matrices for each connected unknown.
        """
        x_vars = [values.at(key) for key in self.keys]
        r = np.atleast_1d(np.asarray(self.residual_func(x_vars), dtype=float))
        J = [np.atleast_2d(np.asarray(j, dtype=float)) for j in self.jacobian_func(x_vars)]
        return r, J

    def __repr__(self) -> str:
        return f"{self.name}({', '.join(str(k) for k in self.keys)})"


@dataclass
class LevenbergMarquardtParams:
    """
    Solver settings.

    Attributes:
        max_iterations: Maximum number of linearizations.
        relative_error_tol: Stop when (e_old - e_new) / e_old falls below.
        absolute_error_tol: Stop when e_old - e_new falls below.
        error_tol: Stop when the total error itself falls below.
        lambda_initial: Initial damping λ.
        lambda_upper_bound: Stop when λ must grow beyond this bound.
    """

    max_iterations: int = 20
    relative_error_tol: float = 1e-10
    absolute_error_tol: float = 1e-10
    error_tol: float = 1e-12
    lambda_initial: float = 1e-5
    lambda_upper_bound: float = 1e20


@dataclass
class OptimizationResult:
    """
    Summary of one optimization run.

    Attributes:
        values: Best estimate found.
        iterations: Number of linearizations performed.
        converged: True if an error tolerance was met, False if the
            iteration cap or the damping bound ended the run.
        initial_error: Total error at the initial estimate.
        final_error: Total error at the returned estimate.
        error_history: Error after each iteration (first entry is initial).
        termination: "converged", "max_iterations" or "lambda_upper_bound".
        lambda_history: Damping in effect at the start and after each
            accepted step.
    """

    values: Values
    iterations: int
    converged: bool
    initial_error: float
    final_error: float
    error_history: List[float] = field(default_factory=list)
    termination: str = "max_iterations"
    lambda_history: List[float] = field(default_factory=list)


class FactorGraph:
    """
    Factor Graph for batch estimation over a Values store.

    The graph only holds factors. It is rebuilt, not patched, whenever the
    measurements it encodes change.

    Example:
        >>> graph = FactorGraph()
        >>> graph.add_factor(factor)
        >>> result = graph.optimize(initial_values)
        >>> result.values.at(G(0))
    """

    def __init__(self):
        """Initialize empty Factor Graph."""
        self.factors: List[Factor] = []

    def add_factor(self, factor: Factor) -> None:
        self.factors.append(factor)

    def keys(self) -> List[Symbol]:
        """All unknowns referenced by at least one factor, sorted."""
        return sorted({key for factor in self.factors for key in factor.keys})

    def references(self, key: Symbol) -> bool:
        return any(key in factor.keys for factor in self.factors)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self):
        return iter(self.factors)

    def compute_error(self, values: Values) -> float:
        """
        Compute total error over all factors.

            error = ½ Σ rᵢᵀ Λᵢ rᵢ
        """
        return float(sum(factor.compute_error(values) for factor in self.factors))

    def optimize(
        self,
        values: Values,
        params: Optional[LevenbergMarquardtParams] = None,
    ) -> OptimizationResult:
        """
        Optimize the graph starting from `values` (left untouched).

        Args:
            values: Initial estimate. Must contain every key the factors use.
            params: Solver settings.

        Returns:
            OptimizationResult with the best estimate.

        Raises:
            KeyError: If a factor references an unknown missing from values.
        """
        for key in self.keys():
            if key not in values:
                raise KeyError(f"Unknown {key} referenced by the graph is not in values")
        return _levenberg_marquardt(self, values, params or LevenbergMarquardtParams())

    def _build_linearized_system(
        self,
        values: Values,
        ordering: Dict[Symbol, Tuple[int, int]],
        total_dim: int,
    ) -> Tuple[sp.csc_matrix, np.ndarray]:
        """
        Build linearized system H δ = b.

        H = Σ JᵀΛJ (Gauss-Newton Hessian approximation)
        b = -Σ JᵀΛr (negative gradient)
        """
        rows: List[np.ndarray] = []
        cols: List[np.ndarray] = []
        data: List[np.ndarray] = []
        b = np.zeros(total_dim)

        for factor in self.factors:
            r, jacobians = factor.linearize(values)
            Lambda = factor.information

            weighted = [Lambda @ J for J in jacobians]
            for i, key_i in enumerate(factor.keys):
                start_i, end_i = ordering[key_i]
                J_i = jacobians[i]

                # Gradient contribution: -JᵀΛr
                b[start_i:end_i] -= J_i.T @ (Lambda @ r)

                for j, key_j in enumerate(factor.keys):
                    start_j, end_j = ordering[key_j]
                    # Hessian contribution: JᵀΛJ
                    block = J_i.T @ weighted[j]
                    ii, jj = np.meshgrid(
                        np.arange(start_i, end_i), np.arange(start_j, end_j), indexing="ij"
                    )
                    rows.append(ii.ravel())
                    cols.append(jj.ravel())
                    data.append(block.ravel())

        if data:
            H = sp.coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(total_dim, total_dim),
            ).tocsc()
        else:
            H = sp.csc_matrix((total_dim, total_dim))
        return H, b


def _ordering(values: Values) -> Tuple[Dict[Symbol, Tuple[int, int]], int]:
    ordering = {}
    current_idx = 0
    for key in values.keys():
        dim = values.dim(key)
        ordering[key] = (current_idx, current_idx + dim)
        current_idx += dim
    return ordering, current_idx


def _split_step(
    step: np.ndarray, ordering: Dict[Symbol, Tuple[int, int]]
) -> Dict[Symbol, np.ndarray]:
    return {key: step[start:end] for key, (start, end) in ordering.items()}


def _levenberg_marquardt(
    graph: FactorGraph,
    values: Values,
    params: LevenbergMarquardtParams,
) -> OptimizationResult:
    """
    Levenberg-Marquardt optimization.

    Each iteration linearizes every factor once, then tries damped steps
    (H + λI) δ = b until one lowers the error or λ exceeds its bound.
    Accepted steps shrink λ by min(max(1/3, 1 - (2g - 1)³), 2/3) where g
    is the gain ratio, so λ always decreases after a step is taken.
    Rejected steps grow it by ν, doubling ν each time.
    """
    current = values.copy()
    ordering, total_dim = _ordering(current)
    current_error = graph.compute_error(current)
    error_history = [current_error]
    initial_error = current_error

    mu = params.lambda_initial
    nu = 2.0
    lambda_history = [mu]
    iterations = 0
    converged = False
    termination = "max_iterations"

    if total_dim == 0 or current_error <= params.error_tol:
        return OptimizationResult(
            values=current,
            iterations=0,
            converged=True,
            initial_error=initial_error,
            final_error=current_error,
            error_history=error_history,
            termination="converged",
            lambda_history=lambda_history,
        )

    identity = sp.identity(total_dim, format="csc")

    while iterations < params.max_iterations:
        iterations += 1
        H, b = graph._build_linearized_system(current, ordering, total_dim)

        accepted = False
        while not accepted:
            d_lm = _solve_damped(H + mu * identity, b)

            if d_lm is not None:
                candidate = current.retract(_split_step(d_lm, ordering))
                new_error = graph.compute_error(candidate)

                actual_reduction = current_error - new_error
                predicted_reduction = 0.5 * float(np.dot(d_lm, mu * d_lm + b))
                g = actual_reduction / predicted_reduction if predicted_reduction > 0 else 0.0

                if np.isfinite(new_error) and actual_reduction > 0:
                    accepted = True
                    mu = mu * min(max(1.0 / 3.0, 1.0 - (2.0 * g - 1.0) ** 3), 2.0 / 3.0)
                    nu = 2.0
                    break

            mu = mu * nu
            nu = 2.0 * nu
            if mu > params.lambda_upper_bound:
                logger.debug("damping exceeded upper bound (%.3e)", params.lambda_upper_bound)
                termination = "lambda_upper_bound"
                break

        if not accepted:
            break

        current = candidate
        error_history.append(new_error)
        lambda_history.append(mu)
        logger.debug(
            "iteration %d: error %.6e -> %.6e (lambda %.3e)",
            iterations, current_error, new_error, mu,
        )

        absolute_decrease = current_error - new_error
        relative_decrease = absolute_decrease / current_error
        current_error = new_error
        if (
            absolute_decrease < params.absolute_error_tol
            or relative_decrease < params.relative_error_tol
            or current_error <= params.error_tol
        ):
            converged = True
            termination = "converged"
            break

    return OptimizationResult(
        values=current,
        iterations=iterations,
        converged=converged,
        initial_error=initial_error,
        final_error=current_error,
        error_history=error_history,
        termination=termination,
        lambda_history=lambda_history,
    )


def _solve_damped(H: sp.csc_matrix, b: np.ndarray) -> Optional[np.ndarray]:
    """Solve the damped normal equations, None if the solve is unusable."""
    try:
        d_lm = spla.spsolve(H, b)
    except (RuntimeError, np.linalg.LinAlgError):
        return None
    d_lm = np.atleast_1d(d_lm)
    if not np.all(np.isfinite(d_lm)):
        return None
    return d_lm
