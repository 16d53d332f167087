"""Nelder-Mead simplex shared by the parameter fit and the crop fit.

Thin wrapper around ``scipy.optimize.minimize(method="Nelder-Mead")`` that
builds a regular initial simplex of a given size, applies an optional
constraint strategy to every evaluated point and reports convergence the
same way for both callers.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from scipy.optimize import minimize

logger = logging.getLogger(__name__)

Objective = Callable[[np.ndarray], float]
Constraint = Callable[[np.ndarray], np.ndarray]

# keeps logit() finite at the borders of its domain
_LOGIT_EPSILON = 1.0e-6


@dataclass
class SimplexResult:
    """Result of a simplex run.

    Attributes:
        x: Best point found (constraint applied)
        fun: Objective value at ``x``
        nit: Number of iterations performed
        converged: True if the convergence threshold was reached before the iteration cap
    """

    x: np.ndarray
    fun: float
    nit: int
    converged: bool


def logit(x: float, lo: float, hi: float) -> float:
    """Map ``x`` in ``[lo, hi]`` to the real line."""
    p = min(max((x - lo) / (hi - lo), _LOGIT_EPSILON), 1.0 - _LOGIT_EPSILON)
    return 2.0 * math.atanh(2.0 * p - 1.0)


def ilogit(value: float, lo: float, hi: float) -> float:
    """Inverse of :func:`logit`."""
    p = 0.5 * (1.0 + math.tanh(0.5 * value))
    return p * (hi - lo) + lo


def initial_simplex(x0: np.ndarray, scale: float) -> np.ndarray:
    """Regular simplex with edge length ``scale`` anchored at ``x0``."""
    n = len(x0)
    pn = scale * (math.sqrt(n + 1) - 1 + n) / (n * math.sqrt(2))
    qn = scale * (math.sqrt(n + 1) - 1) / (n * math.sqrt(2))

    sim = np.tile(np.asarray(x0, dtype=np.float64), (n + 1, 1))
    sim[1:] += qn
    sim[1:][np.diag_indices(n)] += pn - qn
    return sim


def simplex(
    objective: Objective,
    x0: np.ndarray,
    epsilon: float,
    scale: float,
    max_iterations: int,
    constraint: Constraint | None = None,
) -> SimplexResult:
    """Minimize ``objective`` starting at ``x0``.

    Convergence is declared once the objective values across the simplex
    differ by no more than ``epsilon``.

    Args:
        objective: Function of an ``(n,)`` array
        x0: Starting point
        epsilon: Convergence threshold on the objective spread
        scale: Edge length of the initial simplex
        max_iterations: Iteration cap
        constraint: Optional repair applied to every point before evaluation

    Returns:
        SimplexResult
    """
    x0 = np.asarray(x0, dtype=np.float64)

    def repaired(x: np.ndarray) -> np.ndarray:
        return constraint(np.array(x, dtype=np.float64)) if constraint is not None else x

    if x0.size == 0:
        return SimplexResult(x=x0, fun=float(objective(x0)), nit=0, converged=True)

    sim = np.array([repaired(vertex) for vertex in initial_simplex(x0, scale)])
    result = minimize(
        lambda x: objective(repaired(x)),
        sim[0],
        method="Nelder-Mead",
        options={
            "initial_simplex": sim,
            "maxiter": max_iterations,
            "fatol": epsilon,
            # the objective spread alone decides convergence
            "xatol": np.inf,
        },
    )

    x = repaired(result.x)
    converged = bool(result.status == 0 and result.nit < max_iterations)
    logger.debug(f"Simplex finished after {result.nit} iterations (converged={converged}, f={result.fun:.6g})")
    return SimplexResult(x=x, fun=float(result.fun), nit=int(result.nit), converged=converged)
