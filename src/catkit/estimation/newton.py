"""Damped Newton-Raphson root finding for one-dimensional score equations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from catkit.constants import (
    ABILITY_DIVERGENCE_LIMIT,
    NEWTON_MAX_ITER,
    NEWTON_MAX_STEP,
    NEWTON_TOLERANCE,
)


@dataclass
class NewtonResult:
    """Outcome of a Newton-Raphson search.

    Attributes
    ----------
    x : float
        Last iterate.
    converged : bool
        Whether the step size fell below the tolerance.
    n_iter : int
        Number of iterations performed.
    diverged : bool
        Whether the iterate left ``[-limit, limit]``.
    gradient : float
        First derivative at ``x``; its sign tells in which direction an
        unbounded estimate escapes.
    """

    x: float
    converged: bool
    n_iter: int
    diverged: bool = False
    gradient: float = 0.0


def newton_raphson(
    first: Callable[[float], float],
    second: Callable[[float], float],
    start: float = 0.0,
    *,
    tol: float = NEWTON_TOLERANCE,
    max_iter: int = NEWTON_MAX_ITER,
    max_step: float | None = NEWTON_MAX_STEP,
    limit: float = ABILITY_DIVERGENCE_LIMIT,
) -> NewtonResult:
    """Maximize a concave function given its first and second derivative.

    Each step is ``-first(x) / second(x)``, capped at ``max_step`` in
    absolute value. Where the curvature is not negative the step falls
    back to a capped move in the direction of the gradient.

    Parameters
    ----------
    first, second : callable
        First and second derivative of the objective.
    start : float, default=0.0
        Starting value.
    tol : float
        Absolute step size that counts as converged.
    max_iter : int
        Iteration budget.
    max_step : float or None
        Largest step allowed; ``None`` disables damping.
    limit : float
        Iterates beyond ``±limit`` are reported as divergent.

    Returns
    -------
    NewtonResult
    """
    x = float(start)
    g = 0.0
    for iteration in range(1, max_iter + 1):
        g = float(first(x))
        h = float(second(x))
        if not (np.isfinite(g) and np.isfinite(h)):
            return NewtonResult(x, False, iteration, gradient=g)

        if h < 0:
            step = -g / h
        else:
            step = np.sign(g) * (max_step if max_step is not None else 1.0)
        if max_step is not None:
            step = float(np.clip(step, -max_step, max_step))

        x += step
        if abs(x) > limit:
            return NewtonResult(x, False, iteration, diverged=True, gradient=g)
        if abs(step) < tol:
            return NewtonResult(x, True, iteration, gradient=g)

    return NewtonResult(x, False, max_iter, gradient=g)
