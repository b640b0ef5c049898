"""Base class for parameter estimation algorithms."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


class BaseEstimator(ABC):
    """Abstract base class for iterative estimation algorithms.

    Parameters
    ----------
    max_iter : int
        Maximum number of iterations.
    tol : float or None
        Convergence tolerance. ``None`` disables convergence checks so the
        algorithm always runs ``max_iter`` iterations.
    verbose : bool, default=False
        Whether to log progress at INFO instead of DEBUG level.

    Attributes
    ----------
    convergence_history : list of float
        Monitored change at each iteration.
    """

    def __init__(
        self,
        max_iter: int,
        tol: float | None = None,
        verbose: bool = False,
    ) -> None:
        if max_iter < 1:
            raise ValueError("max_iter must be at least 1")
        if tol is not None and tol <= 0:
            raise ValueError("tol must be positive")

        self.max_iter = max_iter
        self.tol = tol
        self.verbose = verbose
        self._convergence_history: list[float] = []

    @abstractmethod
    def run_estimation(self, *args: Any, **kwargs: Any) -> Any: ...

    @property
    def convergence_history(self) -> list[float]:
        """Return the monitored change across iterations."""
        return self._convergence_history.copy()

    def _check_convergence(self, change: float) -> bool:
        """Check if the algorithm has converged.

        Always False when no tolerance is configured.
        """
        if self.tol is None:
            return False
        return change < self.tol

    def _log_iteration(
        self,
        iteration: int,
        log_likelihood: float,
        **kwargs: float,
    ) -> None:
        """Log iteration progress.

        Parameters
        ----------
        iteration : int
            Current iteration number.
        log_likelihood : float
            Current log-likelihood value.
        **kwargs
            Additional values to log.
        """
        extras = ", ".join(f"{k}={v:.4f}" for k, v in kwargs.items())
        msg = f"Iteration {iteration:4d}: LL = {log_likelihood:.4f}"
        if extras:
            msg += f", {extras}"
        logger.log(logging.INFO if self.verbose else logging.DEBUG, msg)

    @staticmethod
    def _compute_aic(log_likelihood: float, n_parameters: int) -> float:
        """Compute Akaike Information Criterion.

        AIC = -2 × LL + 2 × k
        """
        return -2 * log_likelihood + 2 * n_parameters

    @staticmethod
    def _compute_bic(
        log_likelihood: float,
        n_parameters: int,
        n_observations: int,
    ) -> float:
        """Compute Bayesian Information Criterion.

        BIC = -2 × LL + k × log(n)
        """
        return -2 * log_likelihood + n_parameters * np.log(max(n_observations, 1))

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"max_iter={self.max_iter}, "
            f"tol={self.tol})"
        )
