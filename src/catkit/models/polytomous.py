"""Polytomous IRT models for partial-credit and graded responses."""

import numpy as np
from numpy.typing import NDArray
from scipy.special import logsumexp

from catkit._core import sigmoid
from catkit.constants import PROB_EPSILON
from catkit.models.base import PolytomousItemModel
from catkit.typing import ParamDict


class GeneralizedPartialCredit(PolytomousItemModel):
    """Generalized Partial Credit Model (GPCM).

    Responses are fractions of the full score. Every distinct fraction
    above zero opens a category, and category ``k`` is reached by
    passing the first ``k`` steps. The probability of category ``k`` is:

    P(X=k|θ) = exp(Σ_{j=1}^k a(θ - δ_j)) / Σ_{m=0}^K exp(Σ_{j=1}^m a(θ - δ_j))

    Item parameters are a shared discrimination ``a`` and step
    difficulties ``δ_j`` stored as ``{"intercepts": {fraction: δ}}``.

    Examples
    --------
    >>> model = GeneralizedPartialCredit()
    >>> params = {"discrimination": 1.0, "intercepts": {0.5: -1.0, 1.0: 1.0}}
    >>> probs = model.category_probability(0.0, params)
    >>> probs.shape
    (1, 3)
    """

    model_name = "GPCM"
    estimates_discrimination = True

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["discrimination", "intercepts"]

    def _kernel(
        self, theta: NDArray[np.float64], params: ParamDict
    ) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Return cumulative step sums, category logits and probabilities."""
        a = self._discrimination(params)
        deltas = self._steps(params)
        steps = np.cumsum(theta[:, None] - deltas[None, :], axis=1)
        u = np.concatenate([np.zeros((len(theta), 1)), steps], axis=1)
        z = a * u
        log_norm = logsumexp(z, axis=1)
        probs = np.exp(z - log_norm[:, None])
        return u, z - log_norm[:, None], probs

    def category_probability(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
    ) -> NDArray[np.float64]:
        """Probabilities of every category, shape (n_abilities, n_categories)."""
        theta = np.atleast_1d(np.asarray(ability, dtype=np.float64))
        return self._kernel(theta, params)[2]

    def expected_score(self, ability, params):
        probs = self.category_probability(ability, params)
        return probs @ np.arange(probs.shape[1])

    def likelihood(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs = self._kernel(theta, params)[2]
        result = probs[np.arange(len(theta)), k]
        return float(result[0]) if scalar else result

    def log_likelihood(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        log_probs = self._kernel(theta, params)[1]
        result = log_probs[np.arange(len(theta)), k]
        return float(result[0]) if scalar else result

    def log_likelihood_p(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs = self._kernel(theta, params)[2]
        expected = probs @ np.arange(probs.shape[1])
        result = self._discrimination(params) * (k - expected)
        return float(result[0]) if scalar else result

    def log_likelihood_p_p(self, ability, params, fraction):
        theta, _, scalar = self._prepare(ability, fraction, params)
        result = -self._info(theta, params)
        return float(result[0]) if scalar else result

    def _info(self, theta: NDArray[np.float64], params: ParamDict) -> NDArray[np.float64]:
        probs = self._kernel(theta, params)[2]
        cats = np.arange(probs.shape[1])
        mean = probs @ cats
        var = probs @ cats**2 - mean**2
        return self._discrimination(params) ** 2 * np.maximum(var, 0.0)

    def fisher_info(self, ability, params):
        """Fisher information a² Var(k | θ)."""
        theta = np.atleast_1d(np.asarray(ability, dtype=np.float64))
        result = self._info(theta, params)
        return float(result[0]) if np.ndim(ability) == 0 else result

    def neg_log_likelihood_with_grad(self, vector, template, abilities, fractions):
        params = self.from_vector(vector, template)
        a = self._discrimination(params)
        deltas = self._steps(params)
        k = self.category_of(fractions, params)
        rows = np.arange(len(abilities))

        u, log_probs, probs = self._kernel(abilities, params)
        ll = float(np.sum(log_probs[rows, k]))

        grad_a = float(np.sum(u[rows, k] - np.sum(probs * u, axis=1)))

        # P(category >= j) for j = 1..K
        tail = np.cumsum(probs[:, ::-1], axis=1)[:, ::-1][:, 1:]
        reached = (k[:, None] >= np.arange(1, len(deltas) + 1)[None, :]).astype(float)
        grad_d = -a * np.sum(reached - tail, axis=0)

        prior, prior_grad = self._step_prior(deltas)
        ll += prior
        grad_d = grad_d + prior_grad

        if self.estimates_discrimination:
            grad = np.concatenate([[grad_a], grad_d])
        else:
            grad = grad_d
        return -ll, -grad


class PartialCreditModel(GeneralizedPartialCredit):
    """Partial Credit Model (PCM).

    The GPCM with discrimination fixed at 1. The stored parameter set
    still includes ``discrimination`` so that items can be compared
    across models.
    """

    model_name = "PCM"
    estimates_discrimination = False

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["intercepts"]


class GeneralizedGradedResponse(PolytomousItemModel):
    """Generalized Graded Response Model (GGRM) - Samejima (1969).

    A cumulative logit model for ordered categories. The probability of
    reaching category ``k`` or higher is

    P*(X ≥ k|θ) = 1 / (1 + exp(-a(θ - b_k)))

    and the probability of exactly category ``k`` is

    P(X = k|θ) = P*(X ≥ k|θ) - P*(X ≥ k+1|θ)

    with P*(X ≥ 0) = 1 and P*(X ≥ K+1) = 0. Thresholds ``b_k`` are stored
    per fraction as ``{"intercepts": {fraction: b}}`` and must increase
    with the fraction. Disordered thresholds give categories a
    probability floor of ``PROB_EPSILON``.

    Examples
    --------
    >>> model = GeneralizedGradedResponse()
    >>> params = {"discrimination": 1.0, "intercepts": {0.5: -1.0, 1.0: 1.0}}
    >>> round(model.likelihood(0.0, params, 0.5), 4)
    0.4621
    """

    model_name = "GGRM"
    estimates_discrimination = True

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["discrimination", "intercepts"]

    def _kernel(
        self, theta: NDArray[np.float64], params: ParamDict
    ) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Return padded cumulative probabilities, their slopes and category probabilities.

        The first two arrays have one column per threshold plus the
        boundary columns P* = 1 and P* = 0.
        """
        a = self._discrimination(params)
        thresholds = self._steps(params)
        n = len(theta)
        star = np.concatenate(
            [
                np.ones((n, 1)),
                sigmoid(a * (theta[:, None] - thresholds[None, :])),
                np.zeros((n, 1)),
            ],
            axis=1,
        )
        slope = star * (1.0 - star)
        probs = star[:, :-1] - star[:, 1:]
        return star, slope, probs

    def _category_derivatives(
        self, theta: NDArray[np.float64], params: ParamDict
    ) -> tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """Category probabilities and their first and second derivatives in θ."""
        a = self._discrimination(params)
        star, slope, probs = self._kernel(theta, params)
        curve = slope * (1.0 - 2.0 * star)
        first = a * (slope[:, :-1] - slope[:, 1:])
        second = a**2 * (curve[:, :-1] - curve[:, 1:])
        return np.maximum(probs, PROB_EPSILON), first, second

    def category_probability(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
    ) -> NDArray[np.float64]:
        """Probabilities of every category, shape (n_abilities, n_categories)."""
        theta = np.atleast_1d(np.asarray(ability, dtype=np.float64))
        return np.maximum(self._kernel(theta, params)[2], 0.0)

    def expected_score(self, ability, params):
        probs = self.category_probability(ability, params)
        return probs @ np.arange(probs.shape[1])

    def likelihood(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs = self.category_probability(theta, params)
        result = probs[np.arange(len(theta)), k]
        return float(result[0]) if scalar else result

    def log_likelihood(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs = np.maximum(self._kernel(theta, params)[2], PROB_EPSILON)
        result = np.log(probs[np.arange(len(theta)), k])
        return float(result[0]) if scalar else result

    def log_likelihood_p(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs, first, _ = self._category_derivatives(theta, params)
        rows = np.arange(len(theta))
        result = first[rows, k] / probs[rows, k]
        return float(result[0]) if scalar else result

    def log_likelihood_p_p(self, ability, params, fraction):
        theta, k, scalar = self._prepare(ability, fraction, params)
        probs, first, second = self._category_derivatives(theta, params)
        rows = np.arange(len(theta))
        ratio = first[rows, k] / probs[rows, k]
        result = second[rows, k] / probs[rows, k] - ratio**2
        return float(result[0]) if scalar else result

    def fisher_info(self, ability, params):
        """Fisher information Σ_k P'_k(θ)² / P_k(θ)."""
        theta = np.atleast_1d(np.asarray(ability, dtype=np.float64))
        probs, first, _ = self._category_derivatives(theta, params)
        result = np.sum(first**2 / probs, axis=1)
        return float(result[0]) if np.ndim(ability) == 0 else result

    def neg_log_likelihood_with_grad(self, vector, template, abilities, fractions):
        params = self.from_vector(vector, template)
        a = self._discrimination(params)
        thresholds = self._steps(params)
        k = self.category_of(fractions, params)
        rows = np.arange(len(abilities))

        _, slope, probs = self._kernel(abilities, params)
        p = np.maximum(probs[rows, k], PROB_EPSILON)
        ll = float(np.sum(np.log(p)))

        # dP*/da = (θ - b) P*(1 - P*), zero on the boundary columns
        distance = np.zeros_like(slope)
        distance[:, 1:-1] = abilities[:, None] - thresholds[None, :]
        da = distance * slope
        grad_a = float(np.sum((da[rows, k] - da[rows, k + 1]) / p))

        # P_k falls with b_k and rises with b_{k+1}
        db = np.zeros_like(slope)
        db[rows, k] -= a * slope[rows, k] / p
        db[rows, k + 1] += a * slope[rows, k + 1] / p
        grad_b = np.sum(db[:, 1:-1], axis=0)

        prior, prior_grad = self._step_prior(thresholds)
        ll += prior
        grad_b = grad_b + prior_grad

        if self.estimates_discrimination:
            grad = np.concatenate([[grad_a], grad_b])
        else:
            grad = grad_b
        return -ll, -grad


class GradedResponse(GeneralizedGradedResponse):
    """Graded Response Model (GRM).

    The GGRM with discrimination fixed at 1.
    """

    model_name = "GRM"
    estimates_discrimination = False

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["intercepts"]
