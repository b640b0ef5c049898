from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Self

import numpy as np
from numpy.typing import NDArray

from catkit._core import clamp_to_sentinel, sigmoid
from catkit.constants import PROB_EPSILON
from catkit.models.trusted_region import TrustedRegion
from catkit.typing import ParamDict

if TYPE_CHECKING:
    from catkit.params.item_params import ItemParamList
    from catkit.params.person_params import PersonParamList
    from catkit.params.responses import ResponseMatrix


class BaseItemModel(ABC):
    """Interface shared by all psychometric item models.

    Models are stateless with respect to item parameters: every method
    receives the parameter dictionary of the item it evaluates. This lets
    one model instance score any number of items and lets calibration
    compare competing models on the same item.

    Ability arguments accept scalars or 1-D arrays; fractions broadcast
    against them.
    """

    model_name: str = "BaseModel"
    is_polytomous: bool = False

    def __init__(self, trusted_region: TrustedRegion | None = None) -> None:
        self.trusted_region = trusted_region or TrustedRegion()

    @classmethod
    @abstractmethod
    def parameter_names(cls) -> list[str]: ...

    @abstractmethod
    def default_params(self, fractions: list[float] | None = None) -> ParamDict: ...

    @abstractmethod
    def likelihood(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
        fraction: NDArray[np.float64] | float,
    ) -> NDArray[np.float64] | float: ...

    @abstractmethod
    def log_likelihood(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
        fraction: NDArray[np.float64] | float,
    ) -> NDArray[np.float64] | float: ...

    @abstractmethod
    def log_likelihood_p(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
        fraction: NDArray[np.float64] | float,
    ) -> NDArray[np.float64] | float: ...

    @abstractmethod
    def log_likelihood_p_p(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
        fraction: NDArray[np.float64] | float,
    ) -> NDArray[np.float64] | float: ...

    @abstractmethod
    def fisher_info(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
    ) -> NDArray[np.float64] | float: ...

    @abstractmethod
    def to_vector(self, params: ParamDict) -> NDArray[np.float64]: ...

    @abstractmethod
    def from_vector(
        self, vector: NDArray[np.float64], template: ParamDict
    ) -> ParamDict: ...

    @abstractmethod
    def vector_bounds(self, template: ParamDict) -> list[tuple[float, float]]: ...

    @abstractmethod
    def neg_log_likelihood_with_grad(
        self,
        vector: NDArray[np.float64],
        template: ParamDict,
        abilities: NDArray[np.float64],
        fractions: NDArray[np.float64],
    ) -> tuple[float, NDArray[np.float64]]:
        """Negative item log-likelihood and its gradient w.r.t. ``vector``."""
        ...

    def n_free_parameters(self, params: ParamDict) -> int:
        return len(self.to_vector(params))

    def total_log_likelihood(
        self,
        abilities: NDArray[np.float64],
        params: ParamDict,
        fractions: NDArray[np.float64],
    ) -> float:
        if len(abilities) == 0:
            return 0.0
        return float(np.sum(self.log_likelihood(abilities, params, fractions)))

    def is_compatible(self, params: ParamDict) -> bool:
        """True if ``params`` carries every parameter this model needs."""
        return all(name in params for name in self.parameter_names())

    def restrict_to_trusted_region(self, params: ParamDict) -> ParamDict:
        """Clip every parameter into the trusted region."""
        restricted: ParamDict = {}
        for name, value in params.items():
            lo, hi = self.trusted_region.bounds_for(name)
            if isinstance(value, dict):
                restricted[name] = {
                    k: float(np.clip(v, lo, hi)) for k, v in value.items()
                }
            else:
                restricted[name] = float(np.clip(value, lo, hi))
        return restricted

    def clamp_params(self, params: ParamDict) -> ParamDict:
        """Replace non-finite parameter values by the storage sentinel."""
        clamped: ParamDict = {}
        for name, value in params.items():
            if isinstance(value, dict):
                clamped[name] = {k: clamp_to_sentinel(v) for k, v in value.items()}
            else:
                clamped[name] = clamp_to_sentinel(value)
        return clamped

    def estimate_item_params(
        self,
        responses: ResponseMatrix,
        person_abilities: PersonParamList,
        old_params: ItemParamList | None = None,
        n_jobs: int = 1,
    ) -> ItemParamList:
        """Estimate parameters of every item in ``responses`` under this model.

        Parameters
        ----------
        responses : ResponseMatrix
            Scorable responses.
        person_abilities : PersonParamList
            Current ability estimates.
        old_params : ItemParamList, optional
            Previous estimates used as starting values.
        n_jobs : int, default=1
            Number of threads; -1 uses all cores.

        Returns
        -------
        ItemParamList
            One entry per item. Items that could not be estimated carry
            status ``NOT_CALCULATED``.
        """
        from catkit.estimation.items import ItemEstimator

        estimator = ItemEstimator(self, n_jobs=n_jobs)
        return estimator.estimate(responses, person_abilities, old_params)

    def copy(self) -> Self:
        return self.__class__(trusted_region=self.trusted_region)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model_name={self.model_name!r})"


class DichotomousItemModel(BaseItemModel):
    """Logistic models with response probability ``c + (1 - c) * sigmoid(a(θ - b))``.

    A fractional response ``f`` enters the likelihood as a weighted
    Bernoulli observation, ``f * log P + (1 - f) * log(1 - P)``; for
    ``f`` in {0, 1} this is the usual dichotomous likelihood.
    """

    @abstractmethod
    def _components(self, params: ParamDict) -> tuple[float, float, float]:
        """Return ``(discrimination, difficulty, guessing)`` of an item."""
        ...

    def default_params(self, fractions: list[float] | None = None) -> ParamDict:
        defaults = {"difficulty": 0.0, "discrimination": 1.0, "guessing": 0.0}
        return {name: defaults[name] for name in self.parameter_names()}

    def probability(
        self,
        ability: NDArray[np.float64] | float,
        params: ParamDict,
    ) -> NDArray[np.float64] | float:
        """Compute P(X=1|θ)."""
        a, b, c = self._components(params)
        s = sigmoid(a * (np.asarray(ability, dtype=np.float64) - b))
        return c + (1.0 - c) * s

    def likelihood(self, ability, params, fraction):
        p = np.clip(self.probability(ability, params), 0.0, 1.0)
        f = np.asarray(fraction, dtype=np.float64)
        result = p**f * (1.0 - p) ** (1.0 - f)
        return float(result) if np.ndim(result) == 0 else result

    def log_likelihood(self, ability, params, fraction):
        p = np.clip(self.probability(ability, params), PROB_EPSILON, 1 - PROB_EPSILON)
        f = np.asarray(fraction, dtype=np.float64)
        result = f * np.log(p) + (1.0 - f) * np.log(1.0 - p)
        return float(result) if np.ndim(result) == 0 else result

    def log_likelihood_p(self, ability, params, fraction):
        a, b, c = self._components(params)
        s = sigmoid(a * (np.asarray(ability, dtype=np.float64) - b))
        p = np.maximum(c + (1.0 - c) * s, PROB_EPSILON)
        f = np.asarray(fraction, dtype=np.float64)
        result = a * (f * (1.0 - c) * s * (1.0 - s) / p - (1.0 - f) * s)
        return float(result) if np.ndim(result) == 0 else result

    def log_likelihood_p_p(self, ability, params, fraction):
        a, b, c = self._components(params)
        s = sigmoid(a * (np.asarray(ability, dtype=np.float64) - b))
        p = np.maximum(c + (1.0 - c) * s, PROB_EPSILON)
        f = np.asarray(fraction, dtype=np.float64)
        ds = a * s * (1.0 - s)
        inner = ((1.0 - 2.0 * s) * p - (1.0 - c) * s * (1.0 - s)) / p**2
        result = a * (f * (1.0 - c) * ds * inner - (1.0 - f) * ds)
        return float(result) if np.ndim(result) == 0 else result

    def fisher_info(self, ability, params):
        """Fisher information ``P'^2 / (P (1 - P))``.

        Written as ``(1 - c) a^2 s^2 (1 - s) / P`` which reduces to
        ``a^2 s (1 - s)`` when there is no guessing floor.
        """
        a, b, c = self._components(params)
        s = sigmoid(a * (np.asarray(ability, dtype=np.float64) - b))
        p = np.maximum(c + (1.0 - c) * s, PROB_EPSILON)
        result = (1.0 - c) * a**2 * s**2 * (1.0 - s) / p
        return float(result) if np.ndim(result) == 0 else result

    def to_vector(self, params: ParamDict) -> NDArray[np.float64]:
        return np.array(
            [float(params[name]) for name in self.parameter_names()], dtype=np.float64
        )

    def from_vector(self, vector, template):
        return {
            name: float(vector[i]) for i, name in enumerate(self.parameter_names())
        }

    def vector_bounds(self, template):
        return [self.trusted_region.bounds_for(name) for name in self.parameter_names()]

    def neg_log_likelihood_with_grad(self, vector, template, abilities, fractions):
        params = self.from_vector(vector, template)
        a, b, c = self._components(params)

        s = sigmoid(a * (abilities - b))
        p = np.clip(c + (1.0 - c) * s, PROB_EPSILON, 1 - PROB_EPSILON)

        ll = np.sum(fractions * np.log(p) + (1.0 - fractions) * np.log(1.0 - p))
        score = fractions / p - (1.0 - fractions) / (1.0 - p)
        dp_dz = (1.0 - c) * s * (1.0 - s)
        common = score * dp_dz

        partials = {
            "discrimination": np.sum(common * (abilities - b)),
            "difficulty": np.sum(common * (-a)),
            "guessing": np.sum(score * (1.0 - s)),
        }

        region = self.trusted_region
        if region.use_prior:
            ll += region.difficulty_log_prior(b)
            partials["difficulty"] += region.difficulty_log_prior_grad(b)

        grad = np.array(
            [partials[name] for name in self.parameter_names()], dtype=np.float64
        )
        return -float(ll), -grad


class PolytomousItemModel(BaseItemModel):
    """Models whose responses fall into ordered score categories."""

    is_polytomous = True

    @staticmethod
    def step_fractions(params: ParamDict) -> list[float]:
        """Sorted fractions that open a category above zero."""
        return sorted(float(f) for f in params["intercepts"])

    @classmethod
    def category_of(
        cls, fraction: NDArray[np.float64] | float, params: ParamDict
    ) -> NDArray[np.int_]:
        """Category index of a response: the number of steps it reaches."""
        steps = np.asarray(cls.step_fractions(params), dtype=np.float64)
        f = np.atleast_1d(np.asarray(fraction, dtype=np.float64))
        return np.sum(f[:, None] >= steps[None, :] - 1e-9, axis=1)

    def n_categories(self, params: ParamDict) -> int:
        return len(params["intercepts"]) + 1

    # Shared parameter layout: a discrimination and one step difficulty
    # per fraction, stored as ``{"intercepts": {fraction: difficulty}}``.

    estimates_discrimination = True

    def default_params(self, fractions: list[float] | None = None) -> ParamDict:
        steps = sorted({float(f) for f in (fractions or [1.0]) if f > 0}) or [1.0]
        start = np.linspace(-1.0, 1.0, len(steps)) if len(steps) > 1 else [0.0]
        return {
            "discrimination": 1.0,
            "intercepts": {f: float(d) for f, d in zip(steps, start)},
        }

    def _discrimination(self, params: ParamDict) -> float:
        if not self.estimates_discrimination:
            return 1.0
        return float(params["discrimination"])

    def _steps(self, params: ParamDict) -> NDArray[np.float64]:
        intercepts = params["intercepts"]
        return np.array(
            [intercepts[f] for f in sorted(intercepts)], dtype=np.float64
        )

    def _prepare(self, ability, fraction, params):
        theta, f = np.broadcast_arrays(
            np.atleast_1d(np.asarray(ability, dtype=np.float64)),
            np.atleast_1d(np.asarray(fraction, dtype=np.float64)),
        )
        scalar = np.ndim(ability) == 0 and np.ndim(fraction) == 0
        return np.array(theta), self.category_of(f, params), scalar

    def to_vector(self, params: ParamDict) -> NDArray[np.float64]:
        steps = self._steps(params)
        if not self.estimates_discrimination:
            return steps
        return np.concatenate([[float(params["discrimination"])], steps])

    def from_vector(self, vector, template):
        fractions = sorted(template["intercepts"])
        offset = 1 if self.estimates_discrimination else 0
        params: ParamDict = {
            "intercepts": {
                f: float(vector[offset + i]) for i, f in enumerate(fractions)
            }
        }
        params["discrimination"] = float(vector[0]) if offset else 1.0
        return params

    def vector_bounds(self, template):
        region = self.trusted_region
        bounds = [region.bounds_for("intercepts")] * len(template["intercepts"])
        if self.estimates_discrimination:
            bounds = [region.bounds_for("discrimination"), *bounds]
        return bounds

    def _step_prior(
        self, deltas: NDArray[np.float64]
    ) -> tuple[float, NDArray[np.float64]]:
        """Log prior of the step difficulties and its gradient."""
        region = self.trusted_region
        if not region.use_prior:
            return 0.0, np.zeros_like(deltas)
        return (
            sum(region.difficulty_log_prior(d) for d in deltas),
            np.array([region.difficulty_log_prior_grad(d) for d in deltas]),
        )
