"""Maximum-likelihood ability estimation."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from catkit.constants import (
    ABILITY_DIVERGENCE_LIMIT,
    NEWTON_MAX_ITER,
    NEWTON_TOLERANCE,
    SENTINEL,
)
from catkit.estimation._common import map_parallel
from catkit.estimation.newton import newton_raphson
from catkit.models.registry import ModelRegistry
from catkit.params.item_params import ItemParamList
from catkit.params.person_params import PersonParameter, PersonParamList
from catkit.params.responses import ResponseMatrix
from catkit.typing import ExamineeId, ItemId, ScaleId

logger = logging.getLogger(__name__)


@dataclass
class AbilityEstimate:
    """Ability of a single examinee.

    Attributes
    ----------
    ability : float
        The estimate, or ±1000 if the search did not converge.
    converged : bool
        Whether Newton-Raphson converged.
    n_iter : int
        Iterations used.
    n_items : int
        Number of scorable responses that entered the likelihood.
    """

    ability: float
    converged: bool
    n_iter: int
    n_items: int


def estimate_ability(
    fractions: Mapping[ItemId, float],
    item_params: ItemParamList,
    registry: ModelRegistry,
    start: float = 0.0,
    *,
    tol: float = NEWTON_TOLERANCE,
    max_iter: int = NEWTON_MAX_ITER,
    ability_limit: float = ABILITY_DIVERGENCE_LIMIT,
) -> AbilityEstimate:
    """Estimate one examinee's ability by maximum likelihood.

    Responses to items without calculated parameters are ignored. When no
    response remains, the start value is returned unchanged with
    ``n_items == 0``.

    Parameters
    ----------
    fractions : mapping of int to float
        Responses of the examinee, ``{item_id: fraction}``.
    item_params : ItemParamList
        Parameters to score against. Each entry is evaluated with the
        model named in it.
    registry : ModelRegistry
        Source of model instances.
    start : float, default=0.0
        Starting ability; non-finite values start at 0.

    Returns
    -------
    AbilityEstimate
        NaN if the score function is not finite, for example because of
        a NaN item parameter.
    """
    terms = []
    for item_id, fraction in fractions.items():
        param = item_params.get(item_id)
        if param is None or not param.is_calculated:
            continue
        terms.append((registry.get(param.model_name), param.params, fraction))

    if not np.isfinite(start) or abs(start) >= ability_limit:
        start = 0.0

    if not terms:
        return AbilityEstimate(float(start), False, 0, 0)

    def first(theta: float) -> float:
        return sum(model.log_likelihood_p(theta, p, f) for model, p, f in terms)

    def second(theta: float) -> float:
        return sum(model.log_likelihood_p_p(theta, p, f) for model, p, f in terms)

    result = newton_raphson(
        first, second, start, tol=tol, max_iter=max_iter, limit=ability_limit
    )
    if result.converged:
        return AbilityEstimate(result.x, True, result.n_iter, len(terms))
    if not np.isfinite(result.gradient):
        return AbilityEstimate(float("nan"), False, result.n_iter, len(terms))

    direction = result.gradient if result.gradient != 0 else result.x
    ability = SENTINEL if direction > 0 else -SENTINEL
    return AbilityEstimate(ability, False, result.n_iter, len(terms))


class AbilityEstimator:
    """Per-examinee maximum-likelihood ability estimation.

    Parameters
    ----------
    responses : ResponseMatrix
        Scorable responses.
    registry : ModelRegistry
        Source of model instances.
    tol : float, default=0.001
        Newton-Raphson step tolerance.
    max_iter : int, default=50
        Newton-Raphson iteration budget per examinee.
    ability_limit : float, default=50.0
        Estimates beyond this magnitude count as divergent.
    n_jobs : int, default=1
        Number of threads; -1 uses all cores.

    Examples
    --------
    >>> estimator = AbilityEstimator(responses, default_registry())
    >>> abilities = estimator.get_person_abilities(item_params)
    """

    def __init__(
        self,
        responses: ResponseMatrix,
        registry: ModelRegistry,
        tol: float = NEWTON_TOLERANCE,
        max_iter: int = NEWTON_MAX_ITER,
        ability_limit: float = ABILITY_DIVERGENCE_LIMIT,
        n_jobs: int = 1,
    ) -> None:
        if tol <= 0:
            raise ValueError("tol must be positive")
        self.responses = responses
        self.registry = registry
        self.tol = tol
        self.max_iter = max_iter
        self.ability_limit = ability_limit
        self.n_jobs = n_jobs
        self.n_not_converged = 0

    def get_person_abilities(
        self,
        item_param_list: ItemParamList,
        initial_abilities: PersonParamList | None = None,
        scale_id: ScaleId | None = None,
    ) -> PersonParamList:
        """Estimate the ability of every examinee with scorable responses.

        Parameters
        ----------
        item_param_list : ItemParamList
            Item parameters, possibly mixing models.
        initial_abilities : PersonParamList, optional
            Starting values; examinees without one start at 0.
        scale_id : int, optional
            Scale the abilities are recorded for.

        Returns
        -------
        PersonParamList
            Examinees without any response to a calculated item are absent.
        """
        initial = initial_abilities or PersonParamList()

        def estimate_one(examinee_id: ExamineeId) -> AbilityEstimate:
            return estimate_ability(
                self.responses.person_responses(examinee_id),
                item_param_list,
                self.registry,
                start=initial.get_ability(examinee_id, 0.0),
                tol=self.tol,
                max_iter=self.max_iter,
                ability_limit=self.ability_limit,
            )

        examinees = self.responses.examinee_ids
        estimates = map_parallel(estimate_one, examinees, self.n_jobs)

        result = PersonParamList()
        self.n_not_converged = 0
        for examinee_id, estimate in zip(examinees, estimates):
            if estimate.n_items == 0:
                continue
            if not estimate.converged:
                self.n_not_converged += 1
            result.add(PersonParameter(examinee_id, estimate.ability, scale_id))

        if self.n_not_converged:
            logger.debug(
                "%d of %d abilities did not converge and were clamped to ±%g",
                self.n_not_converged,
                len(result),
                SENTINEL,
            )
        return result

    def __repr__(self) -> str:
        return (
            f"AbilityEstimator(n_examinees={self.responses.n_examinees}, "
            f"tol={self.tol}, n_jobs={self.n_jobs})"
        )
