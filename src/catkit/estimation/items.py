"""Per-item maximum-likelihood estimation with L-BFGS-B."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize

from catkit.estimation._common import map_parallel
from catkit.exceptions import ConvergenceFailure
from catkit.params.item_params import ItemParameter, ItemParamList, ItemStatus
from catkit.params.person_params import PersonParamList
from catkit.params.responses import ResponseMatrix
from catkit.typing import ItemId, ParamDict

if TYPE_CHECKING:
    from catkit.models.base import BaseItemModel

logger = logging.getLogger(__name__)


class ItemEstimator:
    """Estimate the parameters of every item under one model.

    For each item the (ability, fraction) pairs of examinees with a
    finite ability are collected, and the negative log-likelihood is
    minimized with L-BFGS-B using the model's analytic gradient. Bounds
    come from the model's trusted region.

    Parameters
    ----------
    model : BaseItemModel
        Model whose parameters are estimated.
    min_observations : int, default=1
        Items with fewer usable observations are not estimated.
    maxiter : int, default=200
        Iteration budget of the optimizer per item.
    ftol : float, default=1e-9
        Relative function tolerance of the optimizer.
    n_jobs : int, default=1
        Number of threads; -1 uses all cores.
    """

    def __init__(
        self,
        model: BaseItemModel,
        min_observations: int = 1,
        maxiter: int = 200,
        ftol: float = 1e-9,
        n_jobs: int = 1,
    ) -> None:
        if min_observations < 1:
            raise ValueError("min_observations must be at least 1")
        self.model = model
        self.min_observations = min_observations
        self.maxiter = maxiter
        self.ftol = ftol
        self.n_jobs = n_jobs

    def estimate(
        self,
        responses: ResponseMatrix,
        person_abilities: PersonParamList,
        old_params: ItemParamList | None = None,
    ) -> ItemParamList:
        def estimate_one(item_id: ItemId) -> ItemParameter:
            start = old_params.get(item_id) if old_params is not None else None
            return self.estimate_item(
                item_id,
                *responses.item_observations(item_id, person_abilities),
                start_params=start.params if start is not None else None,
                fractions_seen=responses.item_fractions(item_id),
            )

        results = map_parallel(estimate_one, responses.item_ids, self.n_jobs)
        n_failed = sum(1 for p in results if not p.is_calculated)
        if n_failed:
            logger.debug(
                "%s: %d of %d items not calculated",
                self.model.model_name,
                n_failed,
                len(results),
            )
        return ItemParamList(results)

    def estimate_item(
        self,
        item_id: ItemId,
        abilities: NDArray[np.float64],
        fractions: NDArray[np.float64],
        start_params: ParamDict | None = None,
        fractions_seen: list[float] | None = None,
    ) -> ItemParameter:
        """Estimate one item.

        Parameters
        ----------
        item_id : int
            Item identifier.
        abilities, fractions : ndarray
            Paired observations.
        start_params : dict, optional
            Previous estimate used as starting point when compatible.
        fractions_seen : list of float, optional
            All fractions observed for the item; these define the
            categories of multi-category models.

        Returns
        -------
        ItemParameter
            Status ``NOT_SET`` on success and ``NOT_CALCULATED`` when the
            item has too few observations or the optimizer failed.
        """
        template = self._start_params(start_params, fractions_seen)

        if len(abilities) < self.min_observations:
            return self._param(item_id, template, ItemStatus.NOT_CALCULATED)

        try:
            params = self._optimize(template, abilities, fractions)
        except ConvergenceFailure as exc:
            logger.debug(
                "%s item %s did not converge: %s", self.model.model_name, item_id, exc
            )
            params = exc.last_value if isinstance(exc.last_value, dict) else template
            return self._param(item_id, params, ItemStatus.NOT_CALCULATED)

        return self._param(item_id, params, ItemStatus.NOT_SET)

    def _param(
        self, item_id: ItemId, params: ParamDict, status: ItemStatus
    ) -> ItemParameter:
        return ItemParameter(
            item_id=item_id,
            model_name=self.model.model_name,
            params=self.model.clamp_params(params),
            status=status,
        )

    def _start_params(
        self,
        start_params: ParamDict | None,
        fractions_seen: list[float] | None,
    ) -> ParamDict:
        default = self.model.default_params(fractions_seen)
        if start_params is None or not self.model.is_compatible(start_params):
            return default
        if "intercepts" in default and set(start_params["intercepts"]) != set(
            default["intercepts"]
        ):
            return default
        start = {name: start_params[name] for name in default if name in start_params}
        for name, value in default.items():
            start.setdefault(name, value)
        return self.model.restrict_to_trusted_region(start)

    def _optimize(
        self,
        template: ParamDict,
        abilities: NDArray[np.float64],
        fractions: NDArray[np.float64],
    ) -> ParamDict:
        model = self.model
        x0 = model.to_vector(template)
        bounds = model.vector_bounds(template)

        def neg_ll_and_grad(
            vector: NDArray[np.float64],
        ) -> tuple[float, NDArray[np.float64]]:
            return model.neg_log_likelihood_with_grad(
                vector, template, abilities, fractions
            )

        result = minimize(
            neg_ll_and_grad,
            x0=x0,
            method="L-BFGS-B",
            jac=True,
            bounds=bounds,
            options={"maxiter": self.maxiter, "ftol": self.ftol},
        )
        params = model.from_vector(result.x, template)
        if not result.success or not np.all(np.isfinite(result.x)):
            raise ConvergenceFailure(str(result.message), last_value=params)
        return params

    def __repr__(self) -> str:
        return (
            f"ItemEstimator(model={self.model.model_name!r}, "
            f"min_observations={self.min_observations}, n_jobs={self.n_jobs})"
        )
