"""Joint maximum-likelihood calibration across competing models."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

import numpy as np

from catkit._runtime_config import debug_or_warn, resolve_debug
from catkit.constants import DEFAULT_MAX_ITERATIONS
from catkit.estimation.ability import AbilityEstimator
from catkit.estimation.base import BaseEstimator
from catkit.exceptions import ConfigurationError
from catkit.models.registry import ModelRegistry, default_registry
from catkit.params.item_params import ItemParameter, ItemParamList, ItemStatus
from catkit.params.person_params import PersonParamList
from catkit.params.responses import ResponseMatrix
from catkit.results.calibration_result import CalibrationResult, IterationRecord
from catkit.typing import InformationCriterion, ItemId, ScaleId

if TYPE_CHECKING:
    from catkit.storage.base import ParameterStore

logger = logging.getLogger(__name__)

_context_locks: dict[int, threading.Lock] = {}
_context_locks_guard = threading.Lock()


def _context_lock(context_id: int) -> threading.Lock:
    with _context_locks_guard:
        return _context_locks.setdefault(context_id, threading.Lock())


class CalibrationStrategy(BaseEstimator):
    """Alternating item/ability estimation with per-item model selection.

    Each round estimates item parameters under every enabled model from
    the current abilities, picks a winning model per item, and
    re-estimates all abilities from the winning parameters. By default
    the loop always runs ``max_iterations`` rounds; passing ``tol``
    enables an early stop once no finite ability moves by more than
    ``tol``.

    Parameters
    ----------
    responses : ResponseMatrix
        Scorable responses of the calibration sample.
    registry : ModelRegistry, optional
        Model registry. Defaults to :func:`default_registry`.
    models : iterable of str, optional
        Enabled models in order of preference. Ties in the information
        criterion go to the model listed first.
    max_iterations : int, default=5
        Number of rounds.
    tol : float, optional
        Ability-change threshold for early stopping. ``None`` (default)
        keeps the fixed iteration count.
    overrides : mapping of int to str, optional
        Per-item model to use regardless of the information criterion.
    previous_item_params : mapping of str to ItemParamList, optional
        Starting values per model, typically from an earlier context.
    information_criterion : {"AIC", "BIC"}, default="AIC"
        Criterion used for model selection.
    n_jobs : int, default=1
        Threads used for per-item and per-examinee optimization.
    context_id : int, default=0
        Calibration context. Only one run per context may be active.
    debug : bool, optional
        Overrides the process-wide debug flag. In debug mode a dangling
        override raises :class:`ConfigurationError`; otherwise it is
        logged and automatic selection is used.
    verbose : bool, default=False
        Log per-round summaries at INFO level.

    Examples
    --------
    >>> strategy = CalibrationStrategy(ResponseMatrix(raw), models=["1PL", "2PL"])
    >>> item_params, abilities = strategy.run_estimation()
    >>> strategy.selected_item_params[42].model_name
    '1PL'
    """

    def __init__(
        self,
        responses: ResponseMatrix,
        registry: ModelRegistry | None = None,
        models: Iterable[str] | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        tol: float | None = None,
        overrides: Mapping[ItemId, str] | None = None,
        previous_item_params: Mapping[str, ItemParamList] | None = None,
        information_criterion: InformationCriterion = "AIC",
        n_jobs: int = 1,
        context_id: int = 0,
        debug: bool | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(max_iter=max_iterations, tol=tol, verbose=verbose)

        if information_criterion not in ("AIC", "BIC"):
            raise ValueError(
                f"Invalid information criterion '{information_criterion}'. "
                "Must be one of: 'AIC', 'BIC'"
            )

        self.responses = responses
        self.registry = registry or default_registry()
        self.model_names = self.registry.resolve_order(models)
        self.information_criterion = information_criterion
        self.n_jobs = n_jobs
        self.context_id = context_id
        self.debug = debug
        self.previous_item_params = dict(previous_item_params or {})
        self.overrides = self._validate_overrides(overrides or {})

        self._selected = ItemParamList()
        self._history: list[IterationRecord] = []
        self._criterion_values: dict[ItemId, dict[str, float]] = {}
        self._converged = False

    @property
    def max_iterations(self) -> int:
        return self.max_iter

    @property
    def selected_item_params(self) -> ItemParamList:
        """Winning parameters per item from the last round."""
        return self._selected

    @property
    def history(self) -> list[IterationRecord]:
        return list(self._history)

    @property
    def n_iterations(self) -> int:
        return len(self._history)

    @property
    def converged(self) -> bool:
        return self._converged

    @property
    def criterion_values(self) -> dict[ItemId, dict[str, float]]:
        """Information criterion per item and model from the last round."""
        return {k: dict(v) for k, v in self._criterion_values.items()}

    def _validate_overrides(self, overrides: Mapping[ItemId, str]) -> dict[ItemId, str]:
        valid = {}
        for item_id, model_name in overrides.items():
            if model_name not in self.registry:
                debug_or_warn(
                    ConfigurationError(
                        f"Override for item {item_id} names unknown model '{model_name}'"
                    ),
                    self.debug,
                )
                continue
            valid[item_id] = model_name
        return valid

    def run_estimation(
        self,
        scale_id: ScaleId | None = None,
        initial_abilities: PersonParamList | None = None,
    ) -> tuple[dict[str, ItemParamList], PersonParamList]:
        """Run the calibration loop.

        Parameters
        ----------
        scale_id : int, optional
            Scale the abilities are recorded for.
        initial_abilities : PersonParamList, optional
            Seed abilities. Examinees without one start at 0.

        Returns
        -------
        per_model_item_params : dict of str to ItemParamList
            Estimated parameters per enabled model. Winning entries carry
            ``SET_BY_STRATEGY``.
        final_abilities : PersonParamList
            Abilities after the last round.

        Raises
        ------
        RuntimeError
            If a run for the same context is already active.
        """
        lock = _context_lock(self.context_id)
        if not lock.acquire(blocking=False):
            raise RuntimeError(
                f"A calibration run is already active for context {self.context_id}"
            )
        try:
            return self._run(scale_id, initial_abilities)
        finally:
            lock.release()

    def _run(
        self,
        scale_id: ScaleId | None,
        initial_abilities: PersonParamList | None,
    ) -> tuple[dict[str, ItemParamList], PersonParamList]:
        logger.info(
            "Calibrating context %s: %d examinees, %d items, models %s",
            self.context_id,
            self.responses.n_examinees,
            self.responses.n_items,
            self.model_names,
        )
        self._history = []
        self._convergence_history = []
        self._converged = False

        abilities = self.responses.initial_abilities(initial_abilities, scale_id)
        item_params: dict[str, ItemParamList] = {
            name: self.previous_item_params.get(name, ItemParamList())
            for name in self.model_names
        }
        ability_estimator = AbilityEstimator(
            self.responses, self.registry, n_jobs=self.n_jobs
        )

        selected = ItemParamList()
        for iteration in range(1, self.max_iter + 1):
            for name in self.model_names:
                item_params[name] = self.registry.get(name).estimate_item_params(
                    self.responses,
                    abilities,
                    old_params=item_params[name],
                    n_jobs=self.n_jobs,
                )

            selected = self.select_item_models(item_params, abilities)
            new_abilities = ability_estimator.get_person_abilities(
                selected, abilities, scale_id
            )

            change = new_abilities.max_abs_change(abilities)
            ll = self._log_likelihood(selected, new_abilities)
            self._convergence_history.append(change)
            self._history.append(
                IterationRecord(
                    iteration=iteration,
                    log_likelihood=ll,
                    max_ability_change=change,
                    n_selected=self._count_models(selected),
                )
            )
            self._log_iteration(iteration, ll, max_change=change)

            abilities = new_abilities
            if self._check_convergence(change):
                self._converged = True
                break

        self._selected = selected
        logger.info(
            "Calibration of context %s finished after %d iteration(s)",
            self.context_id,
            len(self._history),
        )
        return item_params, abilities

    def select_item_models(
        self,
        item_params: Mapping[str, ItemParamList],
        abilities: PersonParamList,
    ) -> ItemParamList:
        """Pick a winning model for every item.

        An override wins if its model produced parameters for the item.
        Otherwise the model with the smallest information criterion wins;
        ties go to the model enabled first. The winner is tagged
        ``SET_BY_STRATEGY`` both in the returned list and in
        ``item_params``.
        """
        selected = ItemParamList()
        self._criterion_values = {}
        for item_id in self.responses.item_ids:
            candidates = {
                name: item_params[name][item_id]
                for name in self.model_names
                if item_id in item_params.get(name, ItemParamList())
                and item_params[name][item_id].is_calculated
            }

            winner = self._override_for(item_id, candidates)
            if winner is None:
                if not candidates:
                    continue
                values = {
                    name: self.compute_criterion(param, abilities)
                    for name, param in candidates.items()
                }
                self._criterion_values[item_id] = values
                winner = min(values, key=values.__getitem__)

            item_params[winner].set_status(item_id, ItemStatus.SET_BY_STRATEGY)
            selected.add(item_params[winner][item_id])
        return selected

    def _override_for(
        self, item_id: ItemId, candidates: Mapping[str, ItemParameter]
    ) -> str | None:
        model_name = self.overrides.get(item_id)
        if model_name is None:
            return None
        if model_name in candidates:
            return model_name
        debug_or_warn(
            ConfigurationError(
                f"Override for item {item_id} points to model '{model_name}' "
                "which has no data for it; using automatic selection"
            ),
            self.debug,
        )
        return None

    def compute_criterion(
        self, param: ItemParameter, abilities: PersonParamList
    ) -> float:
        """Information criterion of one item's parameters under its model."""
        model = self.registry.get(param.model_name)
        thetas, fractions = self.responses.item_observations(param.item_id, abilities)
        ll = model.total_log_likelihood(thetas, param.params, fractions)
        k = model.n_free_parameters(param.params)
        if self.information_criterion == "BIC":
            return self._compute_bic(ll, k, len(thetas))
        return self._compute_aic(ll, k)

    def _log_likelihood(
        self, selected: ItemParamList, abilities: PersonParamList
    ) -> float:
        total = 0.0
        for param in selected:
            model = self.registry.get(param.model_name)
            thetas, fractions = self.responses.item_observations(
                param.item_id, abilities
            )
            total += model.total_log_likelihood(thetas, param.params, fractions)
        return float(total) if np.isfinite(total) else float("nan")

    def _count_models(self, selected: ItemParamList) -> dict[str, int]:
        counts = {name: 0 for name in self.model_names}
        for param in selected:
            counts[param.model_name] += 1
        return counts

    def __repr__(self) -> str:
        return (
            f"CalibrationStrategy(models={self.model_names}, "
            f"max_iterations={self.max_iter}, tol={self.tol}, "
            f"criterion={self.information_criterion!r}, "
            f"debug={resolve_debug(self.debug)})"
        )


def calibrate(
    strategy: CalibrationStrategy,
    store: ParameterStore,
    scale_id: ScaleId | None = None,
    initial_abilities: PersonParamList | None = None,
) -> CalibrationResult:
    """Run a calibration and persist its results.

    Items that have a manually selected model in the store are treated as
    overrides, unless the strategy already overrides them, and keep their
    ``SET_MANUALLY`` status. Previous parameters of the context seed
    models the strategy has no starting values for.

    Parameters
    ----------
    strategy : CalibrationStrategy
        Configured strategy; its ``context_id`` selects the store rows.
    store : ParameterStore
        Destination for item and person parameters.
    scale_id : int, optional
        Scale the abilities belong to.
    initial_abilities : PersonParamList, optional
        Seed abilities. Defaults to the abilities stored for the context.

    Returns
    -------
    CalibrationResult
    """
    context_id = strategy.context_id
    manual = {
        item_id: model_name
        for item_id, model_name in store.manual_selections(context_id).items()
        if model_name in strategy.registry
    }
    for item_id, model_name in manual.items():
        strategy.overrides.setdefault(item_id, model_name)
    for name in strategy.model_names:
        if name not in strategy.previous_item_params:
            previous = store.load_item_params(context_id, name)
            if len(previous):
                strategy.previous_item_params[name] = previous

    if initial_abilities is None:
        initial_abilities = store.load_person_params(context_id, scale_id=scale_id)

    item_params, abilities = strategy.run_estimation(scale_id, initial_abilities)

    for item_id, model_name in manual.items():
        model_params = item_params.get(model_name)
        if model_params is None or item_id not in model_params:
            continue
        if not model_params[item_id].is_calculated:
            # keep the stored manual row
            model_params.remove(item_id)
            continue
        if strategy.overrides.get(item_id) == model_name:
            model_params.set_status(item_id, ItemStatus.SET_MANUALLY)

    for param_list in item_params.values():
        store.save_item_params(context_id, param_list)
    store.save_person_params(context_id, abilities)

    return CalibrationResult(
        item_params=item_params,
        selected=strategy.selected_item_params,
        person_params=abilities,
        n_iterations=strategy.n_iterations,
        converged=strategy.converged,
        history=strategy.history,
        context_id=context_id,
    )
