"""Adaptive engine serving the items of live attempts."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

import numpy as np

from catkit.cat.config import QuizSettings
from catkit.cat.pipeline import PreselectContext, PreselectPipeline, PreselectStage
from catkit.cat.progress import AttemptProgress, PlayedItem
from catkit.cat.results import CATState, SelectionOutcome, StopReason
from catkit.cat.stages import build_candidates, stages_for, standard_error
from catkit.exceptions import ConfigurationError, DataIntegrityError
from catkit.models.registry import ModelRegistry, default_registry
from catkit.params.item_params import ItemParamList, ItemStatus
from catkit.params.person_params import PersonParameter, PersonParamList
from catkit.scales import ScaleHierarchy
from catkit.storage.base import AttemptStore, ParameterStore, PlayHistory, ProgressCache
from catkit.storage.memory import InMemoryPlayHistory
from catkit.typing import ExamineeId, ItemId, ScaleId

logger = logging.getLogger(__name__)

_STATUS_PRIORITY = (ItemStatus.SET_MANUALLY, ItemStatus.SET_BY_STRATEGY)


def select_runtime_params(
    store: ParameterStore,
    context_id: int,
    registry: ModelRegistry,
    model_override: str | None = None,
) -> ItemParamList:
    """Merge the stored per-model parameters into one list for runtime use.

    For every item the manually selected model wins, then the model
    selected by calibration. With ``model_override`` only that model's
    calculated parameters are used.

    Raises
    ------
    ConfigurationError
        If ``model_override`` names a model missing from the registry.
    """
    if model_override is not None:
        if model_override not in registry:
            raise ConfigurationError(f"Unknown model override '{model_override}'")
        return store.load_item_params(context_id, model_override).calculated()

    lists = {name: store.load_item_params(context_id, name) for name in registry.names()}
    selected = ItemParamList()
    for status in _STATUS_PRIORITY:
        for param_list in lists.values():
            for param in param_list:
                if param.status == status and param.item_id not in selected:
                    selected.add(param)
    return selected


class AdaptiveEngine:
    """Serve the items of adaptive attempts in one context.

    Every request loads the attempt's progress, folds in the response to
    the previously served item, runs the selection pipeline and saves
    the progress again.

    Parameters
    ----------
    context_id : int
        Calibration context whose item parameters are used.
    scale_id : int
        Main scale of the quiz.
    item_scales : mapping of int to int
        Scale of every item of the pool. Items outside the main scale's
        subtree are ignored.
    parameter_store : ParameterStore
        Source of item parameters and stored abilities.
    attempt_store : AttemptStore
        Durable store of attempt snapshots.
    cache : ProgressCache
        Volatile mirror of the attempt snapshots.
    settings : QuizSettings, optional
        Settings captured by new attempts.
    registry : ModelRegistry, optional
        Models the item parameters refer to.
    hierarchy : ScaleHierarchy, optional
        Scale tree; defaults to flat scales.
    pilot_items : iterable of int
        Items served as pilot items.
    stages : sequence of PreselectStage, optional
        Pipeline stages; defaults to the settings' strategy.
    seed : int, optional
        Seed of the generator used for pilot sampling.
    clock : callable
        Source of the current time in seconds.
    play_history : PlayHistory, optional
        Record of served items across attempts, used for the recency
        penalty and exposure counts. Defaults to an in-memory history.
    debug : bool, optional
        Overrides the process-wide debug flag.

    Examples
    --------
    >>> engine = AdaptiveEngine(1, 10, item_scales, params, attempts, cache)
    >>> outcome = engine.serve_next_item(42, 7, "token", recorded_responses={})
    >>> while not outcome.is_stop:
    ...     fraction = show(outcome.item_id)
    ...     outcome = engine.serve_next_item(
    ...         42, 7, "token", recorded_responses={outcome.item_id: fraction}
    ...     )
    >>> print(engine.finish_attempt(42, 7, "token").summary())
    """

    def __init__(
        self,
        context_id: int,
        scale_id: ScaleId,
        item_scales: Mapping[ItemId, ScaleId],
        parameter_store: ParameterStore,
        attempt_store: AttemptStore,
        cache: ProgressCache,
        settings: QuizSettings | None = None,
        registry: ModelRegistry | None = None,
        hierarchy: ScaleHierarchy | None = None,
        pilot_items: Iterable[ItemId] = (),
        stages: Sequence[PreselectStage] | None = None,
        seed: int | None = None,
        clock: Callable[[], float] = time.time,
        debug: bool | None = None,
        play_history: PlayHistory | None = None,
    ):
        self.context_id = context_id
        self.scale_id = scale_id
        self.parameter_store = parameter_store
        self.attempt_store = attempt_store
        self.cache = cache
        self.settings = settings or QuizSettings()
        self.registry = registry or default_registry()
        self.hierarchy = hierarchy or ScaleHierarchy.flat(
            {scale_id, *item_scales.values()}
        )
        self.pilot_items = set(pilot_items)
        self.stages = list(stages) if stages is not None else None
        self.rng = np.random.default_rng(seed)
        self.clock = clock
        self.debug = debug
        self.play_history = (
            play_history if play_history is not None else InMemoryPlayHistory()
        )

        if scale_id not in self.hierarchy:
            raise DataIntegrityError(f"Main scale {scale_id} is not in the hierarchy")
        self.item_scales: dict[ItemId, ScaleId] = {}
        for item_id, item_scale in item_scales.items():
            if item_scale not in self.hierarchy:
                raise DataIntegrityError(
                    f"Scale {item_scale} of item {item_id} is not in the hierarchy"
                )
            if item_scale == scale_id or self.hierarchy.is_ancestor(scale_id, item_scale):
                self.item_scales[item_id] = item_scale

        self._item_params: ItemParamList | None = None

    @property
    def item_params(self) -> ItemParamList:
        """Runtime item parameters, loaded on first use."""
        if self._item_params is None:
            self.reload_item_params()
        return self._item_params

    def reload_item_params(self) -> None:
        """Reload item parameters, for example after a calibration run."""
        self._item_params = select_runtime_params(
            self.parameter_store,
            self.context_id,
            self.registry,
            self.settings.model_override,
        )
        logger.debug(
            "Context %d: %d items with runtime parameters",
            self.context_id,
            len(self._item_params),
        )

    def load_progress(self, examinee_id: ExamineeId, attempt_id: int) -> AttemptProgress:
        return AttemptProgress.load(
            attempt_id,
            examinee_id,
            self.context_id,
            self.attempt_store,
            self.cache,
            settings=self.settings,
            clock=self.clock,
        )

    def serve_next_item(
        self,
        examinee_id: ExamineeId,
        attempt_id: int,
        session_token: str,
        recorded_responses: Mapping[ItemId, Any] | None = None,
        abandoned: bool = False,
    ) -> SelectionOutcome:
        """Select the next item of an attempt.

        Parameters
        ----------
        examinee_id : int
            Examinee taking the attempt.
        attempt_id : int
            The attempt.
        session_token : str
            Token of the requesting session. The first request binds the
            attempt to it.
        recorded_responses : mapping, optional
            Responses recorded for the attempt, ``{item_id: fraction}``.
        abandoned : bool
            Whether the examinee left the last item without answering.

        Returns
        -------
        SelectionOutcome
            The selected item, or the reason why none was selected.

        Raises
        ------
        SessionMismatchError
            If the attempt is bound to another session token.
        """
        progress = self.load_progress(examinee_id, attempt_id)
        progress.verify_session(session_token)
        response_outcome = progress.check_last_response(
            recorded_responses or {}, abandoned
        )

        context = self._build_context(progress, examinee_id)
        stages = self.stages if self.stages is not None else stages_for(progress.settings)
        result = PreselectPipeline(stages).run(context)

        item = result.item
        if item is not None:
            progress.add_played_item(
                PlayedItem(
                    item_id=item.item_id,
                    scale_id=item.scale_id,
                    ancestor_scale_ids=tuple(self.hierarchy.ancestors(item.scale_id)),
                    fisher_information=item.information,
                    attempt_time=context.now,
                    is_pilot=item.is_pilot,
                )
            )
            self.play_history.record_play(
                self.context_id, examinee_id, item.item_id, context.now
            )
            logger.info(
                "Attempt %d: serving item %d (%d played)",
                attempt_id,
                item.item_id,
                progress.n_played,
            )
        else:
            logger.info("Attempt %d: stopped (%s)", attempt_id, result.reason.value)

        progress.save()
        return SelectionOutcome(
            item_id=item.item_id if item is not None else None,
            reason=result.reason,
            ability=context.ability,
            n_played=progress.n_played,
            is_pilot=item.is_pilot if item is not None else False,
            response_outcome=response_outcome,
        )

    def _build_context(
        self, progress: AttemptProgress, examinee_id: ExamineeId
    ) -> PreselectContext:
        settings = progress.settings
        stored = self.parameter_store.load_person_params(
            self.context_id, scale_id=self.scale_id
        )

        person_ability = progress.get_abilities()
        if self.scale_id not in person_ability:
            param = stored.get(examinee_id)
            initial = 0.0 if param is None or param.is_extreme else param.ability
            person_ability[self.scale_id] = settings.clip_ability(initial)

        mean_ability = None
        if settings.first_item_start == "mean_ability":
            finite = list(stored.finite_abilities().values())
            mean_ability = float(np.mean(finite)) if finite else 0.0

        item_params = self.item_params
        history = self.play_history
        candidates = build_candidates(
            self.item_scales,
            item_params,
            self.pilot_items,
            last_attempt_times=history.last_played(self.context_id, examinee_id),
            play_counts=history.play_counts(self.context_id),
        )
        return PreselectContext(
            progress=progress,
            settings=settings,
            registry=self.registry,
            hierarchy=self.hierarchy,
            scale_id=self.scale_id,
            item_params=item_params,
            items=candidates,
            person_ability=person_ability,
            mean_ability=mean_ability,
            now=self.clock(),
            rng=self.rng,
            debug=self.debug,
        )

    def finish_attempt(
        self, examinee_id: ExamineeId, attempt_id: int, session_token: str
    ) -> CATState:
        """End an attempt, store its abilities and delete its progress.

        Returns
        -------
        CATState
            Final state of the attempt.

        Raises
        ------
        SessionMismatchError
            If the attempt is bound to another session token.
        """
        progress = self.load_progress(examinee_id, attempt_id)
        progress.verify_session(session_token)

        ability = progress.get_ability(self.scale_id, 0.0)
        played = progress.get_played_items()
        state = CATState(
            ability=ability,
            standard_error=standard_error(
                progress.response_fractions(), self.item_params, self.registry, ability
            ),
            items_administered=[item.item_id for item in played],
            responses=[item.fraction for item in played if item.fraction is not None],
            n_items=len(played),
            is_complete=True,
        )

        for scale_id, scale_ability in progress.get_abilities().items():
            self.parameter_store.save_person_params(
                self.context_id,
                PersonParamList([PersonParameter(examinee_id, scale_ability, scale_id)]),
            )

        progress.finish()
        progress.delete()
        logger.info(
            "Attempt %d finished: ability %.3f after %d items",
            attempt_id,
            ability,
            state.n_items,
        )
        return state

    def __repr__(self) -> str:
        return (
            f"AdaptiveEngine(context_id={self.context_id}, scale_id={self.scale_id}, "
            f"n_items={len(self.item_scales)})"
        )


__all__ = ["AdaptiveEngine", "select_runtime_params", "StopReason"]
