"""Middleware pipeline that selects the next item of an attempt.

Every stage receives the shared :class:`PreselectContext` and a ``next``
callable. A stage either changes the context and returns ``next(context)``,
or returns a terminal :class:`PreselectResult`, in which case the stages
after it never run.

Examples
--------
>>> from catkit.cat.stages import default_stages
>>> pipeline = PreselectPipeline(default_stages(settings))
>>> result = pipeline.run(context)
>>> if result.is_ok:
...     serve(result.item.item_id)
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from catkit.cat.config import QuizSettings
from catkit.cat.progress import AttemptProgress
from catkit.cat.results import StopReason
from catkit.exceptions import ExhaustedCandidatesError
from catkit.models.registry import ModelRegistry
from catkit.params.item_params import ItemParameter, ItemParamList
from catkit.scales import ScaleHierarchy
from catkit.typing import ItemId, ScaleId

logger = logging.getLogger(__name__)


@dataclass
class CandidateItem:
    """An item of the pool together with the values stages attach to it.

    Attributes
    ----------
    item_id : int
        Item identifier.
    scale_id : int
        Scale the item belongs to.
    param : ItemParameter or None
        Runtime parameters; None for items without calculated parameters.
    is_pilot : bool
        Whether the item is a pilot item.
    last_attempt_time : float or None
        When the examinee last played the item in any attempt.
    general_attempts : int
        How often the item was served over all attempts of the context.
    fisher_information : dict of int to float
        Information per scale, at the ability on that scale.
    information : float
        Information at the ability on the main scale.
    penalty : float
        Penalty for having been played recently.
    score : float
        Selection score.
    """

    item_id: ItemId
    scale_id: ScaleId
    param: ItemParameter | None = None
    is_pilot: bool = False
    last_attempt_time: float | None = None
    general_attempts: int = 0
    fisher_information: dict[ScaleId, float] = field(default_factory=dict)
    information: float = 0.0
    penalty: float = 0.0
    score: float = 0.0

    @property
    def is_calculated(self) -> bool:
        return self.param is not None and self.param.is_calculated

    @property
    def difficulty(self) -> float:
        return self.param.difficulty if self.param is not None else math.nan


@dataclass(frozen=True)
class ScaleStandardError:
    """Standard error of a scale from played items, and with all remaining ones."""

    played: float
    remaining: float


@dataclass
class PreselectContext:
    """Mutable state shared by the stages of one selection.

    Parameters
    ----------
    progress : AttemptProgress
        The attempt.
    settings : QuizSettings
        Quiz configuration of the attempt.
    registry : ModelRegistry
        Models the item parameters refer to.
    hierarchy : ScaleHierarchy
        Scale tree of the quiz.
    scale_id : int
        Main scale of the quiz.
    item_params : ItemParamList
        Runtime item parameters, possibly mixing models.
    items : list of CandidateItem
        Candidate pool, ordered by ascending difficulty.
    """

    progress: AttemptProgress
    settings: QuizSettings
    registry: ModelRegistry
    hierarchy: ScaleHierarchy
    scale_id: ScaleId
    item_params: ItemParamList
    items: list[CandidateItem]
    original_items: list[CandidateItem] | None = None
    person_ability: dict[ScaleId, float] = field(default_factory=dict)
    standard_error_per_scale: dict[ScaleId, ScaleStandardError] = field(
        default_factory=dict
    )
    mean_ability: float | None = None
    max_general_attempts: int = 0
    now: float | None = None
    rng: np.random.Generator = field(default_factory=np.random.default_rng)
    debug: bool | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.original_items is None:
            self.original_items = list(self.items)
        if self.now is None:
            self.now = self.progress.clock()

    def has(self, key: str) -> bool:
        if key in self.extras:
            return True
        return getattr(self, key, None) is not None

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __getitem__(self, key: str) -> Any:
        if key in self.extras:
            return self.extras[key]
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def __setitem__(self, key: str, value: Any) -> None:
        if hasattr(self, key) and key != "extras":
            setattr(self, key, value)
        else:
            self.extras[key] = value

    @property
    def ability(self) -> float:
        """Ability on the main scale."""
        return self.person_ability.get(self.scale_id, 0.0)

    def ability_for(self, scale_id: ScaleId) -> float:
        """Ability on a scale, falling back to its nearest estimated ancestor."""
        if scale_id in self.hierarchy:
            for s in self.hierarchy.lineage(scale_id):
                if s in self.person_ability:
                    return self.person_ability[s]
        return self.ability


@dataclass(frozen=True)
class PreselectResult:
    """Terminal outcome of a pipeline: a selected item or a stop reason."""

    item: CandidateItem | None
    reason: StopReason

    @classmethod
    def ok(cls, item: CandidateItem) -> PreselectResult:
        return cls(item, StopReason.OK)

    @classmethod
    def stop(cls, reason: StopReason) -> PreselectResult:
        if reason == StopReason.OK:
            raise ValueError("A stop needs a reason other than OK")
        return cls(None, reason)

    @property
    def is_ok(self) -> bool:
        return self.item is not None


NextStage = Callable[[PreselectContext], PreselectResult]


class PreselectStage(ABC):
    """One step of the selection pipeline."""

    @abstractmethod
    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        """Process the context.

        Parameters
        ----------
        context : PreselectContext
            Shared selection state.
        next : callable
            Continues with the remaining stages.

        Returns
        -------
        PreselectResult
            ``next(context)``, or a terminal result.
        """
        pass

    def required_context_keys(self) -> tuple[str, ...]:
        """Context entries that must be present for the stage to run."""
        return ()

    @property
    def name(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"{self.name}()"


class PreselectPipeline:
    """Ordered chain of selection stages.

    Parameters
    ----------
    stages : sequence of PreselectStage
        Stages in the order they run.
    """

    def __init__(self, stages: Sequence[PreselectStage]):
        if not stages:
            raise ValueError("A pipeline needs at least one stage")
        self.stages = list(stages)

    def run(self, context: PreselectContext) -> PreselectResult:
        """Run the stages until one of them returns a terminal result.

        A stage whose required context keys are missing ends the run with
        ``ERROR_FETCH_NEXT_ITEM``. Running out of candidates ends it with
        ``NO_REMAINING_ITEMS``.
        """
        try:
            return self._call(0, context)
        except ExhaustedCandidatesError as exc:
            logger.debug("Attempt %d: %s", context.progress.attempt_id, exc)
            return PreselectResult.stop(StopReason.NO_REMAINING_ITEMS)

    def _call(self, index: int, context: PreselectContext) -> PreselectResult:
        if index == len(self.stages):
            logger.warning(
                "Attempt %d: no stage selected an item", context.progress.attempt_id
            )
            return PreselectResult.stop(StopReason.ERROR)

        stage = self.stages[index]
        missing = [k for k in stage.required_context_keys() if not context.has(k)]
        if missing:
            logger.warning(
                "%s is missing context keys: %s", stage.name, ", ".join(missing)
            )
            return PreselectResult.stop(StopReason.ERROR_FETCH_NEXT_ITEM)

        return stage.run(context, lambda ctx: self._call(index + 1, ctx))

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        names = ", ".join(stage.name for stage in self.stages)
        return f"PreselectPipeline([{names}])"
