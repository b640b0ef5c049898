"""Stages of the next-item selection pipeline."""

from __future__ import annotations

import logging
import math
from abc import abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Literal

from catkit._core import sigmoid
from catkit._runtime_config import debug_or_warn
from catkit.cat.config import QuizSettings
from catkit.cat.pipeline import (
    CandidateItem,
    NextStage,
    PreselectContext,
    PreselectResult,
    PreselectStage,
    ScaleStandardError,
)
from catkit.cat.results import CATState, StopReason
from catkit.cat.stopping import CombinedStop, StandardErrorStop, StoppingRule
from catkit.constants import ABILITY_UPDATE_THRESHOLD
from catkit.estimation.ability import AbilityEstimate, estimate_ability
from catkit.exceptions import DataIntegrityError, ExhaustedCandidatesError
from catkit.models.registry import ModelRegistry
from catkit.params.item_params import ItemParamList
from catkit.typing import ItemId, ScaleId

logger = logging.getLogger(__name__)


def standard_error(
    item_ids: Iterable[ItemId],
    item_params: ItemParamList,
    registry: ModelRegistry,
    ability: float,
) -> float:
    """Standard error ``1 / sqrt(I)`` of an ability from the answered items.

    Items without calculated parameters contribute no information. With
    no information at all the standard error is infinite.
    """
    info = 0.0
    for item_id in item_ids:
        param = item_params.get(item_id)
        if param is None or not param.is_calculated:
            continue
        info += registry.get(param.model_name).fisher_info(ability, param.params)
    return math.inf if info <= 0 else 1.0 / math.sqrt(info)


def cat_state(context: PreselectContext) -> CATState:
    """Snapshot of the attempt for the stopping rules."""
    progress = context.progress
    played = progress.get_played_items()
    return CATState(
        ability=context.ability,
        standard_error=standard_error(
            progress.response_fractions(), context.item_params, context.registry, context.ability
        ),
        items_administered=[item.item_id for item in played],
        responses=[item.fraction for item in played if item.fraction is not None],
        n_items=len(played),
    )


def _quiz_lineage(context: PreselectContext, scale_id: ScaleId) -> list[ScaleId]:
    """The scale and its ancestors up to the main scale of the quiz."""
    hierarchy = context.hierarchy
    if scale_id not in hierarchy:
        return [scale_id]
    return [
        s
        for s in hierarchy.lineage(scale_id)
        if s == context.scale_id or hierarchy.is_ancestor(context.scale_id, s)
    ]


class MaximumItemsCheck(PreselectStage):
    """Stop once the attempt holds the maximum number of items."""

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        max_items = context.settings.max_items
        if max_items is not None and context.progress.n_played >= max_items:
            logger.debug("Maximum of %d items reached", max_items)
            return PreselectResult.stop(StopReason.REACHED_MAXIMUM_ITEMS)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("progress", "settings")


class MaximumAttemptTimeCheck(PreselectStage):
    """Stop once the attempt has run longer than allowed."""

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        limit = context.settings.max_attempt_time
        start = context.progress.start_time
        if limit is not None and start is not None and context.now - start > limit:
            logger.debug("Attempt time of %gs exceeded", limit)
            return PreselectResult.stop(StopReason.EXCEEDED_MAX_ATTEMPT_TIME)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("progress", "settings", "now")


class CheckBreak(PreselectStage):
    """Enforce forced breaks.

    A running break stops the selection. A break that has ended is
    cleared and selection continues. Otherwise, if the examinee spent
    more than ``max_time_per_item`` on the last item, a break of
    ``break_duration`` seconds starts.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        progress = context.progress
        settings = context.settings

        if progress.forced_break_end is not None:
            if progress.break_completed():
                return next(context)
            return PreselectResult.stop(StopReason.FORCED_BREAK)

        last = progress.get_last_item()
        if (
            settings.max_time_per_item is None
            or last is None
            or context.now - last.attempt_time <= settings.max_time_per_item
        ):
            return next(context)

        progress.force_break(settings.break_duration)
        logger.debug(
            "Attempt %d: break of %gs forced", progress.attempt_id, settings.break_duration
        )
        return PreselectResult.stop(StopReason.FORCED_BREAK)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("progress", "settings", "now")


class UpdatePersonAbility(PreselectStage):
    """Re-estimate the ability after a new response.

    The main scale is estimated from all non-pilot responses, and each
    scale between the last item's scale and the main scale from the
    responses to its items. Estimates that do not converge are clipped
    to the quiz's ability bounds.

    If a converged main-scale ability moves by less than ``threshold``
    and the attempt already holds ``min_items`` items, the attempt stops.
    """

    def __init__(self, threshold: float = ABILITY_UPDATE_THRESHOLD):
        self.threshold = threshold

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        progress = context.progress
        last = progress.get_last_item()
        if last is None or last.is_pilot:
            return next(context)

        fractions = progress.response_fractions()
        if fractions == progress.scored_responses:
            return next(context)
        progress.scored_responses = dict(fractions)

        previous = context.ability
        updated: dict[ScaleId, AbilityEstimate] = {}
        for scale_id in self._scales_to_update(context, last.scale_id):
            estimate = self._estimate(context, scale_id, fractions)
            if estimate is not None:
                updated[scale_id] = estimate

        main = updated.get(context.scale_id)
        if main is None:
            return next(context)
        if math.isnan(main.ability):
            debug_or_warn(
                DataIntegrityError(
                    f"Ability of examinee {progress.examinee_id} is NaN; "
                    f"keeping {previous}"
                ),
                context.debug,
            )
            return next(context)

        for scale_id, estimate in updated.items():
            if not math.isnan(estimate.ability):
                progress.set_ability(estimate.ability, scale_id)
                context.person_ability[scale_id] = estimate.ability

        if (
            main.converged
            and abs(previous - main.ability) < self.threshold
            and progress.n_played >= context.settings.min_items
        ):
            logger.debug("Ability %.4f did not change", main.ability)
            return PreselectResult.stop(StopReason.ABILITY_NOT_CHANGED)
        return next(context)

    @staticmethod
    def _scales_to_update(context: PreselectContext, scale_id: ScaleId) -> list[ScaleId]:
        scales = [context.scale_id]
        scales.extend(s for s in _quiz_lineage(context, scale_id) if s != context.scale_id)
        return scales

    @staticmethod
    def _estimate(
        context: PreselectContext,
        scale_id: ScaleId,
        fractions: Mapping[ItemId, float],
    ) -> AbilityEstimate | None:
        progress = context.progress
        if scale_id != context.scale_id:
            in_scale = set(progress.played_in_scale(scale_id))
            fractions = {i: f for i, f in fractions.items() if i in in_scale}
        start = context.person_ability.get(scale_id, context.ability)
        estimate = estimate_ability(
            fractions, context.item_params, context.registry, start=start
        )
        if estimate.n_items == 0:
            return None
        if not math.isnan(estimate.ability):
            estimate.ability = context.settings.clip_ability(estimate.ability)
        return estimate

    def required_context_keys(self) -> tuple[str, ...]:
        return ("progress", "item_params", "registry")


class NoRemainingItems(PreselectStage):
    """Stop when the candidate pool is empty."""

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.items:
            return PreselectResult.stop(StopReason.NO_REMAINING_ITEMS)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items",)


class RemovePlayedItems(PreselectStage):
    """Drop items that were played, excluded or given up in this attempt."""

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        unavailable = context.progress.unavailable_items()
        if unavailable:
            context.items = [i for i in context.items if i.item_id not in unavailable]
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "progress")


class RemoveUncalculated(PreselectStage):
    """Drop items without calculated parameters, except pilot items."""

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        context.items = [i for i in context.items if i.is_calculated or i.is_pilot]
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items",)


class FilterByItemsPerScale(PreselectStage):
    """Enforce the per-scale item floor and ceiling.

    Items whose own scale reached ``max_items_per_scale`` played items
    are removed. While some scales of the pool have fewer than
    ``min_items_per_scale`` played items, only their items stay
    candidates; scales that reached the floor become active scales of
    the attempt.

    Raises
    ------
    ExhaustedCandidatesError
        If the ceiling removes every candidate.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        settings = context.settings
        progress = context.progress

        if settings.max_items_per_scale is not None:
            ceiling = settings.max_items_per_scale
            full = {
                s for s, ids in progress.played_items_by_scale().items() if len(ids) >= ceiling
            }
            if full:
                context.items = [i for i in context.items if i.scale_id not in full]
                if not context.items:
                    raise ExhaustedCandidatesError(
                        f"All scales reached the ceiling of {ceiling} items"
                    )

        floor = settings.min_items_per_scale
        if floor > 0:
            deficient = set()
            for scale_id in {i.scale_id for i in context.items}:
                if len(progress.played_in_scale(scale_id)) < floor:
                    deficient.add(scale_id)
                else:
                    progress.add_active_scale(scale_id)
            preferred = [i for i in context.items if i.scale_id in deficient]
            if preferred:
                context.items = preferred
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "progress", "settings")


class MaybeReturnPilot(PreselectStage):
    """Restrict the pool to pilot items with probability ``pilot_ratio``.

    Nothing changes if the ratio is 0, if there are no pilot items, or
    if there are only pilot items. Otherwise the pool is restricted
    either to its pilot items or to its calibrated items.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        ratio = context.settings.pilot_ratio
        if ratio == 0:
            return next(context)

        pilots = [i for i in context.items if i.is_pilot]
        if not pilots or len(pilots) == len(context.items):
            return next(context)

        if context.rng.integers(0, 101) <= ratio * 100:
            context.items = pilots
        else:
            context.items = [i for i in context.items if not i.is_pilot]
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "settings", "rng")


class FisherInformation(PreselectStage):
    """Attach the Fisher information of every calibrated item of the pool.

    Information is computed per scale of the item's lineage, at the
    ability on that scale, and at the main-scale ability for selection.
    All items of the original pool are covered, so that played items
    count towards the per-scale standard errors.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        ability = context.ability
        for item in context.original_items:
            if not item.is_calculated:
                continue
            model = context.registry.get(item.param.model_name)
            params = item.param.params
            item.fisher_information = {
                s: model.fisher_info(context.ability_for(s), params)
                for s in _quiz_lineage(context, item.scale_id)
            }
            item.information = model.fisher_info(ability, params)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("original_items", "registry")


class AddScaleStandardError(PreselectStage):
    """Compute per-scale standard errors from played and remaining items.

    For every scale, the information of the played items and of the
    most informative remaining items is summed; remaining items count
    only up to the number of items the scale may still take under
    ``max_items_per_scale``.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.items:
            return PreselectResult.stop(StopReason.NO_REMAINING_ITEMS)

        progress = context.progress
        played_ids = set(progress.played_item_ids()) - progress.pilot_items
        ceiling = context.settings.max_items_per_scale
        quiz_scales = [context.scale_id]
        if context.scale_id in context.hierarchy:
            quiz_scales.extend(context.hierarchy.descendants(context.scale_id))
        remaining_quota = {
            s: (math.inf if ceiling is None else ceiling - len(progress.played_in_scale(s)))
            for s in quiz_scales
        }

        informative = [i for i in context.original_items if i.fisher_information]
        informative.sort(
            key=lambda i: i.fisher_information.get(i.scale_id, 0.0), reverse=True
        )

        played_info: dict[ScaleId, float] = {}
        remaining_info: dict[ScaleId, float] = {}
        for item in informative:
            is_played = item.item_id in played_ids
            for scale_id, info in item.fisher_information.items():
                if scale_id not in remaining_quota:
                    continue
                if is_played:
                    played_info[scale_id] = played_info.get(scale_id, 0.0) + info
                    continue
                if remaining_quota[scale_id] <= 0:
                    continue
                remaining_quota[scale_id] -= 1
                remaining_info[scale_id] = remaining_info.get(scale_id, 0.0) + info

        for scale_id in set(played_info) | set(remaining_info):
            played = played_info.get(scale_id, 0.0)
            total = played + remaining_info.get(scale_id, 0.0)
            context.standard_error_per_scale[scale_id] = ScaleStandardError(
                played=math.inf if played == 0 else 1.0 / math.sqrt(played),
                remaining=math.inf if total == 0 else 1.0 / math.sqrt(total),
            )
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "original_items", "progress")


class FilterByStandardError(PreselectStage):
    """Exclude scales that are measured precisely enough, or never will be.

    Once a scale holds ``min_items_per_scale`` played items, its items
    are removed if its standard error is below
    ``standard_error_per_scale``, or if even all remaining items could
    not bring it below that value.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        threshold = context.settings.standard_error_per_scale
        if threshold is None:
            return next(context)

        min_items = context.settings.min_items_per_scale
        for scale_id, se in context.standard_error_per_scale.items():
            if len(context.progress.played_in_scale(scale_id)) < min_items:
                continue
            if se.played < threshold or se.remaining > threshold:
                context.items = [i for i in context.items if i.scale_id != scale_id]
                context.progress.drop_scale(scale_id)
                logger.debug("Scale %s excluded (SE %.3f)", scale_id, se.played)

        if not context.items:
            return PreselectResult.stop(StopReason.NO_REMAINING_ITEMS)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "standard_error_per_scale", "progress", "settings")


def _index_for_quantile(quantile: float, n: int) -> int:
    """Zero-based index of the first item of a quantile.

    When the quantile falls between two items the easier one is used.
    """
    index = quantile * n - 1
    if index != int(index):
        index = math.ceil(index)
    return min(max(int(index), 0), n - 1)


class FirstItemSelector(PreselectStage):
    """Choose the first item of an attempt from the difficulty order.

    ``current_ability`` leaves the choice to the later stages and
    ``mean_ability`` does the same after moving the main-scale ability
    to the mean ability of the context. The other options pick from the
    calibrated items sorted by difficulty.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.progress.is_first_item:
            return next(context)

        start = context.settings.first_item_start
        if start == "current_ability":
            return next(context)
        if start == "mean_ability":
            if context.mean_ability is not None:
                context.person_ability[context.scale_id] = context.mean_ability
            return next(context)

        pool = sorted(
            (i for i in context.items if i.is_calculated), key=lambda i: i.difficulty
        )
        if not pool:
            return PreselectResult.stop(StopReason.EMPTY_FIRST_ITEM_LIST)

        n = len(pool)
        if start == "easiest":
            index = 0
        elif start == "first_of_second_quintile":
            index = _index_for_quantile(0.2, n)
        elif start == "first_of_second_quartile":
            index = _index_for_quantile(0.25, n)
        else:
            index = max(_index_for_quantile(0.5, n) - 1, 0)
        return PreselectResult.ok(pool[index])

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "progress", "settings")


class LastTimePlayedPenalty(PreselectStage):
    """Penalize items the examinee played recently in earlier attempts.

    The penalty is the part of ``penalty_time_range`` that has not yet
    passed since the item was last played.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        time_range = context.settings.penalty_time_range
        for item in context.items:
            if item.last_attempt_time is None:
                item.penalty = 0.0
            else:
                item.penalty = max(0.0, time_range - (context.now - item.last_attempt_time))
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "settings", "now")


class MaximumInformationSelector(PreselectStage):
    """Select the item with the highest penalized information.

    The score is ``(1 - penalty / penalty_threshold) * information``.
    Ties go to the item that comes first in the pool.

    Raises
    ------
    ExhaustedCandidatesError
        If the pool is empty.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.items:
            raise ExhaustedCandidatesError("No candidate items left to select from")

        threshold = context.settings.penalty_threshold
        for item in context.items:
            item.score = (1.0 - item.penalty / threshold) * item.information

        best = max(context.items, key=lambda i: i.score)
        logger.debug(
            "Selected item %d (score %.4f, information %.4f)",
            best.item_id,
            best.score,
            best.information,
        )
        return PreselectResult.ok(best)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "settings")


class MaybeRemoveScale(PreselectStage):
    """Drop the items of excluded scales and of scales at their ceiling.

    A scale is excluded once its standard error ruled it out earlier in
    the attempt. The ceiling is ``max_items_per_scale``. Unlike
    :class:`FilterByItemsPerScale` an empty pool is left to
    :class:`NoRemainingItems`.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        progress = context.progress
        if progress.is_first_item:
            return next(context)

        removed = set(progress.excluded_scales)
        ceiling = context.settings.max_items_per_scale
        if ceiling is not None:
            removed.update(
                s for s, ids in progress.played_items_by_scale().items() if len(ids) >= ceiling
            )
        if removed:
            context.items = [i for i in context.items if i.scale_id not in removed]
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "progress", "settings")


class NumberOfGeneralAttempts(PreselectStage):
    """Record the highest exposure of the pool.

    Every candidate carries how often it was served over all attempts of
    the context. The maximum scales the exposure term of
    :class:`BalancedScoreSelector`.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        context.max_general_attempts = max(
            (i.general_attempts for i in context.items), default=0
        )
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items",)


class FilterForSubscale(PreselectStage):
    """Keep only the items of the subscale that stands out most.

    Every child scale with an ability estimate is ranked by the
    difference between its ability and its parent's ability, largest
    first for ``"highest"`` and smallest first for ``"lowest"``. The main
    scale ranks with a difference of 0. The pool is restricted to the
    items of the first ranked scale that has candidates. While every
    known ability is still the default 0 the pool is left unchanged.

    Parameters
    ----------
    mode : {"highest", "lowest"}
        Which end of the ranking wins.
    """

    def __init__(self, mode: Literal["highest", "lowest"] = "highest"):
        if mode not in ("highest", "lowest"):
            raise ValueError(
                f"Invalid mode '{mode}'. Must be one of: 'highest', 'lowest'"
            )
        self.mode = mode

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        abilities = context.person_ability
        if all(a == 0.0 for a in abilities.values()):
            return next(context)

        differences = {context.scale_id: 0.0}
        for scale_id, ability in abilities.items():
            if scale_id not in context.hierarchy:
                continue
            for child in context.hierarchy.children(scale_id):
                if child in abilities:
                    differences[child] = abilities[child] - ability

        ranked = sorted(
            differences, key=differences.__getitem__, reverse=self.mode == "highest"
        )
        for scale_id in ranked:
            items = [i for i in context.items if i.scale_id == scale_id]
            if items:
                logger.debug("Restricting pool to scale %s", scale_id)
                context.items = items
                break
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "person_ability")

    def __repr__(self) -> str:
        return f"FilterForSubscale(mode={self.mode!r})"


class ScaleScoreSelector(PreselectStage):
    """Select the item with the highest score over the scales it measures.

    For every non-excluded scale between the item's scale and the main
    scale, the item's information on that scale is multiplied by

    * the process term ``max(0.1, I) / max(1, n)``, where ``I`` is the
      test information of the ``n`` answered items of the scale at the
      scale ability,
    * a scale term of ``I`` and the distance of the scale ability to the
      main ability,
    * an item term of ``I``, the mean fraction of the scale's responses
      (0.5 without responses), and the distance of the item's difficulty
      to the scale ability.

    An item's score is its best scale score, and ties go to the lower
    item id. Candidates without information, such as pilot items, are
    only chosen, in pool order, when no candidate has a score.

    Raises
    ------
    ExhaustedCandidatesError
        If the pool is empty.
    """

    @abstractmethod
    def scale_term(self, test_info: float, ability_difference: float) -> float:
        pass

    @abstractmethod
    def item_term(
        self,
        test_info: float,
        fraction: float,
        difficulty: float,
        scale_ability: float,
        n_answered: int,
        min_items_per_scale: int,
    ) -> float:
        pass

    def scale_ability(self, context: PreselectContext, scale_id: ScaleId) -> float | None:
        if scale_id == context.scale_id:
            return context.ability
        return context.person_ability.get(scale_id)

    def adjust(self, context: PreselectContext, item: CandidateItem, score: float) -> float:
        return score

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.items:
            raise ExhaustedCandidatesError("No candidate items left to select from")

        fractions = context.progress.response_fractions()
        stats: dict[ScaleId, tuple[float, int, float]] = {}
        scored = []
        for item in context.items:
            best = None
            for scale_id in _quiz_lineage(context, item.scale_id):
                info = item.fisher_information.get(scale_id)
                if info is None or context.progress.is_excluded_scale(scale_id):
                    continue
                ability = self.scale_ability(context, scale_id)
                if ability is None:
                    continue
                if scale_id not in stats:
                    stats[scale_id] = self._scale_stats(context, scale_id, ability, fractions)
                test_info, n_answered, fraction = stats[scale_id]

                score = (
                    info
                    * max(0.1, test_info)
                    / max(1, n_answered)
                    * self.scale_term(test_info, ability - context.ability)
                    * self.item_term(
                        test_info,
                        fraction,
                        item.difficulty,
                        ability,
                        n_answered,
                        context.settings.min_items_per_scale,
                    )
                )
                score = self.adjust(context, item, score)
                if best is None or score > best:
                    best = score
            if best is not None:
                item.score = best
                scored.append(item)

        if not scored:
            return PreselectResult.ok(context.items[0])
        selected = min(scored, key=lambda i: (-i.score, i.item_id))
        logger.debug("Selected item %d (score %.4g)", selected.item_id, selected.score)
        return PreselectResult.ok(selected)

    @staticmethod
    def _scale_stats(
        context: PreselectContext,
        scale_id: ScaleId,
        ability: float,
        fractions: Mapping[ItemId, float],
    ) -> tuple[float, int, float]:
        answered = [i for i in context.progress.played_in_scale(scale_id) if i in fractions]
        se = standard_error(answered, context.item_params, context.registry, ability)
        test_info = 0.0 if math.isinf(se) else 1.0 / se**2
        fraction = (
            sum(fractions[i] for i in answered) / len(answered) if answered else 0.5
        )
        return test_info, len(answered), fraction

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "progress", "item_params", "registry", "settings")


def _item_fit(
    test_info: float, fraction: float, difficulty: float, ability: float
) -> float:
    """Weight of items near the ability, shifted by the share of correct responses."""
    return sigmoid(-test_info * 2 * (0.5 - fraction) * (difficulty - ability))


class DeficitScoreSelector(ScaleScoreSelector):
    """Prefer items of scales whose ability lies below the main ability.

    The scale term ``1 / (1 + exp(I * d))`` grows as the ability
    difference ``d`` becomes negative. The item term is raised to the
    number of answered items of the scale, so that it sharpens as the
    scale is measured.
    """

    def scale_term(self, test_info: float, ability_difference: float) -> float:
        return sigmoid(-test_info * ability_difference)

    def item_term(
        self,
        test_info: float,
        fraction: float,
        difficulty: float,
        scale_ability: float,
        n_answered: int,
        min_items_per_scale: int,
    ) -> float:
        return _item_fit(test_info, fraction, difficulty, scale_ability) ** n_answered


class InferAllSubscalesSelector(ScaleScoreSelector):
    """Spread the items over all subscales.

    Every scale weighs the same, and the item term only sharpens once a
    scale holds more than ``min_items_per_scale`` answered items. Scales
    without an estimate use the main ability. Scores are reduced by the
    recency penalty as in :class:`MaximumInformationSelector`.
    """

    def scale_term(self, test_info: float, ability_difference: float) -> float:
        return 1.0

    def item_term(
        self,
        test_info: float,
        fraction: float,
        difficulty: float,
        scale_ability: float,
        n_answered: int,
        min_items_per_scale: int,
    ) -> float:
        exponent = max(1, n_answered - min_items_per_scale + 1)
        return _item_fit(test_info, fraction, difficulty, scale_ability) ** exponent

    def scale_ability(self, context: PreselectContext, scale_id: ScaleId) -> float | None:
        return context.person_ability.get(scale_id, context.ability)

    def adjust(self, context: PreselectContext, item: CandidateItem, score: float) -> float:
        return score * (1.0 - item.penalty / context.settings.penalty_threshold)


class BalancedScoreSelector(PreselectStage):
    """Select the least exposed item.

    The score is ``(1 - n / n_max) * (1 - penalty / penalty_threshold)``,
    where ``n`` is how often the item was served over all attempts and
    ``n_max`` the highest such count of the pool. Exposure is ignored
    while no candidate was ever served. Ties go to the item that comes
    first in the pool.

    Raises
    ------
    ExhaustedCandidatesError
        If the pool is empty.
    """

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if not context.items:
            raise ExhaustedCandidatesError("No candidate items left to select from")

        n_max = context.max_general_attempts
        threshold = context.settings.penalty_threshold
        for item in context.items:
            exposure = 1.0 - item.general_attempts / n_max if n_max > 0 else 1.0
            item.score = exposure * (1.0 - item.penalty / threshold)

        best = max(context.items, key=lambda i: i.score)
        logger.debug(
            "Selected item %d (score %.4f, served %d times)",
            best.item_id,
            best.score,
            best.general_attempts,
        )
        return PreselectResult.ok(best)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("items", "settings")


class StoppingRuleCheck(PreselectStage):
    """Stop when a stopping rule is met by the current attempt state.

    Parameters
    ----------
    rule : StoppingRule
        Rule evaluated on a :class:`CATState` snapshot.
    """

    def __init__(self, rule: StoppingRule):
        self.rule = rule

    def run(self, context: PreselectContext, next: NextStage) -> PreselectResult:
        if self.rule.should_stop(cat_state(context)):
            logger.debug("Stopping rule met: %s", self.rule.get_reason())
            return PreselectResult.stop(self.rule.stop_reason)
        return next(context)

    def required_context_keys(self) -> tuple[str, ...]:
        return ("progress", "item_params", "registry")

    def __repr__(self) -> str:
        return f"StoppingRuleCheck({type(self.rule).__name__})"


def _opening_stages(settings: QuizSettings) -> list[PreselectStage]:
    stages: list[PreselectStage] = [
        MaximumItemsCheck(),
        MaximumAttemptTimeCheck(),
        CheckBreak(),
        UpdatePersonAbility(),
    ]
    if settings.standard_error_target is not None:
        rule = CombinedStop(
            [StandardErrorStop(settings.standard_error_target)],
            min_items=settings.min_items,
        )
        stages.append(StoppingRuleCheck(rule))
    return stages


def _scale_standard_error_stages(settings: QuizSettings) -> list[PreselectStage]:
    if settings.standard_error_per_scale is None:
        return []
    return [AddScaleStandardError(), FilterByStandardError()]


def default_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "fastest" strategy.

    Parameters
    ----------
    settings : QuizSettings
        Settings that decide which optional stages are included.

    Returns
    -------
    list of PreselectStage
    """
    return [
        *_opening_stages(settings),
        RemovePlayedItems(),
        NoRemainingItems(),
        FilterByItemsPerScale(),
        FirstItemSelector(),
        LastTimePlayedPenalty(),
        MaybeReturnPilot(),
        RemoveUncalculated(),
        NoRemainingItems(),
        FisherInformation(),
        *_scale_standard_error_stages(settings),
        MaximumInformationSelector(),
    ]


def classical_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "classicalcat" strategy: plain maximum information."""
    return [
        *_opening_stages(settings),
        RemovePlayedItems(),
        NoRemainingItems(),
        MaybeRemoveScale(),
        MaybeReturnPilot(),
        RemoveUncalculated(),
        NoRemainingItems(),
        FisherInformation(),
        *_scale_standard_error_stages(settings),
        MaximumInformationSelector(),
    ]


def infer_all_subscales_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "inferallsubscales" strategy."""
    return [
        *_opening_stages(settings),
        RemovePlayedItems(),
        NoRemainingItems(),
        FilterByItemsPerScale(),
        FirstItemSelector(),
        LastTimePlayedPenalty(),
        MaybeRemoveScale(),
        MaybeReturnPilot(),
        RemoveUncalculated(),
        NoRemainingItems(),
        FisherInformation(),
        *_scale_standard_error_stages(settings),
        InferAllSubscalesSelector(),
    ]


def _subscale_stages(
    settings: QuizSettings, mode: Literal["highest", "lowest"], selector: PreselectStage
) -> list[PreselectStage]:
    return [
        *_opening_stages(settings),
        RemovePlayedItems(),
        NoRemainingItems(),
        FirstItemSelector(),
        LastTimePlayedPenalty(),
        MaybeRemoveScale(),
        MaybeReturnPilot(),
        RemoveUncalculated(),
        NoRemainingItems(),
        FisherInformation(),
        *_scale_standard_error_stages(settings),
        FilterForSubscale(mode),
        selector,
    ]


def greatest_strength_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "infergreateststrength" strategy.

    Items come from the subscale whose ability lies furthest above its
    parent's, selected by maximum information.
    """
    return _subscale_stages(settings, "highest", MaximumInformationSelector())


def lowest_skill_gap_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "inferlowestskillgap" strategy.

    Items come from the subscale whose ability lies furthest below its
    parent's, selected by :class:`DeficitScoreSelector`.
    """
    return _subscale_stages(settings, "lowest", DeficitScoreSelector())


def balanced_stages(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the "balanced" strategy: spread exposure over the pool."""
    return [
        *_opening_stages(settings),
        RemovePlayedItems(),
        NoRemainingItems(),
        MaybeRemoveScale(),
        NoRemainingItems(),
        LastTimePlayedPenalty(),
        NumberOfGeneralAttempts(),
        MaybeReturnPilot(),
        FisherInformation(),
        BalancedScoreSelector(),
    ]


STRATEGY_STAGES: dict[str, Callable[[QuizSettings], list[PreselectStage]]] = {
    "fastest": default_stages,
    "classicalcat": classical_stages,
    "inferallsubscales": infer_all_subscales_stages,
    "infergreateststrength": greatest_strength_stages,
    "inferlowestskillgap": lowest_skill_gap_stages,
    "balanced": balanced_stages,
}


def stages_for(settings: QuizSettings) -> list[PreselectStage]:
    """Stages of the strategy named by ``settings.strategy_id``."""
    return STRATEGY_STAGES[settings.strategy_id](settings)


def build_candidates(
    item_scales: Mapping[ItemId, ScaleId],
    item_params: ItemParamList,
    pilot_items: Iterable[ItemId] = (),
    last_attempt_times: Mapping[ItemId, float] | None = None,
    play_counts: Mapping[ItemId, int] | None = None,
) -> list[CandidateItem]:
    """Candidate pool ordered by ascending difficulty.

    Items without calculated parameters come last, in id order.
    """
    pilots = set(pilot_items)
    times = last_attempt_times or {}
    counts = play_counts or {}
    items = []
    for item_id, scale_id in item_scales.items():
        param = item_params.get(item_id)
        if param is not None and not param.is_calculated:
            param = None
        items.append(
            CandidateItem(
                item_id=item_id,
                scale_id=scale_id,
                param=param,
                is_pilot=item_id in pilots,
                last_attempt_time=times.get(item_id),
                general_attempts=counts.get(item_id, 0),
            )
        )
    items.sort(
        key=lambda i: (
            not i.is_calculated,
            i.difficulty if i.is_calculated else 0.0,
            i.item_id,
        )
    )
    return items

