"""Adaptive runtime for live quiz attempts.

This module provides:
- Attempt progress with durable snapshots and a volatile cache mirror
- A middleware pipeline of selection stages
- Stopping rules (standard error target, maximum items)
- The adaptive engine serving the next item of an attempt

Examples
--------
Serving an attempt:

>>> from catkit.cat import AdaptiveEngine, QuizSettings
>>> settings = QuizSettings(max_items=20, standard_error_target=0.3)
>>> engine = AdaptiveEngine(
...     context_id, scale_id, item_scales, params, attempts, cache, settings
... )
>>> outcome = engine.serve_next_item(examinee_id, attempt_id, token)
>>> while not outcome.is_stop:
...     fraction = present(outcome.item_id)  # 0.0 .. 1.0
...     outcome = engine.serve_next_item(
...         examinee_id, attempt_id, token,
...         recorded_responses={outcome.item_id: fraction},
...     )
>>> print(engine.finish_attempt(examinee_id, attempt_id, token).summary())

Custom pipeline:

>>> from catkit.cat import PreselectPipeline
>>> from catkit.cat.stages import MaximumItemsCheck, MaximumInformationSelector
>>> engine = AdaptiveEngine(
...     context_id, scale_id, item_scales, params, attempts, cache,
...     stages=[MaximumItemsCheck(), MaximumInformationSelector()],
... )
"""

from catkit.cat.config import STRATEGIES, QuizSettings
from catkit.cat.engine import AdaptiveEngine, select_runtime_params
from catkit.cat.pipeline import (
    CandidateItem,
    PreselectContext,
    PreselectPipeline,
    PreselectResult,
    PreselectStage,
    ScaleStandardError,
)
from catkit.cat.progress import (
    AttemptProgress,
    AttemptState,
    PlayedItem,
    ResponseOutcome,
)
from catkit.cat.results import CATState, SelectionOutcome, StopReason
from catkit.cat.stages import build_candidates, default_stages, stages_for
from catkit.cat.stopping import CombinedStop, StandardErrorStop, StoppingRule

__all__ = [
    # Engine
    "AdaptiveEngine",
    "select_runtime_params",
    "QuizSettings",
    "STRATEGIES",
    # Results
    "CATState",
    "SelectionOutcome",
    "StopReason",
    # Progress
    "AttemptProgress",
    "AttemptState",
    "PlayedItem",
    "ResponseOutcome",
    # Pipeline
    "CandidateItem",
    "PreselectContext",
    "PreselectPipeline",
    "PreselectResult",
    "PreselectStage",
    "ScaleStandardError",
    "build_candidates",
    "default_stages",
    "stages_for",
    # Stopping rules
    "StoppingRule",
    "StandardErrorStop",
    "CombinedStop",
]
