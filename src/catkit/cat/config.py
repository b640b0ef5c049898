"""Quiz configuration captured when an attempt starts."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields
from typing import Any, get_args

from catkit.constants import RUNTIME_ABILITY_BOUNDS
from catkit.exceptions import ConfigurationError
from catkit.typing import FirstItemStart

STRATEGIES = (
    "fastest",
    "classicalcat",
    "inferallsubscales",
    "infergreateststrength",
    "inferlowestskillgap",
    "balanced",
)
"""Known item selection strategies."""


@dataclass(frozen=True)
class QuizSettings:
    """Immutable snapshot of the settings of an adaptive quiz.

    A snapshot is stored with every attempt, so that changing the quiz
    configuration never affects attempts that are already running.

    Parameters
    ----------
    max_items : int or None
        Maximum number of items per attempt; None for no limit.
    min_items : int
        Items an attempt must contain before an unchanged ability or a
        reached standard error may end it.
    max_items_per_scale : int or None
        Maximum number of items per (sub)scale; None for no limit.
    min_items_per_scale : int
        Items a scale must contain before it can be excluded because of
        its standard error.
    standard_error_target : float or None
        Stop once the standard error on the main scale is at most this
        value.
    standard_error_per_scale : float or None
        Exclude the items of a scale once its standard error is below this
        value, or once it can no longer get below it.
    pilot_ratio : float
        Probability of serving a pilot item when both pilot and
        calibrated items are available.
    break_duration : float
        Length of a forced break in seconds.
    max_time_per_item : float or None
        Seconds an examinee may spend on an item before a break is forced.
    max_attempt_time : float or None
        Seconds after which the attempt is stopped.
    penalty_time_range : float
        Seconds after which an item played in an earlier attempt carries
        no penalty anymore.
    penalty_threshold : float
        Penalty at which the selection score of an item drops to zero.
    first_item_start : str
        Where the first item of an attempt is taken from.
    strategy_id : str
        Item selection strategy.
    model_override : str or None
        Use only this model's item parameters at runtime.
    ability_bounds : tuple of float
        Range abilities are clipped to during an attempt.
    """

    max_items: int | None = None
    min_items: int = 0
    max_items_per_scale: int | None = None
    min_items_per_scale: int = 0
    standard_error_target: float | None = None
    standard_error_per_scale: float | None = None
    pilot_ratio: float = 0.0
    break_duration: float = 300.0
    max_time_per_item: float | None = None
    max_attempt_time: float | None = None
    penalty_time_range: float = 0.0
    penalty_threshold: float = 1.0
    first_item_start: FirstItemStart = "current_ability"
    strategy_id: str = "fastest"
    model_override: str | None = None
    ability_bounds: tuple[float, float] = RUNTIME_ABILITY_BOUNDS

    def __post_init__(self) -> None:
        if self.max_items is not None and self.max_items < 1:
            raise ConfigurationError("max_items must be at least 1")
        if self.min_items < 0:
            raise ConfigurationError("min_items must be non-negative")
        if self.max_items is not None and self.min_items > self.max_items:
            raise ConfigurationError("min_items must not exceed max_items")
        if self.max_items_per_scale is not None and self.max_items_per_scale < 1:
            raise ConfigurationError("max_items_per_scale must be at least 1")
        if self.min_items_per_scale < 0:
            raise ConfigurationError("min_items_per_scale must be non-negative")
        for name in ("standard_error_target", "standard_error_per_scale"):
            value = getattr(self, name)
            if value is not None and not value > 0:
                raise ConfigurationError(f"{name} must be positive")
        if not 0.0 <= self.pilot_ratio <= 1.0:
            raise ConfigurationError("pilot_ratio must be in [0, 1]")
        if self.break_duration < 0:
            raise ConfigurationError("break_duration must be non-negative")
        for name in ("max_time_per_item", "max_attempt_time"):
            value = getattr(self, name)
            if value is not None and not value > 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.penalty_time_range < 0:
            raise ConfigurationError("penalty_time_range must be non-negative")
        if not self.penalty_threshold > 0:
            raise ConfigurationError("penalty_threshold must be positive")
        if self.first_item_start not in get_args(FirstItemStart):
            raise ConfigurationError(
                f"Unknown first item start '{self.first_item_start}'. "
                f"Valid options: {', '.join(get_args(FirstItemStart))}"
            )
        if self.strategy_id not in STRATEGIES:
            raise ConfigurationError(
                f"Unknown strategy '{self.strategy_id}'. "
                f"Valid options: {', '.join(STRATEGIES)}"
            )
        lo, hi = self.ability_bounds
        if not (math.isfinite(lo) and math.isfinite(hi) and lo < hi):
            raise ConfigurationError("ability_bounds must be finite with lo < hi")

    def clip_ability(self, ability: float) -> float:
        """Clip an ability into ``ability_bounds``."""
        lo, hi = self.ability_bounds
        return float(min(max(ability, lo), hi))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ability_bounds"] = list(self.ability_bounds)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuizSettings:
        """Build settings from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "ability_bounds" in kwargs:
            kwargs["ability_bounds"] = tuple(kwargs["ability_bounds"])
        return cls(**kwargs)
