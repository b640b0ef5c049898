"""Result classes for tracking adaptive attempts and their outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from catkit.typing import ItemId

if TYPE_CHECKING:
    from catkit.cat.progress import ResponseOutcome


class StopReason(str, Enum):
    """Why the selection pipeline returned no item.

    ``OK`` accompanies a selected item; every other value ends the
    attempt, or pauses it in the case of ``FORCED_BREAK``.
    """

    OK = "ok"
    ERROR = "error"
    NO_REMAINING_ITEMS = "no_remaining_items"
    ERROR_FETCH_NEXT_ITEM = "error_fetch_next_item"
    REACHED_MAXIMUM_ITEMS = "reached_maximum_items"
    REACHED_TARGET_STANDARD_ERROR = "reached_target_standard_error"
    ABILITY_NOT_CHANGED = "ability_not_changed"
    EMPTY_FIRST_ITEM_LIST = "empty_first_item_list"
    NO_ITEMS = "no_items"
    EXCEEDED_MAX_ATTEMPT_TIME = "exceeded_max_attempt_time"
    FORCED_BREAK = "forced_break"

    @property
    def is_terminal(self) -> bool:
        """Whether the attempt cannot continue after this reason."""
        return self not in (StopReason.OK, StopReason.FORCED_BREAK)


@dataclass
class CATState:
    """Current state during CAT administration.

    Stopping rules are evaluated on these snapshots.

    Attributes
    ----------
    ability : float
        Current ability estimate on the attempt's main scale.
    standard_error : float
        Standard error of the current ability estimate; ``inf`` before any
        calibrated item has been answered.
    items_administered : list[int]
        Ids of the items played so far, in order.
    responses : list[float]
        Fractions of the answered items, in the same order.
    n_items : int
        Number of items administered so far.
    is_complete : bool
        Whether the attempt has reached a stopping condition.
    next_item : int | None
        Id of the next item to administer, or None if complete.
    """

    ability: float
    standard_error: float
    items_administered: list[ItemId] = field(default_factory=list)
    responses: list[float] = field(default_factory=list)
    n_items: int = 0
    is_complete: bool = False
    next_item: ItemId | None = None

    def summary(self) -> str:
        """Return a formatted summary of the attempt.

        Returns
        -------
        str
            Multi-line summary string.
        """
        n_correct = int(np.sum(np.asarray(self.responses) == 1.0))
        lines = [
            "CAT State Summary",
            "=" * 40,
            f"Ability estimate:      {self.ability:.4f}",
            f"Standard error:        {self.standard_error:.4f}",
            f"Items administered:    {self.n_items}",
            f"Complete:              {self.is_complete}",
            "",
            "Response pattern:",
            f"  Correct: {n_correct} / {len(self.responses)}",
            f"  Items:   {self.items_administered}",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CATState(ability={self.ability:.3f}, "
            f"se={self.standard_error:.3f}, "
            f"n_items={self.n_items}, "
            f"complete={self.is_complete})"
        )


@dataclass
class SelectionOutcome:
    """Answer to a request for the next item of an attempt.

    Attributes
    ----------
    item_id : int | None
        Item to show, or None if the pipeline stopped.
    reason : StopReason
        ``StopReason.OK`` when an item was selected.
    ability : float
        Ability on the main scale after folding the last response.
    n_played : int
        Items played in the attempt, including a newly selected one.
    is_pilot : bool
        Whether the selected item is a pilot item.
    response_outcome : ResponseOutcome | None
        How the response to the previous item was handled.
    """

    item_id: ItemId | None
    reason: StopReason
    ability: float = 0.0
    n_played: int = 0
    is_pilot: bool = False
    response_outcome: ResponseOutcome | None = None

    @property
    def is_stop(self) -> bool:
        return self.item_id is None

    def __repr__(self) -> str:
        return (
            f"SelectionOutcome(item_id={self.item_id}, "
            f"reason='{self.reason.value}', "
            f"ability={self.ability:.3f}, "
            f"n_played={self.n_played})"
        )
