"""Per-attempt state of an adaptive quiz."""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from catkit.cat.config import QuizSettings
from catkit.constants import CACHE_KEY_TEMPLATE
from catkit.exceptions import DataIntegrityError, SessionMismatchError
from catkit.storage.base import AttemptStore, ProgressCache
from catkit.typing import ExamineeId, ItemId, ScaleId

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class AttemptState(str, Enum):
    """Lifecycle of an attempt."""

    NEW = "new"
    AWAITING_RESPONSE = "awaiting_response"
    HAS_NEW_RESPONSE = "has_new_response"
    FINISHED = "finished"


class ResponseOutcome(str, Enum):
    """How the response to the previously served item was handled."""

    NO_LAST_ITEM = "no_last_item"
    ALREADY_RECORDED = "already_recorded"
    NEW_RESPONSE = "new_response"
    ABANDONED = "abandoned"
    ROLLED_BACK = "rolled_back"


@dataclass
class PlayedItem:
    """An item served during the attempt.

    Attributes
    ----------
    item_id : int
        Item identifier.
    scale_id : int
        Scale the item belongs to.
    ancestor_scale_ids : tuple of int
        Ancestors of ``scale_id``, nearest first.
    fisher_information : float
        Information of the item at the ability it was selected for.
    attempt_time : float
        When the item was served.
    is_pilot : bool
        Whether the item is a pilot item.
    fraction : float or None
        Response once it is known.
    """

    item_id: ItemId
    scale_id: ScaleId
    ancestor_scale_ids: tuple[ScaleId, ...] = ()
    fisher_information: float = 0.0
    attempt_time: float = 0.0
    is_pilot: bool = False
    fraction: float | None = None

    @property
    def scale_ids(self) -> tuple[ScaleId, ...]:
        """Own scale followed by its ancestors."""
        return (self.scale_id, *self.ancestor_scale_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "scale_id": self.scale_id,
            "ancestor_scale_ids": list(self.ancestor_scale_ids),
            "fisher_information": self.fisher_information,
            "attempt_time": self.attempt_time,
            "is_pilot": self.is_pilot,
            "fraction": self.fraction,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlayedItem:
        fraction = data.get("fraction")
        return cls(
            item_id=int(data["item_id"]),
            scale_id=int(data["scale_id"]),
            ancestor_scale_ids=tuple(int(s) for s in data.get("ancestor_scale_ids", ())),
            fisher_information=float(data.get("fisher_information", 0.0)),
            attempt_time=float(data.get("attempt_time", 0.0)),
            is_pilot=bool(data.get("is_pilot", False)),
            fraction=None if fraction is None else float(fraction),
        )


@dataclass
class AttemptProgress:
    """State of one attempt, mutated after every item served or answered.

    The per-scale index of played items is derived from the flat list:
    every item is listed under its own scale and each of its ancestors.
    It is rebuilt after every change to the flat list.

    Breaks are detected lazily. :meth:`force_break` only records an end
    time, and reading the break state after that time clears it.

    Parameters
    ----------
    attempt_id, examinee_id, context_id : int
        Identity of the attempt.
    settings : QuizSettings
        Quiz configuration captured when the attempt started.
    component : str
        Name of the component that owns the attempt.
    clock : callable
        Source of the current time in seconds.
    """

    attempt_id: int
    examinee_id: ExamineeId
    context_id: int
    settings: QuizSettings = field(default_factory=QuizSettings)
    component: str = ""
    state: AttemptState = AttemptState.NEW
    session_token: str | None = None
    start_time: float | None = None
    forced_break_end: float | None = None
    abilities: dict[ScaleId, float] = field(default_factory=dict)
    active_scales: set[ScaleId] = field(default_factory=set)
    excluded_scales: set[ScaleId] = field(default_factory=set)
    responses: dict[ItemId, dict[str, float]] = field(default_factory=dict)
    scored_responses: dict[ItemId, float] = field(default_factory=dict)
    pilot_items: set[ItemId] = field(default_factory=set)
    excluded_items: set[ItemId] = field(default_factory=set)
    given_up_items: set[ItemId] = field(default_factory=set)
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)
    _played: dict[ItemId, PlayedItem] = field(default_factory=dict, repr=False)
    _by_scale: dict[ScaleId, list[ItemId]] = field(default_factory=dict, repr=False)
    _last_item_id: ItemId | None = field(default=None, repr=False)
    _store: AttemptStore | None = field(default=None, repr=False, compare=False)
    _cache: ProgressCache | None = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.start_time is None:
            self.start_time = self.clock()
        self._rebuild_scale_index()

    # Persistence

    @classmethod
    def load(
        cls,
        attempt_id: int,
        examinee_id: ExamineeId,
        context_id: int,
        store: AttemptStore,
        cache: ProgressCache,
        settings: QuizSettings | None = None,
        clock: Callable[[], float] = time.time,
        component: str = "",
    ) -> AttemptProgress:
        """Load an attempt from the cache, then the store, or start a new one.

        ``settings`` only applies to new attempts; a stored attempt keeps
        the settings it was started with.

        Raises
        ------
        DataIntegrityError
            If the stored snapshot is malformed or belongs to another
            examinee.
        """
        key = cls.cache_key(examinee_id, attempt_id)
        snapshot = cache.get(key)
        source = "cache"
        if snapshot is None:
            snapshot = store.load(attempt_id)
            source = "store"

        if snapshot is None:
            progress = cls(
                attempt_id=attempt_id,
                examinee_id=examinee_id,
                context_id=context_id,
                settings=settings or QuizSettings(),
                component=component,
                clock=clock,
            )
            logger.debug("Attempt %d: new progress", attempt_id)
        else:
            progress = cls.from_dict(snapshot, clock=clock)
            if progress.examinee_id != examinee_id:
                raise DataIntegrityError(
                    f"Attempt {attempt_id} belongs to examinee {progress.examinee_id}, "
                    f"not {examinee_id}"
                )
            logger.debug("Attempt %d: progress loaded from %s", attempt_id, source)

        progress._store = store
        progress._cache = cache
        return progress

    @staticmethod
    def cache_key(examinee_id: ExamineeId, attempt_id: int) -> str:
        return CACHE_KEY_TEMPLATE.format(examinee_id=examinee_id, attempt_id=attempt_id)

    def save(self) -> None:
        """Write the snapshot to the store and mirror it in the cache."""
        store, cache = self._require_backends()
        snapshot = self.to_dict()
        store.save(self.attempt_id, snapshot)
        cache.set(self.cache_key(self.examinee_id, self.attempt_id), snapshot)

    def delete(self) -> None:
        store, cache = self._require_backends()
        cache.delete(self.cache_key(self.examinee_id, self.attempt_id))
        store.delete(self.attempt_id)

    def bind(self, store: AttemptStore, cache: ProgressCache) -> None:
        """Attach the backends used by :meth:`save` and :meth:`delete`."""
        self._store = store
        self._cache = cache

    def _require_backends(self) -> tuple[AttemptStore, ProgressCache]:
        if self._store is None or self._cache is None:
            raise RuntimeError("Progress is not bound to a store; use bind() or load()")
        return self._store, self._cache

    # Played items

    @property
    def n_played(self) -> int:
        return len(self._played)

    @property
    def is_first_item(self) -> bool:
        return not self._played

    def get_played_items(self) -> list[PlayedItem]:
        return list(self._played.values())

    def played_item_ids(self) -> list[ItemId]:
        return list(self._played)

    def played_items_by_scale(self) -> dict[ScaleId, list[ItemId]]:
        """Played item ids under every scale and each of its ancestors."""
        return {s: list(ids) for s, ids in self._by_scale.items()}

    def played_in_scale(self, scale_id: ScaleId) -> list[ItemId]:
        return list(self._by_scale.get(scale_id, ()))

    def get_last_item(self) -> PlayedItem | None:
        if self._last_item_id is None:
            return None
        return self._played.get(self._last_item_id)

    def add_played_item(self, item: PlayedItem) -> None:
        """Record a served item, which becomes the last item."""
        if self.state == AttemptState.FINISHED:
            raise RuntimeError(f"Attempt {self.attempt_id} is finished")
        if not item.attempt_time:
            item.attempt_time = self.clock()
        self._played[item.item_id] = item
        if item.is_pilot:
            self.pilot_items.add(item.item_id)
        self._last_item_id = item.item_id
        self._rebuild_scale_index()
        self.state = AttemptState.AWAITING_RESPONSE

    def remove_played_item(self, item_id: ItemId) -> PlayedItem | None:
        """Undo serving an item.

        The item leaves the flat list and, through the rebuild, every
        per-scale list. The previous item becomes the last item again.
        """
        item = self._played.pop(item_id, None)
        if item is None:
            return None
        self.pilot_items.discard(item_id)
        self.responses.pop(item_id, None)
        if self._last_item_id == item_id:
            self._last_item_id = next(reversed(self._played), None)
        self._rebuild_scale_index()
        return item

    def _rebuild_scale_index(self) -> None:
        by_scale: dict[ScaleId, list[ItemId]] = {}
        for item in self._played.values():
            for scale_id in item.scale_ids:
                by_scale.setdefault(scale_id, []).append(item.item_id)
        self._by_scale = by_scale

    def check_last_response(
        self,
        recorded: Mapping[ItemId, Any],
        abandoned: bool = False,
    ) -> ResponseOutcome:
        """Fold the response to the last served item into the attempt.

        Parameters
        ----------
        recorded : mapping
            Responses recorded for the attempt, ``{item_id: fraction}`` or
            ``{item_id: {"fraction": fraction}}``.
        abandoned : bool
            Whether the examinee left the last item without answering.

        Returns
        -------
        ResponseOutcome
            ``NEW_RESPONSE`` if a recorded response was folded in,
            ``ABANDONED`` if the item was scored as failed,
            ``ROLLED_BACK`` if the item was neither answered nor abandoned
            (a reload) and has been removed from the played items.
        """
        last = self.get_last_item()
        if last is None:
            return ResponseOutcome.NO_LAST_ITEM
        if last.item_id in self.responses:
            return ResponseOutcome.ALREADY_RECORDED

        if last.item_id in recorded:
            fraction = _fraction_of(recorded[last.item_id])
            self._fold(last, fraction)
            logger.debug(
                "Attempt %d: response %.3f to item %d",
                self.attempt_id,
                fraction,
                last.item_id,
            )
            return ResponseOutcome.NEW_RESPONSE

        if abandoned:
            self._fold(last, 0.0)
            self.given_up_items.add(last.item_id)
            logger.debug("Attempt %d: item %d abandoned", self.attempt_id, last.item_id)
            return ResponseOutcome.ABANDONED

        self.remove_played_item(last.item_id)
        self.state = (
            AttemptState.HAS_NEW_RESPONSE if self._played else AttemptState.NEW
        )
        logger.debug("Attempt %d: item %d rolled back", self.attempt_id, last.item_id)
        return ResponseOutcome.ROLLED_BACK

    def _fold(self, item: PlayedItem, fraction: float) -> None:
        item.fraction = fraction
        self.responses[item.item_id] = {"fraction": fraction}
        self.state = AttemptState.HAS_NEW_RESPONSE

    def response_fractions(self, include_pilots: bool = False) -> dict[ItemId, float]:
        """Fractions of the answered items."""
        return {
            item_id: float(r["fraction"])
            for item_id, r in self.responses.items()
            if include_pilots or item_id not in self.pilot_items
        }

    # Breaks

    def force_break(self, duration: float) -> None:
        self.forced_break_end = self.clock() + duration

    def break_completed(self) -> bool:
        """True once, when a forced break has ended; the break is then cleared."""
        if self.forced_break_end is None:
            return False
        if self.forced_break_end > self.clock():
            return False
        self.forced_break_end = None
        return True

    def has_break(self) -> bool:
        """Whether a forced break is running; an expired break is cleared."""
        if self.forced_break_end is None:
            return False
        if self.forced_break_end <= self.clock():
            self.forced_break_end = None
            return False
        return True

    # Abilities and scales

    def set_ability(self, ability: float, scale_id: ScaleId) -> None:
        if not math.isfinite(ability):
            raise ValueError(f"Ability for scale {scale_id} must be finite, got {ability}")
        self.abilities[scale_id] = float(ability)

    def get_ability(self, scale_id: ScaleId, default: float = 0.0) -> float:
        return self.abilities.get(scale_id, default)

    def get_abilities(self) -> dict[ScaleId, float]:
        return dict(self.abilities)

    def add_active_scale(self, scale_id: ScaleId) -> None:
        self.active_scales.add(scale_id)

    def drop_scale(self, scale_id: ScaleId) -> None:
        """Deactivate a scale and exclude its items from the rest of the attempt."""
        self.active_scales.discard(scale_id)
        self.excluded_scales.add(scale_id)

    def is_excluded_scale(self, scale_id: ScaleId) -> bool:
        return scale_id in self.excluded_scales

    def is_active_scale(self, scale_id: ScaleId) -> bool:
        return scale_id in self.active_scales

    # Item sets

    def exclude_item(self, item_id: ItemId) -> None:
        self.excluded_items.add(item_id)

    def mark_pilot(self, item_id: ItemId) -> None:
        self.pilot_items.add(item_id)
        if item_id in self._played:
            self._played[item_id].is_pilot = True

    def played_pilot_items(self) -> list[PlayedItem]:
        return [item for item in self._played.values() if item.is_pilot]

    def unavailable_items(self) -> set[ItemId]:
        """Items that must not be served again in this attempt."""
        return set(self._played) | self.excluded_items | self.given_up_items

    # Session

    def verify_session(self, token: str | None) -> None:
        """Adopt ``token`` for a new attempt or check it against the stored one.

        Raises
        ------
        SessionMismatchError
            If the attempt is bound to a different token.
        """
        if self.session_token is None:
            self.session_token = token
            return
        if token != self.session_token:
            raise SessionMismatchError(self.attempt_id, self.session_token, token)

    def finish(self) -> None:
        self.state = AttemptState.FINISHED

    # Snapshot

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable snapshot of the attempt."""
        return {
            "version": SNAPSHOT_VERSION,
            "attempt_id": self.attempt_id,
            "examinee_id": self.examinee_id,
            "context_id": self.context_id,
            "component": self.component,
            "state": self.state.value,
            "session_token": self.session_token,
            "start_time": self.start_time,
            "forced_break_end": self.forced_break_end,
            "settings": self.settings.to_dict(),
            "played_items": [item.to_dict() for item in self._played.values()],
            "last_item_id": self._last_item_id,
            "abilities": [[s, a] for s, a in self.abilities.items()],
            "active_scales": sorted(self.active_scales),
            "excluded_scales": sorted(self.excluded_scales),
            "responses": [[i, r["fraction"]] for i, r in self.responses.items()],
            "scored_responses": [[i, f] for i, f in self.scored_responses.items()],
            "pilot_items": sorted(self.pilot_items),
            "excluded_items": sorted(self.excluded_items),
            "given_up_items": sorted(self.given_up_items),
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        clock: Callable[[], float] = time.time,
    ) -> AttemptProgress:
        """Rebuild an attempt from :meth:`to_dict` output.

        Raises
        ------
        DataIntegrityError
            If the snapshot has an unknown version or is malformed.
        """
        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise DataIntegrityError(f"Unsupported progress snapshot version {version!r}")
        try:
            played = [PlayedItem.from_dict(d) for d in data["played_items"]]
            progress = cls(
                attempt_id=int(data["attempt_id"]),
                examinee_id=int(data["examinee_id"]),
                context_id=int(data["context_id"]),
                settings=QuizSettings.from_dict(data["settings"]),
                component=data.get("component", ""),
                state=AttemptState(data["state"]),
                session_token=data.get("session_token"),
                start_time=float(data["start_time"]),
                forced_break_end=_optional_float(data.get("forced_break_end")),
                abilities={int(s): float(a) for s, a in data["abilities"]},
                active_scales={int(s) for s in data["active_scales"]},
                excluded_scales={int(s) for s in data.get("excluded_scales", ())},
                responses={int(i): {"fraction": float(f)} for i, f in data["responses"]},
                scored_responses={
                    int(i): float(f) for i, f in data.get("scored_responses", ())
                },
                pilot_items={int(i) for i in data["pilot_items"]},
                excluded_items={int(i) for i in data["excluded_items"]},
                given_up_items={int(i) for i in data["given_up_items"]},
                clock=clock,
                _played={item.item_id: item for item in played},
                _last_item_id=data.get("last_item_id"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise DataIntegrityError(f"Malformed progress snapshot: {exc}") from exc
        if progress._last_item_id is not None and progress._last_item_id not in progress._played:
            raise DataIntegrityError(
                f"Last item {progress._last_item_id} is not among the played items"
            )
        return progress

    def __repr__(self) -> str:
        return (
            f"AttemptProgress(attempt_id={self.attempt_id}, "
            f"examinee_id={self.examinee_id}, state='{self.state.value}', "
            f"n_played={self.n_played})"
        )


def _fraction_of(value: Any) -> float:
    if isinstance(value, Mapping):
        value = value["fraction"]
    return float(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
