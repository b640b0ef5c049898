"""Contracts of the collaborators that hold responses, parameters and attempts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from catkit.typing import ExamineeId, ItemId, RawResponses, ScaleId

if TYPE_CHECKING:
    from catkit.params.item_params import ItemParameter, ItemParamList
    from catkit.params.person_params import PersonParamList


@runtime_checkable
class ResponseSource(Protocol):
    """Read access to recorded responses."""

    def get_responses(
        self, context_id: int, scale_id: ScaleId | None = None
    ) -> RawResponses:
        """Return ``{examinee_id: {item_id: {"fraction": f}}}``.

        With a ``scale_id`` only items of that scale and its subscales
        are included.
        """
        ...


@runtime_checkable
class ParameterStore(Protocol):
    """Row-level storage of item and person parameters.

    Item rows are keyed by (item id, model, context id) and person rows
    by (examinee id, scale id, model, context id). Every row carries
    created and modified timestamps.
    """

    def save_item_params(self, context_id: int, params: ItemParamList) -> int: ...

    def load_item_params(self, context_id: int, model_name: str) -> ItemParamList: ...

    def update_item_param(self, context_id: int, param: ItemParameter) -> None: ...

    def set_manual(self, context_id: int, item_id: ItemId, model_name: str) -> None: ...

    def manual_selections(self, context_id: int) -> dict[ItemId, str]: ...

    def save_person_params(
        self,
        context_id: int,
        params: PersonParamList,
        model: str | None = None,
    ) -> int: ...

    def load_person_params(
        self,
        context_id: int,
        model: str | None = None,
        scale_id: ScaleId | None = None,
    ) -> PersonParamList: ...


@runtime_checkable
class AttemptStore(Protocol):
    """Durable table of progress snapshots keyed by attempt id."""

    def load(self, attempt_id: int) -> dict[str, Any] | None: ...

    def save(self, attempt_id: int, snapshot: dict[str, Any]) -> None: ...

    def delete(self, attempt_id: int) -> None: ...


@runtime_checkable
class ProgressCache(Protocol):
    """Volatile key-value cache mirroring progress snapshots."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


@runtime_checkable
class PlayHistory(Protocol):
    """Durable record of served items across all attempts of a context."""

    def record_play(
        self,
        context_id: int,
        examinee_id: ExamineeId,
        item_id: ItemId,
        played_at: float,
    ) -> None:
        """Record that an item was served to an examinee at ``played_at``."""
        ...

    def last_played(self, context_id: int, examinee_id: ExamineeId) -> dict[ItemId, float]:
        """Return when the examinee was last served each item."""
        ...

    def play_counts(self, context_id: int) -> dict[ItemId, int]:
        """Return how often each item was served, over all examinees."""
        ...
