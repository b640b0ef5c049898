"""Examinee × item response data filtered to scorable items."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from catkit.params.person_params import PersonParameter, PersonParamList
from catkit.typing import ExamineeId, ItemId, ScaleId

if TYPE_CHECKING:
    from catkit.storage.base import ResponseSource

logger = logging.getLogger(__name__)


def _as_fraction(value: Mapping[str, float] | float) -> float:
    if isinstance(value, Mapping):
        value = value["fraction"]
    fraction = float(value)
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"Response fraction must lie in [0, 1], got {fraction}")
    return fraction


class ResponseMatrix:
    """Sparse response matrix of fractions in [0, 1].

    Items without a single fully correct response (fraction 1.0) carry no
    information about their upper asymptote and are dropped, together
    with examinees left without any response.

    Parameters
    ----------
    raw : mapping
        ``{examinee_id: {item_id: {"fraction": f}}}``. Plain floats are
        accepted in place of the inner ``{"fraction": f}`` mapping.
    drop_unscorable : bool, default=True
        Whether to drop items without a fully correct response.

    Examples
    --------
    >>> rm = ResponseMatrix({1: {10: 1.0, 11: 0.0}, 2: {10: 0.0, 11: 0.0}})
    >>> rm.item_ids, rm.dropped_items
    ([10], [11])
    """

    def __init__(
        self,
        raw: Mapping[ExamineeId, Mapping[ItemId, Mapping[str, float] | float]],
        drop_unscorable: bool = True,
    ):
        data: dict[ExamineeId, dict[ItemId, float]] = {
            examinee: {item: _as_fraction(v) for item, v in items.items()}
            for examinee, items in raw.items()
        }

        all_items = sorted({item for items in data.values() for item in items})
        if drop_unscorable:
            scorable = {
                item
                for items in data.values()
                for item, fraction in items.items()
                if fraction == 1.0
            }
        else:
            scorable = set(all_items)
        self.dropped_items: list[ItemId] = [i for i in all_items if i not in scorable]
        if self.dropped_items:
            logger.info(
                "Dropping %d item(s) without a correct response: %s",
                len(self.dropped_items),
                self.dropped_items,
            )

        self._by_person: dict[ExamineeId, dict[ItemId, float]] = {}
        for examinee in sorted(data):
            kept = {i: f for i, f in data[examinee].items() if i in scorable}
            if kept:
                self._by_person[examinee] = kept

        self._by_item: dict[ItemId, dict[ExamineeId, float]] = {
            item: {} for item in all_items if item in scorable
        }
        for examinee, items in self._by_person.items():
            for item, fraction in items.items():
                self._by_item[item][examinee] = fraction

    @classmethod
    def from_source(
        cls,
        source: ResponseSource,
        context_id: int,
        scale_id: ScaleId | None = None,
        drop_unscorable: bool = True,
    ) -> ResponseMatrix:
        return cls(source.get_responses(context_id, scale_id), drop_unscorable)

    @property
    def examinee_ids(self) -> list[ExamineeId]:
        return list(self._by_person)

    @property
    def item_ids(self) -> list[ItemId]:
        return list(self._by_item)

    @property
    def n_examinees(self) -> int:
        return len(self._by_person)

    @property
    def n_items(self) -> int:
        return len(self._by_item)

    @property
    def n_responses(self) -> int:
        return sum(len(items) for items in self._by_person.values())

    def fraction(self, examinee_id: ExamineeId, item_id: ItemId) -> float | None:
        return self._by_person.get(examinee_id, {}).get(item_id)

    def person_responses(self, examinee_id: ExamineeId) -> dict[ItemId, float]:
        return dict(self._by_person.get(examinee_id, {}))

    def item_responses(self, item_id: ItemId) -> dict[ExamineeId, float]:
        return dict(self._by_item.get(item_id, {}))

    def item_fractions(self, item_id: ItemId) -> list[float]:
        """Distinct fractions observed for an item, ascending."""
        return sorted(set(self._by_item.get(item_id, {}).values()))

    def item_observations(
        self, item_id: ItemId, abilities: PersonParamList
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Paired (ability, fraction) arrays for an item.

        Examinees without an ability, or whose ability is extreme, are
        left out.
        """
        thetas = []
        fractions = []
        for examinee, fraction in self._by_item.get(item_id, {}).items():
            param = abilities.get(examinee)
            if param is None or param.is_extreme:
                continue
            thetas.append(param.ability)
            fractions.append(fraction)
        return np.array(thetas, dtype=np.float64), np.array(fractions, dtype=np.float64)

    def initial_abilities(
        self,
        existing: PersonParamList | None = None,
        scale_id: ScaleId | None = None,
    ) -> PersonParamList:
        """Starting abilities for every examinee in the matrix.

        Known finite abilities are reused; everyone else starts at 0.
        """
        existing = existing or PersonParamList()
        result = PersonParamList()
        for examinee in self._by_person:
            param = existing.get(examinee)
            ability = 0.0 if param is None or param.is_extreme else param.ability
            result.add(PersonParameter(examinee, ability, scale_id))
        return result

    def as_dict(self) -> dict[ExamineeId, dict[ItemId, dict[str, float]]]:
        return {
            e: {i: {"fraction": f} for i, f in items.items()}
            for e, items in self._by_person.items()
        }

    def __repr__(self) -> str:
        return (
            f"ResponseMatrix(n_examinees={self.n_examinees}, "
            f"n_items={self.n_items}, n_dropped={len(self.dropped_items)})"
        )
