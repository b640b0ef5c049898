"""Person ability estimates."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from catkit._core import clamp_to_sentinel, is_sentinel
from catkit.typing import ExamineeId, ScaleId


@dataclass(frozen=True)
class PersonParameter:
    """Ability of one examinee on one scale."""

    examinee_id: ExamineeId
    ability: float
    scale_id: ScaleId | None = None

    @property
    def is_extreme(self) -> bool:
        """True if the ability is infinite or carries the storage sentinel."""
        return is_sentinel(self.ability)


class PersonParamList:
    """Collection of abilities keyed by examinee id.

    Examples
    --------
    >>> abilities = PersonParamList.from_dict({1: 0.5, 2: float("inf")})
    >>> [r["ability"] for r in abilities.to_records(context_id=3, model="2PL")]
    [0.5, 1000.0]
    """

    def __init__(self, params: Iterable[PersonParameter] | None = None):
        self._params: dict[ExamineeId, PersonParameter] = {}
        for p in params or ():
            self.add(p)

    @classmethod
    def from_dict(
        cls, abilities: Mapping[ExamineeId, float], scale_id: ScaleId | None = None
    ) -> PersonParamList:
        return cls(
            PersonParameter(examinee_id, float(ability), scale_id)
            for examinee_id, ability in abilities.items()
        )

    def add(self, param: PersonParameter) -> None:
        self._params[param.examinee_id] = param

    def get(self, examinee_id: ExamineeId) -> PersonParameter | None:
        return self._params.get(examinee_id)

    def get_ability(self, examinee_id: ExamineeId, default: float = 0.0) -> float:
        param = self._params.get(examinee_id)
        return default if param is None else param.ability

    def __getitem__(self, examinee_id: ExamineeId) -> PersonParameter:
        return self._params[examinee_id]

    def __contains__(self, examinee_id: object) -> bool:
        return examinee_id in self._params

    def __iter__(self) -> Iterator[PersonParameter]:
        return iter(self._params.values())

    def __len__(self) -> int:
        return len(self._params)

    def examinee_ids(self) -> list[ExamineeId]:
        return list(self._params)

    def as_dict(self) -> dict[ExamineeId, float]:
        return {p.examinee_id: p.ability for p in self}

    def finite_abilities(self) -> dict[ExamineeId, float]:
        """Abilities that are neither infinite nor sentinel-encoded."""
        return {p.examinee_id: p.ability for p in self if not p.is_extreme}

    def max_abs_change(self, other: PersonParamList) -> float:
        """Largest ability change against ``other`` over shared finite entries."""
        mine = self.finite_abilities()
        theirs = other.finite_abilities()
        shared = mine.keys() & theirs.keys()
        if not shared:
            return float("inf")
        return float(max(abs(mine[k] - theirs[k]) for k in shared))

    def to_records(
        self, context_id: int | None = None, model: str | None = None
    ) -> list[dict[str, Any]]:
        """Storage records; non-finite and out-of-range values become ±1000."""
        return [
            {
                "userid": p.examinee_id,
                "catscaleid": p.scale_id,
                "contextid": context_id,
                "model": model,
                "ability": clamp_to_sentinel(p.ability),
            }
            for p in self
        ]

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> PersonParamList:
        return cls(
            PersonParameter(
                examinee_id=r["userid"],
                ability=float(r["ability"]),
                scale_id=r.get("catscaleid"),
            )
            for r in records
        )

    def __repr__(self) -> str:
        return f"PersonParamList(n_persons={len(self)})"
