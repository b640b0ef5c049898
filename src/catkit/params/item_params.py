"""Item parameters, their status and list containers."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any

import numpy as np

from catkit._core import clamp_to_sentinel, is_sentinel
from catkit.typing import ItemId, ParamDict


def _encode(value: float | None) -> float | None:
    """Clamp a value for storage, keeping NaN so that invalid rows can be spotted."""
    if value is None or np.isnan(value):
        return value
    return clamp_to_sentinel(value)


class ItemStatus(IntEnum):
    """Lifecycle status of an item parameter row."""

    NOT_SET = -1
    NOT_CALCULATED = 0
    SET_BY_STRATEGY = 1
    SET_MANUALLY = 4


@dataclass
class ItemParameter:
    """Parameters of one item under one model.

    Attributes
    ----------
    item_id : int
        Item identifier.
    model_name : str
        Name of the model the parameters belong to.
    params : dict
        Model-specific parameters. Scalars for ``difficulty``,
        ``discrimination`` and ``guessing``; the multi-category models
        use ``intercepts``, a ``{fraction: step difficulty}`` mapping.
    status : ItemStatus
        Lifecycle status.
    metadata : dict
        Free-form metadata.
    context_id : int or None
        Calibration context the row belongs to.
    timecreated, timemodified : float or None
        Storage timestamps, set by the parameter store.
    """

    item_id: ItemId
    model_name: str
    params: ParamDict = field(default_factory=dict)
    status: ItemStatus = ItemStatus.NOT_SET
    metadata: dict[str, Any] = field(default_factory=dict)
    context_id: int | None = None
    timecreated: float | None = None
    timemodified: float | None = None

    @property
    def difficulty(self) -> float:
        """Difficulty, or the mean step difficulty for multi-category items."""
        if "difficulty" in self.params:
            return float(self.params["difficulty"])
        intercepts = self.params.get("intercepts")
        if intercepts:
            return float(np.mean(list(intercepts.values())))
        return float("nan")

    @property
    def discrimination(self) -> float:
        return float(self.params.get("discrimination", 1.0))

    @property
    def guessing(self) -> float:
        return float(self.params.get("guessing", 0.0))

    @property
    def is_calculated(self) -> bool:
        return self.status != ItemStatus.NOT_CALCULATED

    def with_status(self, status: ItemStatus) -> ItemParameter:
        return replace(self, status=status)

    def to_record(self) -> dict[str, Any]:
        """Flat storage record with sentinel-encoded values."""
        extra: dict[str, Any] = {"metadata": self.metadata}
        if "intercepts" in self.params:
            extra["intercepts"] = [
                [float(f), clamp_to_sentinel(v)]
                for f, v in sorted(self.params["intercepts"].items())
            ]
        return {
            "itemid": self.item_id,
            "model": self.model_name,
            "contextid": self.context_id,
            "status": int(self.status),
            "difficulty": _encode(self.difficulty),
            "discrimination": _encode(self.params.get("discrimination")),
            "guessing": _encode(self.params.get("guessing")),
            "json": json.dumps(extra),
            "timecreated": self.timecreated,
            "timemodified": self.timemodified,
        }

    @classmethod
    def from_record(
        cls, record: Mapping[str, Any], parameter_names: Iterable[str]
    ) -> ItemParameter:
        """Rebuild an item parameter from a storage record.

        Parameters
        ----------
        record : mapping
            Row as produced by :meth:`to_record`.
        parameter_names : iterable of str
            Parameters of the record's model; other columns are ignored.
        """
        extra = json.loads(record.get("json") or "{}")
        params: ParamDict = {}
        for name in parameter_names:
            if name == "intercepts":
                params[name] = {float(f): float(v) for f, v in extra["intercepts"]}
            elif record.get(name) is not None:
                params[name] = float(record[name])
        if "intercepts" in extra and record.get("discrimination") is not None:
            params.setdefault("discrimination", float(record["discrimination"]))
        return cls(
            item_id=record["itemid"],
            model_name=record["model"],
            params=params,
            status=ItemStatus(int(record.get("status", ItemStatus.NOT_SET))),
            metadata=extra.get("metadata", {}),
            context_id=record.get("contextid"),
            timecreated=record.get("timecreated"),
            timemodified=record.get("timemodified"),
        )


class ItemParamList:
    """Ordered collection of item parameters keyed by item id.

    Parameters
    ----------
    params : iterable of ItemParameter, optional
        Initial content. A later entry for the same item replaces an
        earlier one.
    """

    def __init__(self, params: Iterable[ItemParameter] | None = None):
        self._params: dict[ItemId, ItemParameter] = {}
        for p in params or ():
            self.add(p)

    def add(self, param: ItemParameter) -> None:
        self._params[param.item_id] = param

    def remove(self, item_id: ItemId) -> None:
        self._params.pop(item_id, None)

    def get(self, item_id: ItemId) -> ItemParameter | None:
        return self._params.get(item_id)

    def __getitem__(self, item_id: ItemId) -> ItemParameter:
        return self._params[item_id]

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._params

    def __iter__(self) -> Iterator[ItemParameter]:
        return iter(self._params.values())

    def __len__(self) -> int:
        return len(self._params)

    def item_ids(self) -> list[ItemId]:
        return list(self._params)

    def calculated(self) -> ItemParamList:
        """Items whose estimation did not fail."""
        return ItemParamList(p for p in self if p.is_calculated)

    def filter_by_status(self, *statuses: ItemStatus) -> ItemParamList:
        return ItemParamList(p for p in self if p.status in statuses)

    def set_status(self, item_id: ItemId, status: ItemStatus) -> None:
        self._params[item_id] = self._params[item_id].with_status(status)

    def get_values(self, name: str = "difficulty", sort: bool = False) -> list[float]:
        """Finite values of a scalar parameter.

        Values that are non-finite or carry the storage sentinel are left
        out, so callers never compare against an encoded infinity.
        """
        values = []
        for p in self:
            value = p.difficulty if name == "difficulty" else p.params.get(name)
            if value is None or is_sentinel(value):
                continue
            values.append(float(value))
        return sorted(values) if sort else values

    def to_records(self, context_id: int | None = None) -> list[dict[str, Any]]:
        records = []
        for p in self:
            if context_id is not None:
                p = replace(p, context_id=context_id)
            records.append(p.to_record())
        return records

    @classmethod
    def from_records(
        cls,
        records: Iterable[Mapping[str, Any]],
        parameter_names: Iterable[str],
    ) -> ItemParamList:
        names = list(parameter_names)
        return cls(ItemParameter.from_record(r, names) for r in records)

    def __repr__(self) -> str:
        models = sorted({p.model_name for p in self})
        return f"ItemParamList(n_items={len(self)}, models={models})"


def promote_manual(
    item_id: ItemId,
    model_name: str,
    lists: Mapping[str, ItemParamList],
) -> None:
    """Mark one model's parameters of an item as manually set.

    Every other model's entry for the same item that carried
    ``SET_MANUALLY`` is demoted to ``NOT_CALCULATED``.

    Raises
    ------
    KeyError
        If ``model_name`` has no entry for ``item_id``.
    """
    if item_id not in lists.get(model_name, ItemParamList()):
        raise KeyError(f"No parameters of model '{model_name}' for item {item_id}")
    for name, param_list in lists.items():
        param = param_list.get(item_id)
        if param is None:
            continue
        if name == model_name:
            param_list.set_status(item_id, ItemStatus.SET_MANUALLY)
        elif param.status == ItemStatus.SET_MANUALLY:
            param_list.set_status(item_id, ItemStatus.NOT_CALCULATED)
