"""In-memory implementations of the storage contracts."""

from __future__ import annotations

import copy
import json
import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from catkit.exceptions import DataIntegrityError
from catkit.models.registry import ModelRegistry, default_registry
from catkit.params.item_params import ItemParameter, ItemParamList, ItemStatus
from catkit.params.person_params import PersonParamList
from catkit.scales import ScaleHierarchy
from catkit.typing import ExamineeId, ItemId, RawResponses, ScaleId

logger = logging.getLogger(__name__)


class DictResponseSource:
    """Response source backed by dictionaries.

    Parameters
    ----------
    responses : mapping
        ``{context_id: {examinee_id: {item_id: {"fraction": f}}}}``.
    item_scales : mapping of int to int, optional
        Scale of every item. Required for scale-filtered queries.
    hierarchy : ScaleHierarchy, optional
        Scale tree; items of subscales count towards their parents.
    """

    def __init__(
        self,
        responses: Mapping[int, RawResponses],
        item_scales: Mapping[ItemId, ScaleId] | None = None,
        hierarchy: ScaleHierarchy | None = None,
    ):
        self._responses = responses
        self._item_scales = dict(item_scales or {})
        self._hierarchy = hierarchy or ScaleHierarchy.flat(
            set(self._item_scales.values())
        )

    def _in_scale(self, item_id: ItemId, scale_id: ScaleId) -> bool:
        item_scale = self._item_scales.get(item_id)
        if item_scale is None:
            raise DataIntegrityError(f"No scale recorded for item {item_id}")
        return scale_id in self._hierarchy.lineage(item_scale)

    def get_responses(
        self, context_id: int, scale_id: ScaleId | None = None
    ) -> RawResponses:
        raw = self._responses.get(context_id, {})
        result: RawResponses = {}
        for examinee, items in raw.items():
            kept = {
                item: dict(value)
                for item, value in items.items()
                if scale_id is None or self._in_scale(item, scale_id)
            }
            if kept:
                result[examinee] = kept
        return result


class InMemoryParameterStore:
    """Parameter store holding rows in dictionaries.

    Writes are serialized by a lock, which also makes the manual
    selection of an item transactional: promoting one row and demoting
    its siblings happens atomically.

    Parameters
    ----------
    registry : ModelRegistry, optional
        Used to rebuild parameter dictionaries from rows.
    clock : callable, optional
        Source of timestamps. Defaults to :func:`time.time`.
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry or default_registry()
        self._clock = clock
        self._lock = threading.RLock()
        self._items: dict[tuple[ItemId, str, int], dict[str, Any]] = {}
        self._persons: dict[tuple[int, ScaleId | None, str | None, int], dict[str, Any]] = {}

    def save_item_params(self, context_id: int, params: ItemParamList) -> int:
        """Upsert item rows; rows with a NaN parameter are skipped."""
        saved = 0
        now = self._clock()
        with self._lock:
            for record in params.to_records(context_id):
                if _has_nan(record):
                    logger.warning(
                        "Not saving item %s (%s): NaN parameter",
                        record["itemid"],
                        record["model"],
                    )
                    continue
                key = (record["itemid"], record["model"], context_id)
                existing = self._items.get(key)
                record["timecreated"] = existing["timecreated"] if existing else now
                record["timemodified"] = now
                self._items[key] = record
                saved += 1
        return saved

    def load_item_params(self, context_id: int, model_name: str) -> ItemParamList:
        names = self.registry.get(model_name).parameter_names()
        with self._lock:
            records = [
                copy.deepcopy(r)
                for (_, model, ctx), r in self._items.items()
                if model == model_name and ctx == context_id
            ]
        return ItemParamList.from_records(records, names)

    def update_item_param(self, context_id: int, param: ItemParameter) -> None:
        """Overwrite an existing row.

        Raises
        ------
        DataIntegrityError
            If no row exists for the item, model and context.
        """
        key = (param.item_id, param.model_name, context_id)
        with self._lock:
            existing = self._items.get(key)
            if existing is None:
                raise DataIntegrityError(
                    f"No parameters stored for item {param.item_id}, "
                    f"model '{param.model_name}', context {context_id}"
                )
            if param.status == ItemStatus.SET_MANUALLY:
                self._demote_siblings(param.item_id, param.model_name, context_id)
            record = ItemParamList([param]).to_records(context_id)[0]
            record["timecreated"] = existing["timecreated"]
            record["timemodified"] = self._clock()
            self._items[key] = record

    def set_manual(self, context_id: int, item_id: ItemId, model_name: str) -> None:
        """Mark one model's row of an item as manually selected."""
        key = (item_id, model_name, context_id)
        with self._lock:
            record = self._items.get(key)
            if record is None:
                raise DataIntegrityError(
                    f"No parameters stored for item {item_id}, "
                    f"model '{model_name}', context {context_id}"
                )
            self._demote_siblings(item_id, model_name, context_id)
            record["status"] = int(ItemStatus.SET_MANUALLY)
            record["timemodified"] = self._clock()

    def _demote_siblings(self, item_id: ItemId, model_name: str, context_id: int) -> None:
        now = self._clock()
        for (item, model, ctx), record in self._items.items():
            if item != item_id or ctx != context_id or model == model_name:
                continue
            if record["status"] == int(ItemStatus.SET_MANUALLY):
                record["status"] = int(ItemStatus.NOT_CALCULATED)
                record["timemodified"] = now

    def manual_selections(self, context_id: int) -> dict[ItemId, str]:
        with self._lock:
            return {
                item: model
                for (item, model, ctx), r in self._items.items()
                if ctx == context_id and r["status"] == int(ItemStatus.SET_MANUALLY)
            }

    def item_record(
        self, context_id: int, item_id: ItemId, model_name: str
    ) -> dict[str, Any] | None:
        """Raw stored row, including timestamps."""
        with self._lock:
            record = self._items.get((item_id, model_name, context_id))
            return copy.deepcopy(record) if record is not None else None

    def save_person_params(
        self,
        context_id: int,
        params: PersonParamList,
        model: str | None = None,
    ) -> int:
        now = self._clock()
        with self._lock:
            for record in params.to_records(context_id, model):
                key = (record["userid"], record["catscaleid"], model, context_id)
                existing = self._persons.get(key)
                record["timecreated"] = existing["timecreated"] if existing else now
                record["timemodified"] = now
                self._persons[key] = record
        return len(params)

    def load_person_params(
        self,
        context_id: int,
        model: str | None = None,
        scale_id: ScaleId | None = None,
    ) -> PersonParamList:
        with self._lock:
            records = [
                dict(r)
                for (_, scale, m, ctx), r in self._persons.items()
                if ctx == context_id
                and m == model
                and (scale_id is None or scale == scale_id)
            ]
        return PersonParamList.from_records(records)


def _has_nan(record: Mapping[str, Any]) -> bool:
    for name in ("difficulty", "discrimination", "guessing"):
        value = record.get(name)
        if value is not None and math.isnan(value):
            return True
    return False


class InMemoryAttemptStore:
    """Attempt store keeping JSON-encoded snapshots."""

    def __init__(self) -> None:
        self._rows: dict[int, str] = {}
        self._lock = threading.Lock()

    def load(self, attempt_id: int) -> dict[str, Any] | None:
        with self._lock:
            row = self._rows.get(attempt_id)
        return json.loads(row) if row is not None else None

    def save(self, attempt_id: int, snapshot: dict[str, Any]) -> None:
        encoded = json.dumps(snapshot)
        with self._lock:
            self._rows[attempt_id] = encoded

    def delete(self, attempt_id: int) -> None:
        with self._lock:
            self._rows.pop(attempt_id, None)

    def __contains__(self, attempt_id: object) -> bool:
        return attempt_id in self._rows

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryCache:
    """Volatile cache; values are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._data


class InMemoryPlayHistory:
    """Play history keeping the latest serve time per examinee and item."""

    def __init__(self) -> None:
        self._last: dict[tuple[int, ExamineeId], dict[ItemId, float]] = {}
        self._counts: dict[int, dict[ItemId, int]] = {}
        self._lock = threading.Lock()

    def record_play(
        self,
        context_id: int,
        examinee_id: ExamineeId,
        item_id: ItemId,
        played_at: float,
    ) -> None:
        with self._lock:
            last = self._last.setdefault((context_id, examinee_id), {})
            last[item_id] = max(played_at, last.get(item_id, played_at))
            counts = self._counts.setdefault(context_id, {})
            counts[item_id] = counts.get(item_id, 0) + 1

    def last_played(self, context_id: int, examinee_id: ExamineeId) -> dict[ItemId, float]:
        with self._lock:
            return dict(self._last.get((context_id, examinee_id), {}))

    def play_counts(self, context_id: int) -> dict[ItemId, int]:
        with self._lock:
            return dict(self._counts.get(context_id, {}))

    def __len__(self) -> int:
        return sum(len(items) for items in self._last.values())
