"""Scale hierarchy precomputed as an arena of nodes with parent indices."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from catkit.exceptions import DataIntegrityError
from catkit.typing import ScaleId

_NO_PARENT = -1


class ScaleHierarchy:
    """Tree of scales and subscales.

    Built once per context from a ``{scale_id: parent_id}`` mapping. Nodes
    are stored in parallel lists and each node keeps the index of its
    parent, so ancestor queries walk at most ``depth`` links.

    Parameters
    ----------
    parents : mapping of int to int or None
        Parent of every scale; ``None`` marks a root scale.

    Examples
    --------
    >>> tree = ScaleHierarchy({1: None, 2: 1, 3: 2})
    >>> tree.ancestors(3)
    [2, 1]
    >>> tree.lineage(2)
    [2, 1]
    """

    def __init__(self, parents: Mapping[ScaleId, ScaleId | None]):
        self._ids: list[ScaleId] = list(parents)
        self._index: dict[ScaleId, int] = {s: i for i, s in enumerate(self._ids)}
        self._parent: list[int] = []
        for scale_id in self._ids:
            parent = parents[scale_id]
            if parent is None:
                self._parent.append(_NO_PARENT)
            elif parent not in self._index:
                raise DataIntegrityError(
                    f"Scale {scale_id} refers to unknown parent scale {parent}"
                )
            else:
                self._parent.append(self._index[parent])

        self._depth: list[int] = [self._compute_depth(i) for i in range(len(self._ids))]
        self._children: list[list[int]] = [[] for _ in self._ids]
        for i, p in enumerate(self._parent):
            if p != _NO_PARENT:
                self._children[p].append(i)

    @classmethod
    def flat(cls, scale_ids: Iterable[ScaleId]) -> ScaleHierarchy:
        """Hierarchy in which every scale is a root."""
        return cls({s: None for s in scale_ids})

    def _compute_depth(self, idx: int) -> int:
        depth = 0
        node = self._parent[idx]
        while node != _NO_PARENT:
            depth += 1
            if depth > len(self._ids):
                raise DataIntegrityError(
                    f"Scale hierarchy contains a cycle through scale {self._ids[idx]}"
                )
            node = self._parent[node]
        return depth

    def _idx(self, scale_id: ScaleId) -> int:
        try:
            return self._index[scale_id]
        except KeyError:
            raise DataIntegrityError(f"Unknown scale {scale_id}") from None

    def __contains__(self, scale_id: object) -> bool:
        return scale_id in self._index

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self):
        return iter(self._ids)

    def parent(self, scale_id: ScaleId) -> ScaleId | None:
        p = self._parent[self._idx(scale_id)]
        return None if p == _NO_PARENT else self._ids[p]

    def depth(self, scale_id: ScaleId) -> int:
        return self._depth[self._idx(scale_id)]

    def ancestors(self, scale_id: ScaleId) -> list[ScaleId]:
        """Ancestors of ``scale_id``, nearest first."""
        result = []
        node = self._parent[self._idx(scale_id)]
        while node != _NO_PARENT:
            result.append(self._ids[node])
            node = self._parent[node]
        return result

    def lineage(self, scale_id: ScaleId) -> list[ScaleId]:
        """``scale_id`` followed by its ancestors."""
        return [scale_id, *self.ancestors(scale_id)]

    def children(self, scale_id: ScaleId) -> list[ScaleId]:
        return [self._ids[c] for c in self._children[self._idx(scale_id)]]

    def descendants(self, scale_id: ScaleId) -> list[ScaleId]:
        """All scales below ``scale_id`` in breadth-first order."""
        result = []
        queue = list(self._children[self._idx(scale_id)])
        while queue:
            node = queue.pop(0)
            result.append(self._ids[node])
            queue.extend(self._children[node])
        return result

    def is_ancestor(self, ancestor: ScaleId, scale_id: ScaleId) -> bool:
        """True if ``ancestor`` lies strictly above ``scale_id``."""
        target = self._idx(ancestor)
        node = self._parent[self._idx(scale_id)]
        while node != _NO_PARENT:
            if node == target:
                return True
            node = self._parent[node]
        return False

    def __repr__(self) -> str:
        roots = sum(1 for p in self._parent if p == _NO_PARENT)
        return f"ScaleHierarchy(n_scales={len(self._ids)}, n_roots={roots})"
