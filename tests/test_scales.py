"""Tests for the scale hierarchy."""

import pytest

from catkit.exceptions import DataIntegrityError
from catkit.scales import ScaleHierarchy


@pytest.fixture
def tree():
    # 1 ── 2 ── 4
    #  └── 3
    # 5
    return ScaleHierarchy({1: None, 2: 1, 3: 1, 4: 2, 5: None})


class TestScaleHierarchy:
    """Tests for ScaleHierarchy."""

    def test_ancestors_nearest_first(self, tree):
        """Test ancestor order."""
        assert tree.ancestors(4) == [2, 1]
        assert tree.ancestors(1) == []

    def test_lineage(self, tree):
        """Test lineage lookup."""
        assert tree.lineage(4) == [4, 2, 1]
        assert tree.lineage(5) == [5]

    def test_depth(self, tree):
        """Test node depth."""
        assert [tree.depth(s) for s in (1, 2, 3, 4, 5)] == [0, 1, 1, 2, 0]

    def test_children_and_descendants(self, tree):
        """Test downward queries."""
        assert tree.children(1) == [2, 3]
        assert tree.descendants(1) == [2, 3, 4]
        assert tree.descendants(5) == []

    def test_is_ancestor(self, tree):
        """Test the strict ancestor relation."""
        assert tree.is_ancestor(1, 4)
        assert not tree.is_ancestor(4, 1)
        assert not tree.is_ancestor(4, 4)
        assert not tree.is_ancestor(5, 4)

    def test_parent(self, tree):
        """Test parent lookup."""
        assert tree.parent(4) == 2
        assert tree.parent(1) is None

    def test_flat(self):
        """Test a hierarchy of independent scales."""
        flat = ScaleHierarchy.flat([7, 8])
        assert flat.ancestors(7) == []
        assert len(flat) == 2
        assert list(flat) == [7, 8]

    def test_unknown_scale(self, tree):
        """Test that unknown scales raise."""
        assert 9 not in tree
        with pytest.raises(DataIntegrityError, match="Unknown scale 9"):
            tree.ancestors(9)

    def test_unknown_parent(self):
        """Test that a dangling parent reference raises."""
        with pytest.raises(DataIntegrityError, match="unknown parent"):
            ScaleHierarchy({1: None, 2: 3})

    def test_cycle(self):
        """Test that a cycle is detected."""
        with pytest.raises(DataIntegrityError, match="cycle"):
            ScaleHierarchy({1: 2, 2: 1})

    def test_repr(self, tree):
        """Test __repr__ method."""
        assert repr(tree) == "ScaleHierarchy(n_scales=5, n_roots=2)"
