"""Tests for person ability containers."""

import numpy as np
import pytest

from catkit.params import PersonParameter, PersonParamList


class TestPersonParameter:
    """Tests for PersonParameter."""

    @pytest.mark.parametrize(
        "ability,extreme",
        [(0.0, False), (999.9, False), (1000.0, True), (-1000.0, True), (np.inf, True)],
    )
    def test_is_extreme(self, ability, extreme):
        """Test detection of infinite and sentinel abilities."""
        assert PersonParameter(1, ability).is_extreme is extreme


class TestPersonParamList:
    """Tests for PersonParamList."""

    def test_from_dict(self):
        """Test building a list with a common scale."""
        abilities = PersonParamList.from_dict({1: 0.5, 2: -1}, scale_id=3)

        assert abilities.as_dict() == {1: 0.5, 2: -1.0}
        assert all(p.scale_id == 3 for p in abilities)

    def test_get_ability_default(self):
        """Test the fallback for unknown examinees."""
        abilities = PersonParamList.from_dict({1: 0.5})
        assert abilities.get_ability(2) == 0.0
        assert abilities.get_ability(2, default=-1.0) == -1.0
        assert abilities.get(2) is None

    def test_finite_abilities(self):
        """Test that extreme abilities are left out."""
        abilities = PersonParamList.from_dict({1: 0.5, 2: 1000.0, 3: -np.inf})
        assert abilities.finite_abilities() == {1: 0.5}

    def test_max_abs_change(self):
        """Test the largest change over shared finite entries."""
        before = PersonParamList.from_dict({1: 0.0, 2: 1.0, 3: 1000.0})
        after = PersonParamList.from_dict({1: 0.3, 2: 0.5, 3: 2.0, 4: 9.0})
        assert after.max_abs_change(before) == pytest.approx(0.5)

    def test_max_abs_change_without_overlap(self):
        """Test that nothing to compare gives infinity."""
        before = PersonParamList.from_dict({1: 1000.0})
        after = PersonParamList.from_dict({1: 0.0})
        assert after.max_abs_change(before) == np.inf

    def test_records(self):
        """Test that infinite abilities are stored as ±1000."""
        abilities = PersonParamList(
            [PersonParameter(1, np.inf, 2), PersonParameter(2, -0.25, 2)]
        )
        records = abilities.to_records(context_id=4, model="2PL")

        assert [r["ability"] for r in records] == [1000.0, -0.25]
        assert records[0]["catscaleid"] == 2
        assert records[0]["contextid"] == 4
        assert records[0]["model"] == "2PL"

        restored = PersonParamList.from_records(records)
        assert restored.as_dict() == {1: 1000.0, 2: -0.25}
        assert restored[1].is_extreme

    def test_repr(self):
        """Test __repr__ method."""
        assert repr(PersonParamList.from_dict({1: 0.0})) == "PersonParamList(n_persons=1)"
