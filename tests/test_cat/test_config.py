"""Tests for quiz settings."""

import pytest

from catkit.cat.config import STRATEGIES, QuizSettings
from catkit.exceptions import ConfigurationError


class TestQuizSettings:
    """Tests for QuizSettings."""

    def test_defaults(self):
        """Test the default configuration."""
        settings = QuizSettings()

        assert settings.max_items is None
        assert settings.strategy_id == "fastest"
        assert settings.first_item_start == "current_ability"
        assert settings.ability_bounds == (-5.0, 5.0)

    def test_frozen(self):
        """Test that settings cannot change after creation."""
        settings = QuizSettings()
        with pytest.raises(AttributeError):
            settings.max_items = 3

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"max_items": 0}, "max_items"),
            ({"min_items": 5, "max_items": 3}, "exceed"),
            ({"max_items_per_scale": 0}, "max_items_per_scale"),
            ({"standard_error_target": 0.0}, "standard_error_target"),
            ({"pilot_ratio": 1.5}, "pilot_ratio"),
            ({"penalty_threshold": 0.0}, "penalty_threshold"),
            ({"max_time_per_item": -1.0}, "max_time_per_item"),
            ({"first_item_start": "random"}, "first item start"),
            ({"strategy_id": "adaptive"}, "Unknown strategy"),
            ({"ability_bounds": (1.0, -1.0)}, "ability_bounds"),
        ],
    )
    def test_validation(self, kwargs, match):
        """Test that invalid settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match=match):
            QuizSettings(**kwargs)

    @pytest.mark.parametrize("strategy_id", STRATEGIES)
    def test_known_strategies(self, strategy_id):
        """Test that every selection strategy is accepted."""
        assert QuizSettings(strategy_id=strategy_id).strategy_id == strategy_id

    def test_clip_ability(self):
        """Test clipping into the ability bounds."""
        settings = QuizSettings(ability_bounds=(-3.0, 3.0))

        assert settings.clip_ability(7.5) == 3.0
        assert settings.clip_ability(-1000.0) == -3.0
        assert settings.clip_ability(0.4) == 0.4

    def test_dict_round_trip(self):
        """Test that settings survive a snapshot."""
        settings = QuizSettings(max_items=12, pilot_ratio=0.25, ability_bounds=(-4.0, 4.0))
        assert QuizSettings.from_dict(settings.to_dict()) == settings

    def test_from_dict_ignores_unknown_keys(self):
        """Test that stale snapshot keys are ignored."""
        settings = QuizSettings.from_dict({"max_items": 4, "legacy_option": True})
        assert settings.max_items == 4
