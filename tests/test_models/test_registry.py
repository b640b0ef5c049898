"""Tests for the model registry and trusted region."""

import pytest

from catkit.exceptions import ConfigurationError
from catkit.models import (
    ModelRegistry,
    OneParameterLogistic,
    TrustedRegion,
    default_registry,
)


class TestModelRegistry:
    """Tests for ModelRegistry."""

    def test_default_models(self):
        """Test the built-in models in registration order."""
        assert default_registry().names() == [
            "1PL", "2PL", "3PL", "PCM", "GPCM", "GRM", "GGRM"
        ]

    def test_register_and_get(self):
        """Test registering a factory."""
        registry = ModelRegistry()
        registry.register("1PL", OneParameterLogistic)

        assert "1PL" in registry
        assert len(registry) == 1
        assert isinstance(registry.get("1PL"), OneParameterLogistic)

    def test_get_caches_instance(self):
        """Test that get returns one shared instance per registry."""
        registry = default_registry()
        assert registry.get("2PL") is registry.get("2PL")
        assert registry.create("2PL") is not registry.get("2PL")

    def test_registries_are_independent(self):
        """Test that instances are not shared across registries."""
        assert default_registry().get("1PL") is not default_registry().get("1PL")

    def test_duplicate_registration(self):
        """Test that a name can only be registered once."""
        registry = default_registry()
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register("1PL", OneParameterLogistic)

    def test_unknown_model(self):
        """Test that an unknown name raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Unknown model 'NRM'"):
            default_registry().get("NRM")

    def test_trusted_region_is_passed_on(self):
        """Test that the default factories use the given trusted region."""
        region = TrustedRegion(difficulty_sd=1.0)
        assert default_registry(region).get("3PL").trusted_region is region


class TestResolveOrder:
    """Tests for validating the model sort order."""

    def test_none_enables_all(self):
        """Test that no sort order enables every model."""
        registry = default_registry()
        assert registry.resolve_order(None) == registry.names()

    def test_order_is_kept_and_deduplicated(self):
        """Test that the given order is kept without duplicates."""
        order = default_registry().resolve_order(["GPCM", "1PL", "GPCM"])
        assert order == ["GPCM", "1PL"]

    def test_unknown_name(self):
        """Test that unknown names in the order raise."""
        with pytest.raises(ConfigurationError, match="Unknown model"):
            default_registry().resolve_order(["1PL", "4PL"])

    def test_empty_order(self):
        """Test that at least one model must be enabled."""
        with pytest.raises(ConfigurationError, match="At least one"):
            default_registry().resolve_order([])


class TestTrustedRegion:
    """Tests for TrustedRegion."""

    def test_difficulty_bounds(self):
        """Test the default region of mean ± 3 sd."""
        assert TrustedRegion().difficulty_bounds == (-6.0, 6.0)

    def test_bounds_are_capped(self):
        """Test that hard limits cap the prior region."""
        region = TrustedRegion(difficulty_sd=5.0)
        assert region.difficulty_bounds == (-10.0, 10.0)

    def test_bounds_for_unknown_parameter(self):
        """Test that unknown parameters have no region."""
        with pytest.raises(KeyError, match="slipping"):
            TrustedRegion().bounds_for("slipping")

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"difficulty_sd": 0.0}, "difficulty_sd"),
            ({"factor_sd": -1.0}, "factor_sd"),
            ({"discrimination_min": 0.0}, "Discrimination"),
            ({"guessing_max": 1.0}, "Guessing"),
        ],
    )
    def test_invalid_region(self, kwargs, match):
        """Test validation of the region."""
        with pytest.raises(ValueError, match=match):
            TrustedRegion(**kwargs)

    def test_prior_gradient(self):
        """Test the gradient of the difficulty log prior."""
        region = TrustedRegion()
        eps = 1e-6
        numeric = (
            region.difficulty_log_prior(1.0 + eps) - region.difficulty_log_prior(1.0 - eps)
        ) / (2 * eps)
        assert abs(region.difficulty_log_prior_grad(1.0) - numeric) < 1e-6
