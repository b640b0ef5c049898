"""Tests for the dichotomous logistic models."""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from catkit.constants import SENTINEL
from catkit.models import (
    OneParameterLogistic,
    Rasch,
    ThreeParameterLogistic,
    TwoParameterLogistic,
)
from catkit.models.trusted_region import TrustedRegion

MODELS_AND_PARAMS = [
    (OneParameterLogistic, {"difficulty": 0.4}),
    (TwoParameterLogistic, {"difficulty": -0.3, "discrimination": 1.7}),
    (
        ThreeParameterLogistic,
        {"difficulty": 0.5, "discrimination": 1.2, "guessing": 0.2},
    ),
]


def numeric_derivative(func, x, eps=1e-5):
    return (func(x + eps) - func(x - eps)) / (2 * eps)


class TestProbability:
    """Tests for response probabilities."""

    def test_1pl_half_at_difficulty(self):
        """Test P = 0.5 when ability equals difficulty."""
        model = OneParameterLogistic()
        assert_allclose(model.probability(1.3, {"difficulty": 1.3}), 0.5)

    def test_rasch_alias(self):
        """Test that Rasch is the 1PL."""
        assert Rasch is OneParameterLogistic
        assert Rasch().model_name == "1PL"

    def test_3pl_lower_asymptote(self):
        """Test that the 3PL approaches its guessing floor."""
        model = ThreeParameterLogistic()
        params = {"difficulty": 0.0, "discrimination": 1.0, "guessing": 0.25}
        assert_allclose(model.probability(-30.0, params), 0.25, atol=1e-8)

    def test_array_abilities(self):
        """Test that abilities broadcast as arrays."""
        model = TwoParameterLogistic()
        params = {"difficulty": 0.0, "discrimination": 1.0}
        theta = np.linspace(-2, 2, 5)
        probs = model.probability(theta, params)

        assert probs.shape == (5,)
        assert np.all(np.diff(probs) > 0)

    def test_likelihood_of_correct_response(self):
        """Test that the likelihood of a full-credit response is P."""
        model = TwoParameterLogistic()
        params = {"difficulty": 0.2, "discrimination": 1.5}
        assert_allclose(
            model.likelihood(0.7, params, 1.0), model.probability(0.7, params)
        )
        assert_allclose(
            model.likelihood(0.7, params, 0.0), 1 - model.probability(0.7, params)
        )


class TestDerivatives:
    """Tests for analytic derivatives against finite differences."""

    @pytest.mark.parametrize("model_cls,params", MODELS_AND_PARAMS)
    @pytest.mark.parametrize("fraction", [0.0, 0.3, 1.0])
    def test_first_derivative(self, model_cls, params, fraction):
        """Test d/dθ of the log-likelihood."""
        model = model_cls()
        for theta in (-1.5, 0.0, 2.0):
            expected = numeric_derivative(
                lambda t: model.log_likelihood(t, params, fraction), theta
            )
            assert_allclose(
                model.log_likelihood_p(theta, params, fraction),
                expected,
                rtol=1e-5,
                atol=1e-7,
            )

    @pytest.mark.parametrize("model_cls,params", MODELS_AND_PARAMS)
    @pytest.mark.parametrize("fraction", [0.0, 0.6, 1.0])
    def test_second_derivative(self, model_cls, params, fraction):
        """Test d²/dθ² of the log-likelihood."""
        model = model_cls()
        for theta in (-1.0, 0.5, 1.5):
            expected = numeric_derivative(
                lambda t: model.log_likelihood_p(t, params, fraction), theta
            )
            assert_allclose(
                model.log_likelihood_p_p(theta, params, fraction),
                expected,
                rtol=1e-5,
                atol=1e-7,
            )

    @pytest.mark.parametrize("model_cls,params", MODELS_AND_PARAMS)
    def test_parameter_gradient(self, model_cls, params, rng):
        """Test the gradient of the item log-likelihood w.r.t. parameters."""
        model = model_cls()
        abilities = rng.normal(0, 1, 40)
        fractions = (rng.random(40) < 0.5).astype(float)
        vector = model.to_vector(params)

        _, grad = model.neg_log_likelihood_with_grad(
            vector, params, abilities, fractions
        )

        eps = 1e-6
        numeric = np.zeros_like(vector)
        for i in range(len(vector)):
            up, down = vector.copy(), vector.copy()
            up[i] += eps
            down[i] -= eps
            f_up, _ = model.neg_log_likelihood_with_grad(up, params, abilities, fractions)
            f_down, _ = model.neg_log_likelihood_with_grad(
                down, params, abilities, fractions
            )
            numeric[i] = (f_up - f_down) / (2 * eps)

        assert_allclose(grad, numeric, rtol=1e-4, atol=1e-6)


class TestFisherInformation:
    """Tests for Fisher information."""

    def test_2pl_closed_form(self):
        """Test I(θ) = a² P (1 - P) for the 2PL."""
        model = TwoParameterLogistic()
        params = {"difficulty": 0.5, "discrimination": 1.8}
        p = model.probability(0.0, params)
        assert_allclose(model.fisher_info(0.0, params), 1.8**2 * p * (1 - p))

    def test_3pl_matches_definition(self):
        """Test I(θ) = P'² / (P (1 - P)) for the 3PL."""
        model = ThreeParameterLogistic()
        params = {"difficulty": 0.0, "discrimination": 1.3, "guessing": 0.2}
        theta = 0.4
        p = model.probability(theta, params)
        dp = numeric_derivative(lambda t: model.probability(t, params), theta)
        assert_allclose(model.fisher_info(theta, params), dp**2 / (p * (1 - p)), rtol=1e-6)

    def test_peak_at_difficulty(self):
        """Test that 1PL information peaks where ability equals difficulty."""
        model = OneParameterLogistic()
        theta = np.linspace(-3, 3, 61)
        info = model.fisher_info(theta, {"difficulty": 1.0})
        assert_allclose(theta[np.argmax(info)], 1.0)
        assert_allclose(info.max(), 0.25)

    def test_guessing_lowers_information(self):
        """Test that a guessing floor reduces information."""
        two = TwoParameterLogistic()
        three = ThreeParameterLogistic()
        base = {"difficulty": 0.0, "discrimination": 1.0}
        assert three.fisher_info(0.0, {**base, "guessing": 0.3}) < two.fisher_info(
            0.0, base
        )


class TestParameterHandling:
    """Tests for parameter vectors, bounds and clamping."""

    def test_parameter_names(self):
        """Test the free parameters of each model."""
        assert OneParameterLogistic.parameter_names() == ["difficulty"]
        assert TwoParameterLogistic.parameter_names() == ["difficulty", "discrimination"]
        assert ThreeParameterLogistic.parameter_names() == [
            "difficulty",
            "discrimination",
            "guessing",
        ]

    def test_n_free_parameters(self):
        """Test the parameter count used by information criteria."""
        model = ThreeParameterLogistic()
        assert model.n_free_parameters(model.default_params()) == 3

    def test_vector_round_trip(self):
        """Test to_vector / from_vector."""
        model = TwoParameterLogistic()
        params = {"difficulty": 0.3, "discrimination": 1.4}
        assert model.from_vector(model.to_vector(params), params) == params

    def test_restrict_to_trusted_region(self):
        """Test clipping into the trusted region."""
        model = TwoParameterLogistic()
        restricted = model.restrict_to_trusted_region(
            {"difficulty": 12.0, "discrimination": 0.0}
        )
        assert restricted["difficulty"] == 6.0
        assert restricted["discrimination"] == model.trusted_region.discrimination_min

    def test_clamp_params_uses_sentinel(self):
        """Test that non-finite values are clamped to ±1000."""
        model = OneParameterLogistic()
        assert model.clamp_params({"difficulty": np.inf}) == {"difficulty": SENTINEL}
        assert model.clamp_params({"difficulty": -np.inf}) == {"difficulty": -SENTINEL}

    def test_is_compatible(self):
        """Test that a 1PL parameter set does not fit the 2PL."""
        assert not TwoParameterLogistic().is_compatible({"difficulty": 0.0})
        assert OneParameterLogistic().is_compatible(
            {"difficulty": 0.0, "discrimination": 1.0}
        )

    def test_copy_keeps_trusted_region(self):
        """Test that copies share the trusted region."""
        region = TrustedRegion(difficulty_sd=1.0)
        model = OneParameterLogistic(trusted_region=region)
        assert model.copy().trusted_region is region
