"""Dichotomous IRT models: 1PL, 2PL, 3PL."""

from catkit.models.base import DichotomousItemModel
from catkit.typing import ParamDict


class OneParameterLogistic(DichotomousItemModel):
    """One-Parameter Logistic (1PL / Rasch) IRT Model.

    Discrimination is fixed at 1; only difficulty (b) is estimated:

    P(X=1|θ) = 1 / (1 + exp(-(θ - b)))

    Examples
    --------
    >>> model = OneParameterLogistic()
    >>> model.probability(0.0, {"difficulty": 0.0})
    0.5
    """

    model_name = "1PL"

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["difficulty"]

    def _components(self, params: ParamDict) -> tuple[float, float, float]:
        return 1.0, float(params["difficulty"]), 0.0


class TwoParameterLogistic(DichotomousItemModel):
    """Two-Parameter Logistic (2PL) IRT Model.

    The 2PL model includes discrimination (a) and difficulty (b) parameters:

    P(X=1|θ) = 1 / (1 + exp(-a * (θ - b)))

    Fisher information is I(θ) = a² P (1 - P), so highly discriminating
    items are most informative close to their difficulty.
    """

    model_name = "2PL"

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["difficulty", "discrimination"]

    def _components(self, params: ParamDict) -> tuple[float, float, float]:
        return float(params["discrimination"]), float(params["difficulty"]), 0.0


class ThreeParameterLogistic(DichotomousItemModel):
    """Three-Parameter Logistic (3PL) IRT Model.

    Adds a lower asymptote (guessing) parameter c to the 2PL:

    P(X=1|θ) = c + (1 - c) / (1 + exp(-a * (θ - b)))

    Parameters
    ----------
    trusted_region : TrustedRegion, optional
        Bounds for the estimated parameters. The guessing bounds default
        to [0, 0.5].
    """

    model_name = "3PL"

    @classmethod
    def parameter_names(cls) -> list[str]:
        return ["difficulty", "discrimination", "guessing"]

    def default_params(self, fractions: list[float] | None = None) -> ParamDict:
        return {"difficulty": 0.0, "discrimination": 1.0, "guessing": 0.1}

    def _components(self, params: ParamDict) -> tuple[float, float, float]:
        return (
            float(params["discrimination"]),
            float(params["difficulty"]),
            float(params["guessing"]),
        )


Rasch = OneParameterLogistic
