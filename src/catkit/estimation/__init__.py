from catkit.estimation.ability import AbilityEstimate, AbilityEstimator, estimate_ability
from catkit.estimation.base import BaseEstimator
from catkit.estimation.items import ItemEstimator
from catkit.estimation.newton import NewtonResult, newton_raphson
from catkit.estimation.strategy import CalibrationStrategy, calibrate

__all__ = [
    "AbilityEstimate",
    "AbilityEstimator",
    "estimate_ability",
    "BaseEstimator",
    "ItemEstimator",
    "NewtonResult",
    "newton_raphson",
    "CalibrationStrategy",
    "calibrate",
]
