from catkit.models.base import (
    BaseItemModel,
    DichotomousItemModel,
    PolytomousItemModel,
)
from catkit.models.dichotomous import (
    OneParameterLogistic,
    Rasch,
    ThreeParameterLogistic,
    TwoParameterLogistic,
)
from catkit.models.polytomous import (
    GeneralizedGradedResponse,
    GeneralizedPartialCredit,
    GradedResponse,
    PartialCreditModel,
)
from catkit.models.registry import ModelRegistry, default_registry
from catkit.models.trusted_region import TrustedRegion

__all__ = [
    "BaseItemModel",
    "DichotomousItemModel",
    "PolytomousItemModel",
    "OneParameterLogistic",
    "Rasch",
    "TwoParameterLogistic",
    "ThreeParameterLogistic",
    "GeneralizedPartialCredit",
    "PartialCreditModel",
    "GeneralizedGradedResponse",
    "GradedResponse",
    "ModelRegistry",
    "default_registry",
    "TrustedRegion",
]
