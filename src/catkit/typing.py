"""Type definitions for the catkit package."""

from typing import Literal, TypeAlias, Union

import numpy as np
from numpy.typing import NDArray

# Identifiers
ItemId: TypeAlias = int
ExamineeId: TypeAlias = int
ScaleId: TypeAlias = int

# Array types
AbilityArray = NDArray[np.float64]  # Shape: (n_observations,)
FractionArray = NDArray[np.float64]  # Shape: (n_observations,), values in [0, 1]

# Parameter values: scalars, or {fraction: step difficulty} for GPCM
ParamValue = Union[float, dict[float, float]]
ParamDict = dict[str, ParamValue]

# Examinee -> item -> {"fraction": float}
RawResponses = dict[ExamineeId, dict[ItemId, dict[str, float]]]

# Model type literals
DichotomousModelType = Literal["1PL", "2PL", "3PL"]
PolytomousModelType = Literal["PCM", "GPCM", "GRM", "GGRM"]
ModelType = Union[DichotomousModelType, PolytomousModelType]

# Model selection criteria
InformationCriterion = Literal["AIC", "BIC"]

# Where the first item of an attempt is taken from the difficulty-ordered pool
FirstItemStart = Literal[
    "current_ability",
    "easiest",
    "first_of_second_quintile",
    "first_of_second_quartile",
    "hardest_of_second_quartile",
    "mean_ability",
]
