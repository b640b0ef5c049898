"""Item response theory calibration and computerized adaptive testing.

The calibration engine estimates item parameters for several response
models and picks the best model per item by an information criterion.
The adaptive runtime serves items to live attempts from those
parameters.
"""

from catkit._runtime_config import get_debug, get_runtime_info, set_debug
from catkit._version import __version__
from catkit.cat import (
    AdaptiveEngine,
    AttemptProgress,
    CATState,
    QuizSettings,
    SelectionOutcome,
    StopReason,
)
from catkit.estimation import (
    AbilityEstimate,
    CalibrationStrategy,
    calibrate,
    estimate_ability,
)
from catkit.exceptions import (
    CatkitError,
    ConfigurationError,
    ConvergenceFailure,
    DataIntegrityError,
    ExhaustedCandidatesError,
    SessionMismatchError,
)
from catkit.models import (
    GeneralizedGradedResponse,
    GeneralizedPartialCredit,
    GradedResponse,
    ModelRegistry,
    OneParameterLogistic,
    PartialCreditModel,
    Rasch,
    ThreeParameterLogistic,
    TwoParameterLogistic,
    default_registry,
)
from catkit.params import (
    ItemParameter,
    ItemParamList,
    ItemStatus,
    PersonParameter,
    PersonParamList,
    ResponseMatrix,
)
from catkit.results import CalibrationResult
from catkit.scales import ScaleHierarchy

__all__ = [
    "__version__",
    # Runtime configuration
    "set_debug",
    "get_debug",
    "get_runtime_info",
    # Errors
    "CatkitError",
    "ConfigurationError",
    "ConvergenceFailure",
    "DataIntegrityError",
    "ExhaustedCandidatesError",
    "SessionMismatchError",
    # Models
    "ModelRegistry",
    "default_registry",
    "Rasch",
    "OneParameterLogistic",
    "TwoParameterLogistic",
    "ThreeParameterLogistic",
    "PartialCreditModel",
    "GeneralizedPartialCredit",
    "GradedResponse",
    "GeneralizedGradedResponse",
    # Parameters
    "ItemParameter",
    "ItemParamList",
    "ItemStatus",
    "PersonParameter",
    "PersonParamList",
    "ResponseMatrix",
    "ScaleHierarchy",
    # Calibration
    "CalibrationStrategy",
    "CalibrationResult",
    "calibrate",
    "AbilityEstimate",
    "estimate_ability",
    # Adaptive runtime
    "AdaptiveEngine",
    "AttemptProgress",
    "CATState",
    "QuizSettings",
    "SelectionOutcome",
    "StopReason",
]
