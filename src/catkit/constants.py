"""Constants for numerical stability, storage encoding and default bounds.

These are true constants that should not be user-configurable.
For configurable values, use function arguments with defaults.
"""

SENTINEL: float = 1000.0
"""Stand-in for an infinite estimate when parameters are stored."""

PROB_EPSILON: float = 1e-10
"""Small value to prevent log(0) and division by zero in probability calculations."""

DEFAULT_MAX_ITERATIONS: int = 5
"""Rounds of alternating item/ability estimation in a calibration run."""

NEWTON_TOLERANCE: float = 0.001
"""Step size below which Newton-Raphson ability estimation has converged."""

NEWTON_MAX_ITER: int = 50
"""Maximum Newton-Raphson iterations per examinee."""

NEWTON_MAX_STEP: float = 1.0
"""Largest ability change allowed in a single Newton-Raphson step."""

ABILITY_DIVERGENCE_LIMIT: float = 50.0
"""Ability magnitude beyond which an estimate is treated as divergent."""

ABILITY_UPDATE_THRESHOLD: float = 0.001
"""Ability change below which a live attempt counts the ability as unchanged."""

RUNTIME_ABILITY_BOUNDS: tuple[float, float] = (-5.0, 5.0)
"""Bounds for abilities used during a live attempt when estimation diverges."""

DEFAULT_DIFFICULTY_PRIOR: tuple[float, float] = (0.0, 2.0)
"""Mean and standard deviation of the Gaussian prior on item difficulty."""

CACHE_KEY_TEMPLATE: str = "progress_user_{examinee_id}_id_{attempt_id}"
"""Key under which attempt progress is mirrored in the volatile cache."""
