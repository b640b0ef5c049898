"""Core utility functions with no internal dependencies.

This module provides the numerically stable logistic function and the
helpers that translate between finite domain values and the ±1000
storage sentinel. Nothing here imports other catkit modules, so it can
be used anywhere without circular import issues.
"""

import numpy as np
from numpy.typing import NDArray

from catkit.constants import SENTINEL


def sigmoid(x: NDArray[np.floating] | float) -> NDArray[np.floating] | float:
    """Compute sigmoid function with numerical stability.

    Uses the identity sigmoid(-x) = 1 - sigmoid(x) to avoid overflow
    for large negative values.

    Parameters
    ----------
    x : array_like or float
        Input values.

    Returns
    -------
    array_like or float
        Sigmoid of input, same shape as input.
    """
    x = np.asarray(x, dtype=np.float64)
    with np.errstate(over="ignore"):
        result = np.where(
            x >= 0, 1.0 / (1.0 + np.exp(-x)), np.exp(x) / (1.0 + np.exp(x))
        )
    return float(result) if result.ndim == 0 else result


def clamp_to_sentinel(value: float) -> float:
    """Encode a value for storage.

    Non-finite values and magnitudes beyond the sentinel become ±1000,
    keeping the sign. NaN has no sign and is encoded as -1000.
    """
    value = float(value)
    if np.isnan(value):
        return -SENTINEL
    if not np.isfinite(value) or abs(value) >= SENTINEL:
        return SENTINEL if value > 0 else -SENTINEL
    return value


def decode_sentinel(value: float) -> float:
    """Decode a stored value, mapping ±1000 back to ±inf."""
    value = float(value)
    if value >= SENTINEL:
        return float("inf")
    if value <= -SENTINEL:
        return float("-inf")
    return value


def is_sentinel(value: float) -> bool:
    """Return True if ``value`` is the sentinel or an encoded infinity."""
    value = float(value)
    return bool(np.isnan(value) or not np.isfinite(value) or abs(value) >= SENTINEL)
