"""Bounds and priors that keep item estimates in a plausible region."""

from __future__ import annotations

from dataclasses import dataclass

from catkit.constants import DEFAULT_DIFFICULTY_PRIOR


@dataclass(frozen=True)
class TrustedRegion:
    """Trusted region for item parameters.

    Difficulty is restricted to ``mean ± factor_sd * sd``, intersected
    with ``[difficulty_min, difficulty_max]``. When ``use_prior`` is set,
    a Gaussian prior with the same mean and sd is added to the item
    log-likelihood so that items answered (almost) uniformly stay finite.

    Parameters
    ----------
    difficulty_mean, difficulty_sd : float
        Location and spread of the difficulty prior.
    factor_sd : float
        Width of the difficulty region in prior standard deviations.
    difficulty_min, difficulty_max : float
        Hard limits on difficulty.
    discrimination_min, discrimination_max : float
        Limits on discrimination.
    guessing_min, guessing_max : float
        Limits on the guessing floor.
    use_prior : bool
        Whether to add the difficulty prior during estimation.
    """

    difficulty_mean: float = DEFAULT_DIFFICULTY_PRIOR[0]
    difficulty_sd: float = DEFAULT_DIFFICULTY_PRIOR[1]
    factor_sd: float = 3.0
    difficulty_min: float = -10.0
    difficulty_max: float = 10.0
    discrimination_min: float = 0.1
    discrimination_max: float = 5.0
    guessing_min: float = 0.0
    guessing_max: float = 0.5
    use_prior: bool = True

    def __post_init__(self) -> None:
        if self.difficulty_sd <= 0:
            raise ValueError("difficulty_sd must be positive")
        if self.factor_sd <= 0:
            raise ValueError("factor_sd must be positive")
        lo, hi = self.difficulty_bounds
        if lo >= hi:
            raise ValueError(f"Empty difficulty region [{lo}, {hi}]")
        if not 0 < self.discrimination_min < self.discrimination_max:
            raise ValueError("Discrimination bounds must satisfy 0 < min < max")
        if not 0 <= self.guessing_min < self.guessing_max < 1:
            raise ValueError("Guessing bounds must satisfy 0 <= min < max < 1")

    @property
    def difficulty_bounds(self) -> tuple[float, float]:
        width = self.factor_sd * self.difficulty_sd
        return (
            max(self.difficulty_mean - width, self.difficulty_min),
            min(self.difficulty_mean + width, self.difficulty_max),
        )

    def bounds_for(self, name: str) -> tuple[float, float]:
        if name in ("difficulty", "intercepts"):
            return self.difficulty_bounds
        if name == "discrimination":
            return (self.discrimination_min, self.discrimination_max)
        if name == "guessing":
            return (self.guessing_min, self.guessing_max)
        raise KeyError(f"No trusted region defined for parameter '{name}'")

    def difficulty_log_prior(self, difficulty: float) -> float:
        z = (difficulty - self.difficulty_mean) / self.difficulty_sd
        return -0.5 * z * z

    def difficulty_log_prior_grad(self, difficulty: float) -> float:
        return -(difficulty - self.difficulty_mean) / self.difficulty_sd**2
