"""Result container for calibration runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from catkit.params.item_params import ItemParamList
    from catkit.params.person_params import PersonParamList


@dataclass
class IterationRecord:
    """Summary of one round of alternating item/ability estimation.

    Attributes
    ----------
    iteration : int
        One-based round number.
    log_likelihood : float
        Log-likelihood of all responses under the selected item parameters
        and the updated abilities, extreme abilities excluded.
    max_ability_change : float
        Largest change of a finite ability compared with the round before.
    n_selected : dict of str to int
        Number of items won by each model.
    """

    iteration: int
    log_likelihood: float
    max_ability_change: float
    n_selected: dict[str, int] = field(default_factory=dict)


@dataclass
class CalibrationResult:
    """Container for the outcome of a calibration run.

    Parameters
    ----------
    item_params : dict of str to ItemParamList
        Estimated parameters per model.
    selected : ItemParamList
        Winning parameters per item.
    person_params : PersonParamList
        Final abilities.
    n_iterations : int
        Rounds performed.
    converged : bool
        Whether the optional ability-change threshold was reached. Always
        False when no threshold is configured.
    history : list of IterationRecord
        Per-round summaries.
    context_id : int
        Calibration context.

    Examples
    --------
    >>> result = calibrate(strategy, store)
    >>> print(result.summary())
    """

    item_params: dict[str, ItemParamList]
    selected: ItemParamList
    person_params: PersonParamList
    n_iterations: int
    converged: bool
    history: list[IterationRecord] = field(default_factory=list)
    context_id: int = 0

    @property
    def log_likelihood(self) -> float:
        return self.history[-1].log_likelihood if self.history else float("nan")

    def model_counts(self) -> dict[str, int]:
        counts = {name: 0 for name in self.item_params}
        for param in self.selected:
            counts[param.model_name] = counts.get(param.model_name, 0) + 1
        return counts

    def summary(self) -> str:
        """Generate a formatted summary of the run."""
        width = 60
        lines = ["=" * width, f"{'Calibration Results':^{width}}", "=" * width]
        lines.append(
            f"Context:        {self.context_id:<14} "
            f"Log-Likelihood: {self.log_likelihood:>12.4f}"
        )
        lines.append(
            f"No. Items:      {len(self.selected):<14} "
            f"No. Persons:    {len(self.person_params):>12}"
        )
        lines.append(
            f"Iterations:     {self.n_iterations:<14} "
            f"Converged:      {str(self.converged):>12}"
        )
        lines.append("-" * width)
        lines.append(f"{'Model':<15} {'Items selected':>15}")
        for name, count in self.model_counts().items():
            lines.append(f"{name:<15} {count:>15}")
        lines.append("=" * width)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CalibrationResult(n_items={len(self.selected)}, "
            f"n_persons={len(self.person_params)}, "
            f"n_iterations={self.n_iterations})"
        )
