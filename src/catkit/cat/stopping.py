"""Stopping rules for adaptive attempts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal

from catkit.cat.results import StopReason

if TYPE_CHECKING:
    from catkit.cat.results import CATState


class StoppingRule(ABC):
    """Abstract base class for stopping rules.

    Stopping rules determine when an attempt should end, based on the
    precision of the ability estimate or on its length.
    """

    stop_reason: StopReason = StopReason.ERROR

    @abstractmethod
    def should_stop(self, state: CATState) -> bool:
        """Check if the attempt should stop.

        Parameters
        ----------
        state : CATState
            Current state of the attempt.

        Returns
        -------
        bool
            True if the attempt should stop, False otherwise.
        """
        pass

    @abstractmethod
    def get_reason(self) -> str:
        """Get the reason for stopping.

        Returns
        -------
        str
            Description of why the attempt stopped.
        """
        pass


class StandardErrorStop(StoppingRule):
    """Stop when the standard error falls to a threshold.

    Parameters
    ----------
    threshold : float
        Largest acceptable standard error. Default is 0.3.
    """

    stop_reason = StopReason.REACHED_TARGET_STANDARD_ERROR

    def __init__(self, threshold: float = 0.3):
        if threshold <= 0:
            raise ValueError("SE threshold must be positive")
        self.threshold = threshold

    def should_stop(self, state: CATState) -> bool:
        return state.standard_error <= self.threshold

    def get_reason(self) -> str:
        return f"SE threshold reached (SE <= {self.threshold})"


class CombinedStop(StoppingRule):
    """Combine multiple stopping rules with logical operators.

    Parameters
    ----------
    rules : list[StoppingRule]
        List of stopping rules to combine.
    operator : {"and", "or"}
        Logical operator for combining rules. Default is "or".
        - "or": Stop when ANY rule is satisfied
        - "and": Stop when ALL rules are satisfied
    min_items : int
        Minimum items before the rules are evaluated. Default is 0.
    """

    def __init__(
        self,
        rules: list[StoppingRule],
        operator: Literal["and", "or"] = "or",
        min_items: int = 0,
    ):
        if not rules:
            raise ValueError("At least one rule is required")
        if operator not in ("and", "or"):
            raise ValueError("operator must be 'and' or 'or'")

        self.rules = rules
        self.operator = operator
        self.min_items = min_items
        self._triggered_rule: StoppingRule | None = None

    def should_stop(self, state: CATState) -> bool:
        if state.n_items < self.min_items:
            return False

        results = [rule.should_stop(state) for rule in self.rules]

        if self.operator == "or":
            for rule, result in zip(self.rules, results):
                if result:
                    self._triggered_rule = rule
                    return True
            return False
        else:
            if all(results):
                self._triggered_rule = self.rules[0]
                return True
            return False

    @property
    def stop_reason(self) -> StopReason:  # type: ignore[override]
        if self._triggered_rule is not None:
            return self._triggered_rule.stop_reason
        return StopReason.ERROR

    def get_reason(self) -> str:
        if self._triggered_rule is not None:
            return self._triggered_rule.get_reason()
        return f"Combined rule ({self.operator})"

    def reset(self) -> None:
        self._triggered_rule = None
