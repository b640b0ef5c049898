"""Exception hierarchy for catkit.

``ConvergenceFailure`` and ``ExhaustedCandidatesError`` are recoverable:
public entry points translate them into item statuses or stop reasons
and never let them escape. The others abort the current operation; see
:mod:`catkit._runtime_config` for how debug mode decides between raising
and degrading.
"""


class CatkitError(Exception):
    """Base class for all catkit errors."""


class ConfigurationError(CatkitError, ValueError):
    """Invalid configuration, such as an unknown model name or a dangling override."""


class ConvergenceFailure(CatkitError, ArithmeticError):
    """An optimization did not converge.

    Parameters
    ----------
    message : str
        Description of the failure.
    last_value : optional
        Last iterate before giving up, a float for ability searches and a
        parameter dictionary for item estimation.
    """

    def __init__(self, message: str, last_value: object = None):
        super().__init__(message)
        self.last_value = last_value


class DataIntegrityError(CatkitError):
    """Stored data is missing or inconsistent."""


class ExhaustedCandidatesError(CatkitError):
    """No candidate items remain for selection."""


class SessionMismatchError(CatkitError):
    """A runtime request carried a stale or foreign session token."""

    def __init__(self, attempt_id: int, expected: str | None, received: str | None):
        super().__init__(
            f"Session token mismatch for attempt {attempt_id}: "
            f"expected {expected!r}, got {received!r}"
        )
        self.attempt_id = attempt_id
        self.expected = expected
        self.received = received
