"""Runtime environment selection utilities for :mod:`catkit`.

Debug mode decides how non-recoverable data and configuration problems
are handled. In debug mode they raise; in production mode they log a
warning and continue with a documented fallback.

The initial flag is read from the ``CATKIT_DEBUG`` environment variable
when the module is imported.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from catkit.exceptions import CatkitError

logger = logging.getLogger(__name__)


class RuntimeSettings(BaseSettings):
    """Runtime settings loaded from ``CATKIT_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="CATKIT_", env_ignore_empty=True)

    debug: bool = False


def load_settings() -> RuntimeSettings:
    """Read the runtime settings from the current environment."""
    return RuntimeSettings()


_DEBUG: bool = load_settings().debug


def set_debug(enabled: bool) -> None:
    """Switch debug mode on or off for the whole process."""
    global _DEBUG

    if not isinstance(enabled, bool):
        raise ValueError(f"Invalid debug flag {enabled!r}. Must be True or False")

    _DEBUG = enabled


def get_debug() -> bool:
    """Get the current process-wide debug flag."""
    return _DEBUG


def resolve_debug(debug: bool | None) -> bool:
    """Return ``debug`` if given, else the process-wide flag."""
    return _DEBUG if debug is None else debug


def debug_or_warn(exc: CatkitError, debug: bool | None = None) -> None:
    """Raise ``exc`` in debug mode, otherwise log it as a warning."""
    if resolve_debug(debug):
        raise exc
    logger.warning("%s: %s", type(exc).__name__, exc)


def get_runtime_info() -> dict[str, Any]:
    """Get information about the runtime configuration."""
    return {
        "debug": _DEBUG,
        "env_debug": load_settings().debug,
    }
