from catkit.storage.base import (
    AttemptStore,
    ParameterStore,
    PlayHistory,
    ProgressCache,
    ResponseSource,
)
from catkit.storage.memory import (
    DictResponseSource,
    InMemoryAttemptStore,
    InMemoryCache,
    InMemoryParameterStore,
    InMemoryPlayHistory,
)

__all__ = [
    "AttemptStore",
    "ParameterStore",
    "PlayHistory",
    "ProgressCache",
    "ResponseSource",
    "DictResponseSource",
    "InMemoryAttemptStore",
    "InMemoryCache",
    "InMemoryParameterStore",
    "InMemoryPlayHistory",
]
