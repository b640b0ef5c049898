"""Pytest configuration and shared fixtures."""

import numpy as np
import pytest

from catkit.models.registry import default_registry
from catkit.params.item_params import ItemParameter, ItemParamList, ItemStatus
from catkit.storage.memory import (
    InMemoryAttemptStore,
    InMemoryCache,
    InMemoryParameterStore,
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def clock():
    """Clock that only moves when told to."""
    return FakeClock()


@pytest.fixture
def registry():
    """Fresh registry with the built-in models."""
    return default_registry()


@pytest.fixture
def parameter_store(registry, clock):
    return InMemoryParameterStore(registry, clock=clock)


@pytest.fixture
def attempt_store():
    return InMemoryAttemptStore()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def dichotomous_raw(rng):
    """Simulated 1PL responses, ``{examinee: {item: {"fraction": f}}}``."""
    n_persons, n_items = 200, 8

    theta = rng.standard_normal(n_persons)
    difficulty = np.linspace(-1.5, 1.5, n_items)

    probs = 1 / (1 + np.exp(-(theta[:, None] - difficulty)))
    responses = (rng.random((n_persons, n_items)) < probs).astype(float)

    item_ids = list(range(101, 101 + n_items))
    raw = {
        examinee: {
            item_id: {"fraction": float(responses[examinee - 1, j])}
            for j, item_id in enumerate(item_ids)
        }
        for examinee in range(1, n_persons + 1)
    }
    return {
        "raw": raw,
        "theta": theta,
        "difficulty": difficulty,
        "item_ids": item_ids,
    }


@pytest.fixture
def item_bank():
    """Ten calibrated 1PL items with ids 1..10, easiest first."""
    difficulties = np.linspace(-2.0, 2.0, 10)
    return ItemParamList(
        ItemParameter(
            item_id=i + 1,
            model_name="1PL",
            params={"difficulty": float(b)},
            status=ItemStatus.SET_BY_STRATEGY,
        )
        for i, b in enumerate(difficulties)
    )
