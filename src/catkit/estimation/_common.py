"""Shared helper utilities for estimation implementations."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def resolve_n_jobs(n_jobs: int) -> int:
    """Resolve n_jobs configuration, including -1 for all cores."""
    if n_jobs == -1:
        return os.cpu_count() or 1
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be positive or -1, got {n_jobs}")
    return n_jobs


def map_parallel(
    func: Callable[[T], R],
    tasks: Iterable[T],
    n_jobs: int,
) -> list[R]:
    """Apply ``func`` to every task either serially or with a thread pool.

    Results keep the order of ``tasks``.
    """
    tasks = list(tasks)
    if not tasks:
        return []

    worker_count = resolve_n_jobs(n_jobs)

    if worker_count == 1:
        return [func(task) for task in tasks]
    with ThreadPoolExecutor(max_workers=min(worker_count, len(tasks))) as executor:
        return list(executor.map(func, tasks))
