"""
Bounded fan-out helper for independent units of work.

Results are collected in the calling thread and returned in submission
order, so callers aggregate from a single place and workers never share
mutable state.

Usage:
    counts = run_bounded(store.count_steps, circuit_ids, max_workers=4)
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(fn: Callable[[T], R], items: Iterable[T], *, max_workers: int = 1) -> list[R]:
    """Apply ``fn`` to every item with at most ``max_workers`` threads.

    ``max_workers <= 1`` runs inline, which is what session-bound stores
    need. ``fn`` is expected to capture its own failures; an exception
    escaping it propagates to the caller.
    """
    items = list(items)
    if max_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        return list(executor.map(fn, items))
