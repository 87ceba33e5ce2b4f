"""Bounded worker pool for per-file work."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, TypeVar

from reposweep.errors import OperationCancelled

T = TypeVar("T")
R = TypeVar("R")


def map_files(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int,
    cancel: threading.Event | None = None,
) -> list[R]:
    """Apply ``func`` to every item on a thread pool, keeping input order.

    ``cancel`` is checked before each item starts. Once set, items that have
    not started are dropped and ``OperationCancelled`` is raised after the
    in-flight ones finish.
    """
    items = list(items)
    results: list[R | None] = [None] * len(items)
    if not items:
        return []

    def run(item: T) -> R:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Cancelled between files")
        return func(item)

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(run, item): index for index, item in enumerate(items)}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except OperationCancelled:
            for future in futures:
                future.cancel()
            raise
    return results  # type: ignore[return-value]
