"""
pool.py - Bounded-concurrency worker pool.

Runs an async worker over a list of items with at most ``concurrency``
calls in flight. When a slot frees up the next queued item starts. A failing
item never cancels its siblings; results and failures are reported together
once everything has finished.

Usage:
    from rover.runtime.pool import run_bounded

    result = await run_bounded(task_ids, run_task, concurrency=4)
    for item, error in result.failures:
        logger.warning("Task %s failed: %s", item, error)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, List, Set, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 4


@dataclass
class PoolResult(Generic[T, R]):
    """Aggregated outcome of a pool run.

    Attributes:
        results: (item, result) pairs in completion order.
        failures: (item, exception) pairs in completion order.
    """

    results: List[Tuple[T, R]] = field(default_factory=list)
    failures: List[Tuple[T, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> PoolResult[T, R]:
    """Run ``worker`` over ``items`` with bounded concurrency.

    Args:
        items: Work items, started in iteration order.
        worker: Coroutine function called once per item.
        concurrency: Maximum number of workers in flight.

    Returns:
        PoolResult with every success and failure.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    queue = list(items)
    queue.reverse()
    in_flight: Set[asyncio.Task] = set()
    owners: dict = {}
    result: PoolResult[T, R] = PoolResult()

    def _start_next() -> None:
        item = queue.pop()
        task = asyncio.ensure_future(worker(item))
        owners[task] = item
        in_flight.add(task)

    while queue and len(in_flight) < concurrency:
        _start_next()

    while in_flight:
        done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            in_flight.discard(task)
            item: Any = owners.pop(task)
            error = task.exception()
            if error is not None:
                logger.warning("Worker failed for %r: %s", item, error)
                result.failures.append((item, error))
            else:
                result.results.append((item, task.result()))
            if queue:
                _start_next()

    return result
