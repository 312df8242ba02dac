"""
Bounded-parallelism helpers used by the batch operations.

Failure policy (fail-fast without cancellation): once any task raises, no
new task is started. Tasks already in flight are allowed to finish and
their outcomes are discarded. The first failure is then re-raised to the
caller unchanged. A failed batch therefore leaves an unspecified subset of
the later items processed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from .errors import InvalidArgumentError

T = TypeVar("T")
R = TypeVar("R")

log = logging.getLogger(__name__)


class ConcurrencyLimiter:
    """Runs an async task over a sequence with at most `concurrency` in flight."""

    def __init__(self, concurrency: int = 5) -> None:
        if (
            isinstance(concurrency, bool)
            or not isinstance(concurrency, int)
            or concurrency <= 0
        ):
            raise InvalidArgumentError(
                f"concurrency must be a positive integer, got {concurrency!r}"
            )
        self.concurrency = concurrency

    async def run(
        self, items: Sequence[T], task: Callable[[T], Awaitable[R]]
    ) -> list[R]:
        """
        Run task over every item and return the results in input order.
        Raises the first task failure once in-flight tasks have settled.
        """
        items = list(items)
        if not items:
            return []

        results: list[R | None] = [None] * len(items)
        pending = iter(enumerate(items))
        failures: list[BaseException] = []

        async def worker() -> None:
            # Workers share one iterator; the check happens before each pull
            while not failures:
                try:
                    index, item = next(pending)
                except StopIteration:
                    return
                try:
                    results[index] = await task(item)
                except Exception as e:
                    if not failures:
                        log.debug("Batch task failed for %r, halting: %s", item, e)
                    failures.append(e)
                    return

        workers = min(self.concurrency, len(items))
        await asyncio.gather(*(worker() for _ in range(workers)))

        if failures:
            raise failures[0]
        return results  # type: ignore[return-value]


async def bounded_map(
    concurrency: int, items: Sequence[T], task: Callable[[T], Awaitable[R]]
) -> list[R]:
    return await ConcurrencyLimiter(concurrency).run(items, task)
