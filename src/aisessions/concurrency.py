"""Bounded thread-pool fan-out with per-unit failure isolation."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def map_isolated(
    func: Callable[[T], Optional[R]],
    items: Iterable[T],
    max_workers: int,
    label: str = "task",
) -> list[R]:
    """Run ``func`` over ``items`` on at most ``max_workers`` threads.

    Results come back in input order. A unit that raises is logged and
    contributes nothing, as does one that returns None; siblings keep running.
    """
    items = list(items)
    if not items:
        return []

    results: list[R] = []
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as ex:
        futures = [(item, ex.submit(func, item)) for item in items]
        for item, future in futures:
            try:
                result = future.result()
            except Exception as e:
                logger.warning("%s failed for %s: %s", label, item, e)
                continue
            if result is not None:
                results.append(result)
    return results
