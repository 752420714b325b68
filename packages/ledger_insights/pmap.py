"""Order-preserving concurrent map over a bounded thread pool.

Oracle batches are network-bound, so a small thread pool keeps several in
flight while the caller still sees results in input order.

- ``concurrency`` caps how many mapper calls run at once.
- ``stop_on_error=True`` (default) propagates the first failure and cancels
  work that has not started.
- ``stop_on_error=False`` runs everything and raises an ``ExceptionGroup``
  of all failures at the end.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    in_flight: dict[Future[OutT], int] = {}

    def _top_up(pool: ThreadPoolExecutor) -> None:
        while len(in_flight) < concurrency:
            nxt = next(pending, None)
            if nxt is None:
                return
            idx, item = nxt
            in_flight[pool.submit(mapper, item)] = idx

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        _top_up(pool)
        while in_flight:
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = in_flight.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:
                    if stop_on_error:
                        for other in in_flight:
                            other.cancel()
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
            _top_up(pool)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in sorted(results)]


__all__ = ["p_map"]
