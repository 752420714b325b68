# ruff: noqa: E402, I001
from __future__ import annotations

import threading
import time

import pytest

from ledger_insights.pmap import p_map


def test_results_keep_input_order() -> None:
    def slow_inverse(n: int) -> int:
        time.sleep(0.01 * (5 - n))
        return n * 10

    assert p_map(range(5), slow_inverse, concurrency=3) == [0, 10, 20, 30, 40]


def test_concurrency_is_bounded() -> None:
    lock = threading.Lock()
    active = peak = 0

    def track(_: int) -> None:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1

    p_map(range(8), track, concurrency=2)
    assert peak <= 2


def test_first_error_propagates() -> None:
    def boom(n: int) -> int:
        if n == 2:
            raise KeyError(n)
        return n

    with pytest.raises(KeyError):
        p_map(range(4), boom, concurrency=2)


def test_collects_all_errors_when_asked() -> None:
    def boom(n: int) -> int:
        raise ValueError(n)

    with pytest.raises(ExceptionGroup) as ei:
        p_map(range(3), boom, concurrency=2, stop_on_error=False)
    assert len(ei.value.exceptions) == 3


@pytest.mark.parametrize("bad", [0, -1, True, 1.5])
def test_rejects_bad_concurrency(bad) -> None:
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=bad)
