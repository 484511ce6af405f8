from __future__ import annotations

import itertools
import threading

import pytest

from spam_getblock.harness.params import RandomHeights
from spam_getblock.sapphire import MAX_HEIGHT, MIN_HEIGHT, random_heights


def test_heights_stay_in_closed_range() -> None:
    heights = RandomHeights(10, 12, seed=3)

    drawn = list(itertools.islice(heights, 500))

    assert set(drawn) == {10, 11, 12}


def test_seeded_sources_are_reproducible() -> None:
    first = list(itertools.islice(RandomHeights(0, 1_000_000, seed=42), 20))
    second = list(itertools.islice(RandomHeights(0, 1_000_000, seed=42), 20))

    assert first == second


def test_single_value_range() -> None:
    heights = RandomHeights(7, 7)

    assert [next(heights) for _ in range(5)] == [7] * 5


def test_empty_range_is_rejected() -> None:
    with pytest.raises(ValueError):
        RandomHeights(5, 4)


def test_shared_source_is_safe_across_threads() -> None:
    heights = RandomHeights(MIN_HEIGHT, MAX_HEIGHT, seed=1)
    drawn: list[int] = []
    lock = threading.Lock()

    def draw() -> None:
        local = [next(heights) for _ in range(200)]
        with lock:
            drawn.extend(local)

    threads = [threading.Thread(target=draw) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(drawn) == 1600
    assert all(MIN_HEIGHT <= height <= MAX_HEIGHT for height in drawn)


def test_sapphire_defaults() -> None:
    heights = random_heights(seed=9)

    assert (heights.lo, heights.hi) == (500_000, 899_999)
