from __future__ import annotations

import random
import threading


class RandomHeights:
    """Infinite iterator of uniformly drawn heights in the closed range ``[lo, hi]``.

    Draws go through a private ``random.Random`` behind a lock, so one instance
    can be shared by every task thread. Pass ``seed`` for a reproducible run.
    """

    def __init__(self, lo: int, hi: int, seed: int | None = None) -> None:
        if lo > hi:
            raise ValueError(f"empty height range [{lo}, {hi}]")
        self.lo = lo
        self.hi = hi
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def __iter__(self) -> RandomHeights:
        return self

    def __next__(self) -> int:
        with self._lock:
            return self._random.randint(self.lo, self.hi)

    def __repr__(self) -> str:
        return f"RandomHeights(lo={self.lo}, hi={self.hi})"
