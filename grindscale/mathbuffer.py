"""Fixed-size ring buffer of timestamped samples with windowed statistics."""

from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque, Iterator, Optional, Tuple

Clock = Callable[[], float]


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class MathBuffer:
    """Keeps the most recent ``capacity`` samples, each stamped with the clock in ms.

    Queries walk from the newest sample towards the oldest and stop at the
    first sample stamped before the cutoff.
    """

    def __init__(self, capacity: int = 100, clock: Optional[Clock] = None) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._clock: Clock = clock if clock is not None else _monotonic_ms
        self._samples: Deque[Tuple[float, int]] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._samples)

    def push(self, value: float) -> bool:
        """Add a sample stamped with the current time; return True once the buffer is full."""
        self._samples.append((value, int(self._clock())))
        return len(self._samples) == self.capacity

    def samples_since(self, cutoff_ms: float) -> Iterator[Tuple[float, int]]:
        """Yield ``(value, timestamp)`` pairs from newest to oldest, stopping before the cutoff."""
        for value, stamp in reversed(self._samples):
            if stamp < cutoff_ms:
                return
            yield value, stamp

    def count_since(self, cutoff_ms: float) -> int:
        return sum(1 for _ in self.samples_since(cutoff_ms))

    def average_since(self, cutoff_ms: float) -> float:
        """Mean of the samples since the cutoff, or 0 when there are none."""
        count = self.count_since(cutoff_ms)
        if count == 0:
            return 0.0
        return sum(value / count for value, _ in self.samples_since(cutoff_ms))

    def max_since(self, cutoff_ms: float) -> float:
        """Largest sample since the cutoff, or 0 when there are none."""
        return max((value for value, _ in self.samples_since(cutoff_ms)), default=0)

    def min_since(self, cutoff_ms: float) -> float:
        """Smallest sample since the cutoff, or 0 when there are none."""
        return min((value for value, _ in self.samples_since(cutoff_ms)), default=0)

    def first_value_older_than(self, cutoff_ms: float) -> float:
        """Newest sample stamped before the cutoff, or 0 when there is none."""
        for value, stamp in reversed(self._samples):
            if stamp < cutoff_ms:
                return value
        return 0