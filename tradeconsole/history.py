"""
Trade Console History — Bounded FIFO Sample Buffer
====================================================
Fixed-capacity history of numeric samples. Pushing into a full buffer
drops the oldest sample first, so length never exceeds capacity.

Used for the rolling implied-volatility and volume windows.
"""

from __future__ import annotations

from collections import deque
from decimal import Decimal
from typing import Callable, Deque, Generic, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T", int, Decimal)


class _FilteredView(Generic[T]):
    """Lazy, restartable view over the samples matching a predicate."""

    def __init__(self, samples: Deque[T], predicate: Callable[[T], bool]):
        self._samples = samples
        self._predicate = predicate

    def __iter__(self) -> Iterator[T]:
        return (v for v in self._samples if self._predicate(v))


class BoundedHistory(Generic[T]):
    def __init__(self, capacity: int, initial: Optional[Iterable[T]] = None):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._samples: Deque[T] = deque(maxlen=capacity)
        for value in initial or ():
            self.push(value)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def push(self, value: T) -> None:
        # deque(maxlen) evicts from the left on overflow
        self._samples.append(value)

    def valid_values(self, predicate: Callable[[T], bool]) -> Iterable[T]:
        return _FilteredView(self._samples, predicate)

    def mean(self, predicate: Optional[Callable[[T], bool]] = None) -> Optional[Decimal]:
        """Average of the (filtered) samples as Decimal, None when nothing qualifies."""
        selected = list(self.valid_values(predicate)) if predicate else list(self._samples)
        if not selected:
            return None
        total = sum((Decimal(v) for v in selected), Decimal("0"))
        return total / len(selected)

    def values(self) -> List[T]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._samples))

    def __repr__(self) -> str:
        return f"BoundedHistory(capacity={self.capacity}, values={list(self._samples)!r})"
