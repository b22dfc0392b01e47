"""
Trade Console State Store — Per-Instrument Indicator State
============================================================
One mutable IndicatorState per instrument id, created lazily on the
first observation and owned exclusively by InstrumentStateStore.

Locking:
  - _map_lock guards only the dict shape (atomic get-or-insert)
  - each entry carries its own lock; with_state() runs the caller's
    function while holding it, so updates for one instrument never
    overlap while different instruments proceed in parallel
  - discard()/clear() take the entry lock before retiring an entry, so a
    reset never cuts into an in-flight update
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, TypeVar

from tradeconsole.history import BoundedHistory

logger = logging.getLogger(__name__)

R = TypeVar("R")

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

@dataclass
class IndicatorState:
    """Running accumulators for one instrument. Zero EMA means not yet seeded."""
    iv_history: BoundedHistory[Decimal]
    volume_history: BoundedHistory[int]
    cumulative_price_volume: Decimal = ZERO
    cumulative_volume: int = 0
    short_ema: Decimal = ZERO
    long_ema: Decimal = ZERO
    updates: int = 0

    @classmethod
    def create(cls, iv_capacity: int = 15, volume_capacity: int = 12) -> "IndicatorState":
        return cls(
            iv_history=BoundedHistory(iv_capacity),
            volume_history=BoundedHistory(volume_capacity),
        )


@dataclass(frozen=True)
class StateSnapshot:
    """Detached copy of an IndicatorState, safe to hold outside the lock."""
    instrument_id: str
    cumulative_price_volume: Decimal
    cumulative_volume: int
    short_ema: Decimal
    long_ema: Decimal
    iv_history: List[Decimal] = field(default_factory=list)
    volume_history: List[int] = field(default_factory=list)
    updates: int = 0


class _Entry:
    __slots__ = ("lock", "state", "retired")

    def __init__(self, state: IndicatorState):
        self.lock = threading.Lock()
        self.state = state
        self.retired = False


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class InstrumentStateStore:
    """
    Keyed map instrument_id -> IndicatorState with per-key mutual exclusion.

    Lock order is entry.lock before _map_lock; nothing takes an entry
    lock while holding _map_lock.

    Usage:
        store = InstrumentStateStore(lambda: IndicatorState.create(15, 12))
        vwap = store.with_state("52175", lambda state: update_vwap(state, obs))
    """

    def __init__(self, state_factory: Optional[Callable[[], IndicatorState]] = None):
        self._state_factory = state_factory or IndicatorState.create
        self._map_lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _get_or_create(self, instrument_id: str) -> _Entry:
        with self._map_lock:
            entry = self._entries.get(instrument_id)
            if entry is None:
                entry = _Entry(self._state_factory())
                self._entries[instrument_id] = entry
                logger.debug("New instrument state: %s", instrument_id)
            return entry

    def with_state(self, instrument_id: str, fn: Callable[[IndicatorState], R]) -> R:
        """Run fn with exclusive access to the instrument's state and return its result."""
        while True:
            entry = self._get_or_create(instrument_id)
            with entry.lock:
                if entry.retired:
                    # discarded while we waited; the next lookup re-seeds
                    continue
                return fn(entry.state)

    def peek(self, instrument_id: str) -> Optional[StateSnapshot]:
        with self._map_lock:
            entry = self._entries.get(instrument_id)
        if entry is None:
            return None
        with entry.lock:
            if entry.retired:
                return None
            s = entry.state
            return StateSnapshot(
                instrument_id=instrument_id,
                cumulative_price_volume=s.cumulative_price_volume,
                cumulative_volume=s.cumulative_volume,
                short_ema=s.short_ema,
                long_ema=s.long_ema,
                iv_history=s.iv_history.values(),
                volume_history=s.volume_history.values(),
                updates=s.updates,
            )

    def _retire(self, instrument_id: str) -> bool:
        with self._map_lock:
            entry = self._entries.get(instrument_id)
        if entry is None:
            return False
        # waits for an in-flight update on this instrument to finish
        with entry.lock:
            with self._map_lock:
                if self._entries.get(instrument_id) is entry:
                    del self._entries[instrument_id]
            if entry.retired:
                return False
            entry.retired = True
        return True

    def discard(self, instrument_id: str) -> bool:
        """Drop one instrument's state (e.g. on session rollover). Next tick re-seeds."""
        removed = self._retire(instrument_id)
        if removed:
            logger.info("Discarded state for %s", instrument_id)
        return removed

    def clear(self) -> int:
        count = sum(1 for instrument_id in self.instrument_ids() if self._retire(instrument_id))
        logger.info("Cleared state for %d instruments", count)
        return count

    def instrument_ids(self) -> List[str]:
        with self._map_lock:
            return list(self._entries)

    def __contains__(self, instrument_id: object) -> bool:
        with self._map_lock:
            return instrument_id in self._entries

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._entries)
