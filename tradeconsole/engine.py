"""
Trade Console Analysis Engine — Public Entry Point
====================================================
Accepts one Observation per tick, updates that instrument's running
indicators and returns one AnalysisResult.

Flow per submit():
  1. Boundary sanitisation (negative prices/volumes/IV clamped to 0)
  2. Config snapshot (one consistent view of lengths and thresholds)
  3. Per-instrument critical section in InstrumentStateStore:
       VWAP → short/long EMA → IV window → volume window → rule table
       → result queued on the notification channel (never blocks)
  4. Instrument lock released, result returned to the caller

Thread-safe: any number of feed threads may call submit() concurrently.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from tradeconsole.config import AnalysisParams, LiveAnalysisConfig
from tradeconsole.event_bus import ResultCallback, ResultDispatcher
from tradeconsole.events import AnalysisError, AnalysisResult, Observation, ObservationRejected
from tradeconsole.indicators import apply_emas, apply_iv, apply_volume, apply_vwap
from tradeconsole.signals import classify, synthesize
from tradeconsole.state_store import IndicatorState, InstrumentStateStore, StateSnapshot

logger = logging.getLogger(__name__)

_CLAMPED_FIELDS: Dict[str, Any] = {
    "last_price": Decimal("0"),
    "avg_trade_price": Decimal("0"),
    "last_traded_quantity": 0,
    "cumulative_volume": 0,
    "implied_volatility": Decimal("0"),
}


def sanitize_observation(obs: Observation) -> Observation:
    """Clamp negative numeric fields to zero. Corrupt ticks degrade signals, they don't stop ingestion."""
    clamped = {
        name: zero for name, zero in _CLAMPED_FIELDS.items() if getattr(obs, name) < 0
    }
    if not clamped:
        return obs
    logger.warning(
        "Clamped negative fields %s to 0 for %s", sorted(clamped), obs.instrument_id,
    )
    return obs.model_copy(update=clamped)


class AnalysisEngine:
    """
    Streaming indicator/signal engine.

    Usage:
        engine = AnalysisEngine()
        engine.subscribe(board.apply)          # optional notification channel
        result = engine.submit(observation)
        engine.config.set_short_ema_length(12)
        engine.stop()
    """

    def __init__(
        self,
        config: Optional[LiveAnalysisConfig] = None,
        dispatcher: Optional[ResultDispatcher] = None,
    ):
        self.config = config or LiveAnalysisConfig()
        self._dispatcher = dispatcher or ResultDispatcher()
        self._store = InstrumentStateStore(self._new_state)

    def _new_state(self) -> IndicatorState:
        params = self.config.snapshot()
        return IndicatorState.create(params.iv_history_capacity, params.volume_history_capacity)

    # -----------------------------------------------------------------------
    # Submission
    # -----------------------------------------------------------------------

    def submit(self, observation: Observation) -> AnalysisResult:
        obs = sanitize_observation(observation)
        params = self.config.snapshot()
        try:
            return self._store.with_state(
                obs.instrument_id, lambda state: self._analyze_and_emit(state, obs, params)
            )
        except Exception as e:
            logger.error("Analysis failed for %s: %s", obs.instrument_id, e, exc_info=True)
            raise AnalysisError(f"analysis failed: {e}", obs.instrument_id) from e

    def _analyze_and_emit(
        self, state: IndicatorState, obs: Observation, params: AnalysisParams
    ) -> AnalysisResult:
        # Runs under the instrument lock: results for one instrument are queued
        # in the same order their updates were applied.
        result = self._analyze(state, obs, params)
        if self._dispatcher.is_running:
            self._dispatcher.dispatch(result)
        return result

    def submit_raw(self, payload: Mapping[str, Any]) -> AnalysisResult:
        """Validate a feed dict into an Observation, then submit it."""
        try:
            obs = Observation.model_validate(dict(payload))
        except ValidationError as e:
            instrument_id = str(payload.get("instrument_id", "") or "")
            logger.warning("Rejected observation for %r: %s", instrument_id, e)
            raise ObservationRejected(str(e), instrument_id) from e
        return self.submit(obs)

    @staticmethod
    def _analyze(state: IndicatorState, obs: Observation, params: AnalysisParams) -> AnalysisResult:
        vwap = apply_vwap(state, obs)
        short_ema, long_ema = apply_emas(state, obs, params)
        iv = apply_iv(state, obs, params)
        volume = apply_volume(state, obs, params)
        state.updates += 1

        grouping = classify(obs)
        return AnalysisResult(
            instrument_id=obs.instrument_id,
            symbol=obs.display_name,
            vwap=vwap,
            short_ema=short_ema,
            long_ema=long_ema,
            trading_signal=synthesize(
                obs.last_price, short_ema, long_ema, vwap, iv.signal, volume.signal,
            ),
            current_iv=iv.current_iv,
            avg_iv=iv.avg_iv,
            iv_signal=iv.signal,
            current_volume=volume.current_volume,
            avg_volume=int(volume.avg_volume),
            volume_signal=volume.signal,
            instrument_group=grouping.instrument_group,
            underlying_group=grouping.underlying_group,
            display_bucket=grouping.display_bucket,
        )

    # -----------------------------------------------------------------------
    # Notification channel
    # -----------------------------------------------------------------------

    def subscribe(self, callback: ResultCallback) -> None:
        self._dispatcher.add_callback(callback)
        if not self._dispatcher.is_running:
            self._dispatcher.start()

    def unsubscribe(self, callback: ResultCallback) -> bool:
        return self._dispatcher.remove_callback(callback)

    def flush(self, timeout: float = 2.0) -> bool:
        """Wait until subscribers have seen every result submitted so far."""
        return self._dispatcher.wait_idle(timeout)

    def stop(self) -> None:
        self._dispatcher.stop()

    # -----------------------------------------------------------------------
    # State management
    # -----------------------------------------------------------------------

    def reset_instrument(self, instrument_id: str) -> bool:
        return self._store.discard(instrument_id)

    def reset_session(self) -> int:
        """Forget every instrument. The surrounding system calls this at day rollover."""
        return self._store.clear()

    def state_of(self, instrument_id: str) -> Optional[StateSnapshot]:
        return self._store.peek(instrument_id)

    @property
    def instrument_count(self) -> int:
        return len(self._store)
