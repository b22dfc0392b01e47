"""
Trade Console Indicators — Incremental VWAP / EMA / IV / Volume
=================================================================
Single-pass recurrences over one instrument's IndicatorState.

  - VWAP: session-cumulative Σ(avg_trade_price × qty) / Σ(qty)
  - EMA:  seeded with the first price, then (p - ema) × 2/(n+1) + ema
  - IV:   rolling window of positive IV samples, spike/drop vs average
  - Volume: rolling window of cumulative volume, burst vs N × average

The *_step / *_signal functions are pure. The apply_* functions are the
state transitions and must only be called inside the store's per-key lock.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Tuple

from tradeconsole.config import AnalysisParams
from tradeconsole.events import Observation
from tradeconsole.state_store import IndicatorState

ZERO = Decimal("0")

NEUTRAL = "Neutral"
IV_SPIKE_UP = "IV Spike Up"
IV_DROP_DOWN = "IV Drop Down"
IV_BUILDING_HISTORY = "Building History"
VOLUME_BURST = "Volume Burst"


@dataclass(frozen=True)
class IvReading:
    current_iv: Decimal
    avg_iv: Decimal
    signal: str


@dataclass(frozen=True)
class VolumeReading:
    current_volume: int
    avg_volume: Decimal
    signal: str


# ---------------------------------------------------------------------------
# Pure calculators
# ---------------------------------------------------------------------------

def vwap_step(
    cumulative_price_volume: Decimal,
    cumulative_volume: int,
    avg_trade_price: Decimal,
    quantity: int,
) -> Tuple[Decimal, int, Decimal]:
    """Returns (cumulative_price_volume, cumulative_volume, vwap)."""
    cpv = cumulative_price_volume + avg_trade_price * quantity
    cv = cumulative_volume + quantity
    vwap = cpv / cv if cv > 0 else ZERO
    return cpv, cv, vwap


def ema_multiplier(length: int) -> Decimal:
    return Decimal(2) / Decimal(length + 1)


def ema_step(previous: Decimal, price: Decimal, length: int) -> Decimal:
    """One EMA step. A zero previous value is the unseeded sentinel: seed with price."""
    if previous == 0:
        return price
    return (price - previous) * ema_multiplier(length) + previous


def iv_signal(
    current_iv: Decimal,
    valid_samples: Iterable[Decimal],
    spike_threshold: Decimal,
    min_samples: int,
) -> IvReading:
    if current_iv <= 0:
        return IvReading(current_iv=current_iv, avg_iv=ZERO, signal=NEUTRAL)

    samples = list(valid_samples)
    if len(samples) < min_samples:
        # IV present but not enough history: distinct from a confirmed Neutral
        return IvReading(current_iv=current_iv, avg_iv=ZERO, signal=IV_BUILDING_HISTORY)

    avg_iv = sum(samples, ZERO) / len(samples)
    if current_iv > avg_iv + spike_threshold:
        signal = IV_SPIKE_UP
    elif current_iv < avg_iv - spike_threshold:
        signal = IV_DROP_DOWN
    else:
        signal = NEUTRAL
    return IvReading(current_iv=current_iv, avg_iv=avg_iv, signal=signal)


def volume_signal(current_volume: int, avg_volume: Decimal, burst_multiplier: float) -> VolumeReading:
    multiplier = Decimal(str(burst_multiplier))
    burst = avg_volume > 0 and current_volume > avg_volume * multiplier
    return VolumeReading(
        current_volume=current_volume,
        avg_volume=avg_volume,
        signal=VOLUME_BURST if burst else NEUTRAL,
    )


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------

def apply_vwap(state: IndicatorState, obs: Observation) -> Decimal:
    state.cumulative_price_volume, state.cumulative_volume, vwap = vwap_step(
        state.cumulative_price_volume,
        state.cumulative_volume,
        obs.avg_trade_price,
        obs.last_traded_quantity,
    )
    return vwap


def apply_emas(state: IndicatorState, obs: Observation, params: AnalysisParams) -> Tuple[Decimal, Decimal]:
    state.short_ema = ema_step(state.short_ema, obs.last_price, params.short_ema_length)
    state.long_ema = ema_step(state.long_ema, obs.last_price, params.long_ema_length)
    return state.short_ema, state.long_ema


def apply_iv(state: IndicatorState, obs: Observation, params: AnalysisParams) -> IvReading:
    current_iv = obs.implied_volatility
    if current_iv > 0:
        state.iv_history.push(current_iv)
    return iv_signal(
        current_iv,
        state.iv_history.valid_values(lambda v: v > 0),
        params.iv_spike_threshold,
        params.min_iv_samples_for_signal,
    )


def apply_volume(state: IndicatorState, obs: Observation, params: AnalysisParams) -> VolumeReading:
    state.volume_history.push(obs.cumulative_volume)
    avg_volume = state.volume_history.mean() or ZERO
    return volume_signal(obs.cumulative_volume, avg_volume, params.volume_burst_multiplier)
