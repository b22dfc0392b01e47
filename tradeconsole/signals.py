"""
Trade Console Signals — Rule Table and Instrument Grouping
============================================================
Turns EMA / VWAP / price relationships plus the IV and volume flags into
one human-readable trading label. Rules are evaluated top-down, first
match wins; the IV+volume spike overlay is applied last.

Grouping derives the dashboard section (Indices / Futures / Options /
Stocks), the underlying root and a folded display bucket from the
observation fields alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tradeconsole.events import Observation, SegmentKind
from tradeconsole.indicators import IV_SPIKE_UP, NEUTRAL, VOLUME_BURST

STRONG_BULLISH = "Strong Bullish"
STRONG_BULLISH_SHORT = "Strong Bullish (Short EMA)"
BULLISH_ABOVE_BOTH = "Bullish: Above Both EMAs"
BEARISH_BELOW_BOTH = "Bearish: Below Both EMAs"
BULLISH_CROSSOVER = "Bullish Crossover (Short > Long)"
BEARISH_CROSSOVER = "Bearish Crossover (Short < Long)"
BULLISH_ABOVE_SHORT = "Bullish: Above Short EMA"
BEARISH_BELOW_SHORT = "Bearish: Below Short EMA"
STRONG_BUY_SPIKE = "Strong Buy Signal (Spike)"
POTENTIAL_SPIKE = "Potential Spike (IV/Vol)"

GROUP_INDICES = "Indices"
GROUP_FUTURES = "Futures"
GROUP_OPTIONS = "Options"
GROUP_STOCKS = "Stocks"


def _above_vwap(price: Decimal, vwap: Decimal) -> bool:
    # No traded volume yet means no VWAP to be above
    return vwap > 0 and price > vwap


def base_signal(price: Decimal, short_ema: Decimal, long_ema: Decimal, vwap: Decimal) -> str:
    if short_ema > 0 and long_ema > 0:
        if price > short_ema and price > long_ema and _above_vwap(price, vwap):
            return STRONG_BULLISH
        if price > short_ema and price > long_ema:
            return BULLISH_ABOVE_BOTH
        if price < short_ema and price < long_ema:
            return BEARISH_BELOW_BOTH
        if short_ema > long_ema and price > short_ema:
            return BULLISH_CROSSOVER
        if short_ema < long_ema and price < short_ema:
            return BEARISH_CROSSOVER
        if price > short_ema:
            return BULLISH_ABOVE_SHORT
        if price < short_ema:
            return BEARISH_BELOW_SHORT
        return NEUTRAL

    if short_ema > 0:
        if price > short_ema and _above_vwap(price, vwap):
            return STRONG_BULLISH_SHORT
        if price > short_ema:
            return BULLISH_ABOVE_SHORT
        if price < short_ema:
            return BEARISH_BELOW_SHORT

    return NEUTRAL


def apply_spike_overlay(base: str, iv_signal: str, volume_signal: str) -> str:
    if iv_signal == IV_SPIKE_UP and volume_signal == VOLUME_BURST:
        return STRONG_BUY_SPIKE if "Bullish" in base else POTENTIAL_SPIKE
    return base


def synthesize(
    price: Decimal,
    short_ema: Decimal,
    long_ema: Decimal,
    vwap: Decimal,
    iv_signal: str,
    volume_signal: str,
) -> str:
    """Final trading label for one tick."""
    return apply_spike_overlay(base_signal(price, short_ema, long_ema, vwap), iv_signal, volume_signal)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstrumentGrouping:
    instrument_group: str
    underlying_group: str
    display_bucket: str


def _is_option_name(display_name: str) -> bool:
    upper = display_name.upper()
    return "CALL" in upper or "PUT" in upper


def display_bucket(instrument_group: str, underlying_group: str) -> str:
    """Fold an underlying into the dashboard buckets. Indices/stocks are unbucketed."""
    name = underlying_group.upper()
    if instrument_group == GROUP_OPTIONS:
        if "BANKNIFTY" in name:
            return "Banknifty Options"
        if "NIFTY" in name:
            return "Nifty Options"
        if "SENSEX" in name:
            return "Sensex Options"
        return "Other Stock Options"
    if instrument_group == GROUP_FUTURES:
        if "NIFTY" in name or "SENSEX" in name:
            return "Index Futures"
        return "Stock Futures"
    return ""


def classify(obs: Observation) -> InstrumentGrouping:
    symbol = obs.display_name
    if obs.segment_kind == SegmentKind.INDEX:
        group, underlying = GROUP_INDICES, symbol
    elif obs.is_future:
        group, underlying = GROUP_FUTURES, obs.underlying_symbol
    elif _is_option_name(obs.display_name):
        group, underlying = GROUP_OPTIONS, obs.underlying_symbol
    else:
        group, underlying = GROUP_STOCKS, symbol
    return InstrumentGrouping(
        instrument_group=group,
        underlying_group=underlying,
        display_bucket=display_bucket(group, underlying),
    )
