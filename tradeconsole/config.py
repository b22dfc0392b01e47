"""
Trade Console Config — Analysis Engine Parameters
===================================================
Indicator lengths, anomaly thresholds and history capacities for the
streaming analysis engine.

Defaults mirror the console's settings store (short EMA 9, long EMA 21).
Values can be overridden from the environment (.env supported) at startup
and changed live through LiveAnalysisConfig while ticks are flowing.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_environment(dotenv_path: Optional[str] = None) -> None:
    """Load a .env file (DOTENV_FILE wins) without clobbering the real environment."""
    path = dotenv_path or os.environ.get("DOTENV_FILE")
    if path:
        load_dotenv(dotenv_path=path, override=False)
    else:
        load_dotenv(override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation:
        logger.warning("Ignoring non-decimal %s=%r, using %s", name, raw, default)
        return default


# ---------------------------------------------------------------------------
# Analysis Parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisParams:
    # EMA
    short_ema_length: int = 9
    long_ema_length: int = 21
    # Implied volatility
    iv_history_capacity: int = 15
    iv_spike_threshold: Decimal = Decimal("0.01")   # absolute IV points over the average
    min_iv_samples_for_signal: int = 2
    # Volume
    volume_history_capacity: int = 12
    volume_burst_multiplier: float = 2.0             # current > N × rolling average

    def validate(self) -> "AnalysisParams":
        """Raise ValueError on lengths/capacities that cannot drive a recurrence."""
        for name in (
            "short_ema_length",
            "long_ema_length",
            "iv_history_capacity",
            "min_iv_samples_for_signal",
            "volume_history_capacity",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        if self.iv_spike_threshold < 0:
            raise ValueError(f"iv_spike_threshold must be >= 0, got {self.iv_spike_threshold}")
        if self.volume_burst_multiplier <= 0:
            raise ValueError(
                f"volume_burst_multiplier must be > 0, got {self.volume_burst_multiplier}"
            )
        return self

    @classmethod
    def from_env(cls) -> "AnalysisParams":
        defaults = cls()
        return cls(
            short_ema_length=_env_int("TC_SHORT_EMA_LENGTH", defaults.short_ema_length),
            long_ema_length=_env_int("TC_LONG_EMA_LENGTH", defaults.long_ema_length),
            iv_history_capacity=_env_int("TC_IV_HISTORY_CAPACITY", defaults.iv_history_capacity),
            iv_spike_threshold=_env_decimal("TC_IV_SPIKE_THRESHOLD", defaults.iv_spike_threshold),
            min_iv_samples_for_signal=_env_int(
                "TC_MIN_IV_SAMPLES", defaults.min_iv_samples_for_signal
            ),
            volume_history_capacity=_env_int(
                "TC_VOLUME_HISTORY_CAPACITY", defaults.volume_history_capacity
            ),
            volume_burst_multiplier=_env_float(
                "TC_VOLUME_BURST_MULTIPLIER", defaults.volume_burst_multiplier
            ),
        ).validate()


# ---------------------------------------------------------------------------
# Live config: mutable at runtime, read by every submission
# ---------------------------------------------------------------------------

class LiveAnalysisConfig:
    """
    Thread-safe holder for AnalysisParams.

    Writers swap in a whole new frozen params object under a lock, so a
    reader always sees either the old or the new value of every field.

    Usage:
        config = LiveAnalysisConfig()
        config.set_short_ema_length(12)     # from the settings UI
        params = config.snapshot()          # once per submitted tick
    """

    def __init__(self, params: Optional[AnalysisParams] = None):
        self._lock = threading.Lock()
        self._params = (params or AnalysisParams()).validate()
        self._listeners: list[Callable[[AnalysisParams], None]] = []

    @classmethod
    def from_env(cls) -> "LiveAnalysisConfig":
        load_environment()
        return cls(AnalysisParams.from_env())

    def snapshot(self) -> AnalysisParams:
        with self._lock:
            return self._params

    def update(self, **changes: Any) -> AnalysisParams:
        """Apply one or more field changes. Invalid values leave config untouched."""
        with self._lock:
            updated = replace(self._params, **changes).validate()
            self._params = updated
            listeners = list(self._listeners)
        logger.info("Analysis config updated: %s", changes)
        for listener in listeners:
            try:
                listener(updated)
            except Exception as e:
                logger.error("Config listener failed: %s", e, exc_info=True)
        return updated

    def add_listener(self, listener: Callable[[AnalysisParams], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    # -----------------------------------------------------------------------
    # Setters used by the settings layer
    # -----------------------------------------------------------------------

    def set_short_ema_length(self, length: int) -> None:
        self.update(short_ema_length=int(length))

    def set_long_ema_length(self, length: int) -> None:
        self.update(long_ema_length=int(length))

    def set_iv_spike_threshold(self, threshold: Any) -> None:
        self.update(iv_spike_threshold=Decimal(str(threshold)))

    def set_min_iv_samples_for_signal(self, count: int) -> None:
        self.update(min_iv_samples_for_signal=int(count))

    def set_volume_burst_multiplier(self, multiplier: float) -> None:
        self.update(volume_burst_multiplier=float(multiplier))

    def set_iv_history_capacity(self, capacity: int) -> None:
        self.update(iv_history_capacity=int(capacity))

    def set_volume_history_capacity(self, capacity: int) -> None:
        self.update(volume_history_capacity=int(capacity))

    @property
    def short_ema_length(self) -> int:
        return self.snapshot().short_ema_length

    @property
    def long_ema_length(self) -> int:
        return self.snapshot().long_ema_length
