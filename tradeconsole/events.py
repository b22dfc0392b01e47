"""
Trade Console Events — Pydantic Schemas for Ticks and Analysis Results
=======================================================================
Observation     — one immutable market-data update from the feed adapter
AnalysisResult  — one immutable indicator/signal packet per Observation

Results travel to subscribers over the in-process dispatcher.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    ANALYSIS_UPDATE = "ANALYSIS_UPDATE"


class SegmentKind(str, Enum):
    INDEX = "Index"
    EQUITY = "Equity"
    DERIVATIVE = "Derivative"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AnalysisError(Exception):
    """Processing of a single instrument update failed."""

    def __init__(self, message: str, instrument_id: str = ""):
        super().__init__(message)
        self.instrument_id = instrument_id


class ObservationRejected(AnalysisError):
    """Feed payload could not be turned into an Observation."""


def _decimal_from_any(value: Any) -> Any:
    # floats go through str() so 0.1 stays 0.1 and not its binary expansion
    if isinstance(value, float):
        return Decimal(str(value))
    return value


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class Observation(BaseModel):
    """A single tick, already resolved by the reference-data collaborator."""
    model_config = ConfigDict(frozen=True)

    instrument_id: str = Field(min_length=1)
    display_name: str = ""
    last_price: Decimal = Decimal("0")
    avg_trade_price: Decimal = Decimal("0")
    last_traded_quantity: int = 0
    cumulative_volume: int = 0          # session running total, not a delta
    implied_volatility: Decimal = Decimal("0")   # 0 for non-option instruments
    segment_kind: SegmentKind = SegmentKind.EQUITY
    is_future: bool = False
    underlying_symbol: str = ""

    @field_validator("last_price", "avg_trade_price", "implied_volatility", mode="before")
    @classmethod
    def _coerce_decimal(cls, value: Any) -> Any:
        return _decimal_from_any(value)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class ConsoleEvent(BaseModel):
    """Base console event."""
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: EventType
    source: str = "analysis_engine"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AnalysisResult(ConsoleEvent):
    """Indicators and signals for one processed Observation."""
    event_type: EventType = EventType.ANALYSIS_UPDATE

    instrument_id: str
    symbol: str = ""
    vwap: Decimal = Decimal("0")
    short_ema: Decimal = Decimal("0")
    long_ema: Decimal = Decimal("0")
    trading_signal: str = "Neutral"
    current_iv: Decimal = Decimal("0")
    avg_iv: Decimal = Decimal("0")
    iv_signal: str = "Neutral"
    current_volume: int = 0
    avg_volume: int = 0
    volume_signal: str = "Neutral"
    instrument_group: str = ""
    underlying_group: str = ""
    display_bucket: str = ""      # e.g. "Nifty Options"; empty for indices/stocks
