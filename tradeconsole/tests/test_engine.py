"""
Test Suite: AnalysisEngine — End-to-End Tick Processing
=========================================================
Scenarios for EMA seeding, VWAP, IV spike, volume burst, overlay,
boundary clamping, per-instrument fault isolation and the
notification channel.
"""

from __future__ import annotations

import threading
import time
from decimal import Decimal

import pytest

from tradeconsole.config import AnalysisParams, LiveAnalysisConfig
from tradeconsole.engine import AnalysisEngine, sanitize_observation
from tradeconsole.event_bus import ResultDispatcher
from tradeconsole.events import AnalysisError, Observation, ObservationRejected, SegmentKind
from tradeconsole.indicators import ema_step
from tradeconsole.result_board import ResultBoard


def _tick(instrument_id: str = "13", **kwargs) -> Observation:
    base = {
        "instrument_id": instrument_id,
        "display_name": "NIFTY JUL FUT",
        "segment_kind": SegmentKind.DERIVATIVE,
        "is_future": True,
        "underlying_symbol": "NIFTY",
    }
    base.update(kwargs)
    return Observation(**base)


@pytest.fixture
def engine():
    eng = AnalysisEngine()
    yield eng
    eng.stop()


class TestPriceScenario:

    def test_first_tick_seeds_both_emas_with_price(self, engine):
        result = engine.submit(_tick(last_price="24510.5"))
        assert result.short_ema == result.long_ema == Decimal("24510.5")
        assert result.vwap == 0
        assert result.trading_signal == "Neutral"

    def test_four_tick_ema_scenario_with_zero_volume(self, engine):
        prices = ["100", "102", "101", "105"]
        results = [engine.submit(_tick(last_price=p)) for p in prices]

        short = long_ = Decimal("0")
        for p in prices:
            short = ema_step(short, Decimal(p), 9)
            long_ = ema_step(long_, Decimal(p), 21)

        last = results[-1]
        assert last.short_ema == short == Decimal("101.416")
        assert last.long_ema == long_
        assert last.vwap == 0
        # price is above both EMAs, but with no traded volume there is no VWAP
        # to be above, so the strong label does not apply
        assert last.trading_signal == "Bullish: Above Both EMAs"

    def test_strong_bullish_once_vwap_available(self, engine):
        engine.submit(_tick(last_price="100", avg_trade_price="100", last_traded_quantity=50))
        result = engine.submit(_tick(last_price="104", avg_trade_price="101", last_traded_quantity=50))
        assert result.vwap == Decimal("100.5")
        assert result.trading_signal == "Strong Bullish"

    def test_vwap_is_session_cumulative(self, engine):
        ticks = [("100", 10), ("110", 30), ("90", 0), ("95", 60)]
        for price, qty in ticks:
            result = engine.submit(_tick(last_price=price, avg_trade_price=price, last_traded_quantity=qty))
        expected = sum(Decimal(p) * q for p, q in ticks) / sum(q for _, q in ticks)
        assert result.vwap == expected


class TestAnomalyScenarios:

    def test_iv_spike_scenario(self, engine):
        option = dict(display_name="NIFTY 31 JUL 24500 CALL", is_future=False)
        signals = [
            engine.submit(_tick("4501", last_price="120", implied_volatility=iv, **option)).iv_signal
            for iv in (0.20, 0.21, 0.19)
        ]
        assert signals == ["Building History", "Neutral", "Neutral"]

        result = engine.submit(_tick("4501", last_price="120", implied_volatility=0.35, **option))
        assert result.iv_signal == "IV Spike Up"
        assert result.avg_iv == Decimal("0.2375")
        assert result.instrument_group == "Options"
        assert result.display_bucket == "Nifty Options"

    def test_zero_iv_after_full_history_is_neutral(self, engine):
        option = dict(display_name="NIFTY 31 JUL 24500 CALL", is_future=False)
        for iv in (0.20, 0.21, 0.19):
            engine.submit(_tick("4501", last_price="120", implied_volatility=iv, **option))

        # a missing IV reading is not a drop, even with enough history to judge one
        result = engine.submit(_tick("4501", last_price="120", implied_volatility=0, **option))
        assert result.iv_signal == "Neutral"
        assert result.current_iv == 0
        assert result.avg_iv == 0
        assert engine.state_of("4501").iv_history == [Decimal("0.2"), Decimal("0.21"), Decimal("0.19")]

    def test_volume_burst_scenario(self, engine):
        for volume in (100, 100, 100):
            assert engine.submit(_tick(last_price="50", cumulative_volume=volume)).volume_signal == "Neutral"
        result = engine.submit(_tick(last_price="50", cumulative_volume=500))
        assert result.volume_signal == "Volume Burst"
        assert result.avg_volume == 200
        assert result.current_volume == 500

    def test_spike_overlay_on_bearish_tape(self, engine):
        option = dict(display_name="BANKNIFTY 31 JUL 52000 PUT", is_future=False,
                      underlying_symbol="BANKNIFTY")
        feed = [("200", 0.20, 100), ("190", 0.20, 100), ("180", 0.20, 100)]
        for price, iv, vol in feed:
            engine.submit(_tick("9001", last_price=price, implied_volatility=iv, cumulative_volume=vol, **option))
        result = engine.submit(
            _tick("9001", last_price="150", implied_volatility=0.40, cumulative_volume=900, **option)
        )
        assert result.iv_signal == "IV Spike Up"
        assert result.volume_signal == "Volume Burst"
        assert result.trading_signal == "Potential Spike (IV/Vol)"
        assert result.display_bucket == "Banknifty Options"


class TestBoundary:

    def test_negative_fields_are_clamped(self):
        obs = _tick(last_price="-5", last_traded_quantity=-10, cumulative_volume=-1,
                    implied_volatility="-0.2", avg_trade_price="101")
        clean = sanitize_observation(obs)
        assert clean.last_price == 0
        assert clean.last_traded_quantity == 0
        assert clean.cumulative_volume == 0
        assert clean.implied_volatility == 0
        assert clean.avg_trade_price == Decimal("101")

    def test_clean_observation_passes_through_unchanged(self):
        obs = _tick(last_price="10")
        assert sanitize_observation(obs) is obs

    def test_corrupt_tick_does_not_poison_vwap(self, engine):
        engine.submit(_tick(last_price="100", avg_trade_price="100", last_traded_quantity=10))
        result = engine.submit(_tick(last_price="100", avg_trade_price="100", last_traded_quantity=-10))
        assert result.vwap == Decimal("100")
        assert engine.state_of("13").cumulative_volume == 10

    def test_submit_raw_validates_payload(self, engine):
        result = engine.submit_raw({
            "instrument_id": "2885",
            "display_name": "RELIANCE",
            "last_price": 2950.25,
            "segment_kind": "Equity",
        })
        assert result.short_ema == Decimal("2950.25")
        assert result.instrument_group == "Stocks"

    @pytest.mark.parametrize(
        "payload",
        [
            {"instrument_id": "2885", "last_price": "not-a-price"},
            {"instrument_id": "", "last_price": 10},
            {"instrument_id": "2885", "segment_kind": "Crypto"},
        ],
    )
    def test_submit_raw_rejects_malformed(self, engine, payload):
        with pytest.raises(ObservationRejected):
            engine.submit_raw(payload)
        assert engine.instrument_count == 0


class TestIsolation:

    def test_instruments_keep_independent_state(self, engine):
        engine.submit(_tick("A", last_price="100"))
        before = engine.state_of("A")
        for p in ("10", "11", "12"):
            engine.submit(_tick("B", last_price=p))
        assert engine.state_of("A") == before
        assert engine.state_of("B").short_ema != before.short_ema

    def test_fault_in_one_instrument_does_not_affect_others(self, engine, monkeypatch):
        import tradeconsole.engine as engine_module

        real_apply_iv = engine_module.apply_iv

        def flaky_apply_iv(state, obs, params):
            if obs.instrument_id == "BAD":
                raise ZeroDivisionError("corrupt state")
            return real_apply_iv(state, obs, params)

        monkeypatch.setattr(engine_module, "apply_iv", flaky_apply_iv)

        with pytest.raises(AnalysisError) as exc_info:
            engine.submit(_tick("BAD", last_price="10"))
        assert exc_info.value.instrument_id == "BAD"

        good = engine.submit(_tick("GOOD", last_price="20"))
        assert good.short_ema == Decimal("20")

        monkeypatch.setattr(engine_module, "apply_iv", real_apply_iv)
        # the failing key's lock was released
        assert engine.submit(_tick("BAD", last_price="10")).instrument_id == "BAD"

    def test_concurrent_producers_across_instruments(self, engine):
        ids = [f"SYM{i}" for i in range(20)]
        barrier = threading.Barrier(len(ids))

        def producer(instrument_id: str) -> None:
            barrier.wait()
            for _ in range(30):
                engine.submit(_tick(instrument_id, last_price="100", avg_trade_price="100",
                                    last_traded_quantity=1))

        threads = [threading.Thread(target=producer, args=(i,)) for i in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert engine.instrument_count == 20
        for instrument_id in ids:
            snap = engine.state_of(instrument_id)
            assert snap.updates == 30
            assert snap.cumulative_volume == 30


class TestLiveConfig:

    def test_ema_length_change_applies_to_future_steps_only(self):
        engine = AnalysisEngine(LiveAnalysisConfig(AnalysisParams(short_ema_length=9)))
        engine.submit(_tick(last_price="100"))
        first = engine.submit(_tick(last_price="110"))
        assert first.short_ema == Decimal("102")

        engine.config.set_short_ema_length(4)      # multiplier 0.4
        second = engine.submit(_tick(last_price="112"))
        assert second.short_ema == Decimal("106")

    def test_history_capacity_applies_to_new_instruments(self):
        engine = AnalysisEngine()
        engine.submit(_tick("OLD", cumulative_volume=1))
        engine.config.set_volume_history_capacity(2)
        for v in (1, 2, 3):
            engine.submit(_tick("OLD", cumulative_volume=v))
            engine.submit(_tick("NEW", cumulative_volume=v))
        assert engine.state_of("OLD").volume_history == [1, 1, 2, 3]
        assert engine.state_of("NEW").volume_history == [2, 3]


class TestNotificationChannel:

    def test_subscribers_receive_every_result(self, engine):
        board = ResultBoard()
        received = []
        engine.subscribe(board.apply)
        engine.subscribe(received.append)

        engine.submit(_tick("A", last_price="10"))
        engine.submit(_tick("A", last_price="11"))
        engine.submit(_tick("B", last_price="20", display_name="Nifty 50",
                            segment_kind=SegmentKind.INDEX, is_future=False))
        assert engine.flush(timeout=2.0)

        assert len(received) == 3
        assert len(board) == 2
        assert board.get("A").short_ema == received[1].short_ema
        assert set(board.by_group()) == {"Futures", "Indices"}

    def test_failing_subscriber_does_not_reach_submit(self, engine):
        received = []

        def broken(result):
            raise RuntimeError("ui gone")

        engine.subscribe(broken)
        engine.subscribe(received.append)
        result = engine.submit(_tick(last_price="10"))
        assert engine.flush(timeout=2.0)
        assert received == [result]

    def test_unsubscribe(self, engine):
        received = []
        engine.subscribe(received.append)
        assert engine.unsubscribe(received.append) is True
        engine.submit(_tick(last_price="10"))
        assert engine.flush(timeout=2.0)
        assert received == []

    def test_results_reach_subscribers_in_applied_order(self):
        class SlowFirstHandoff(ResultDispatcher):
            def __init__(self) -> None:
                super().__init__()
                self.first = True

            def dispatch(self, result):
                if self.first:
                    self.first = False
                    time.sleep(0.2)     # slow hand-off on the first tick only
                return super().dispatch(result)

        engine = AnalysisEngine(dispatcher=SlowFirstHandoff())
        board = ResultBoard()
        engine.subscribe(board.apply)
        try:
            first = threading.Thread(target=lambda: engine.submit(_tick("X", last_price="100")))
            first.start()
            time.sleep(0.05)
            engine.submit(_tick("X", last_price="110"))
            first.join(timeout=5)
            assert engine.flush(timeout=2.0)

            assert engine.state_of("X").short_ema == Decimal("102")
            assert board.get("X").short_ema == Decimal("102")
        finally:
            engine.stop()

    def test_result_is_queued_while_instrument_lock_is_held(self):
        held = []

        class LockCheckingDispatcher(ResultDispatcher):
            def dispatch(self, result):
                held.append(engine._store._entries[result.instrument_id].lock.locked())
                return super().dispatch(result)

        engine = AnalysisEngine(dispatcher=LockCheckingDispatcher())
        engine.subscribe(lambda r: None)
        try:
            engine.submit(_tick(last_price="10"))
            engine.submit(_tick(last_price="11"))
        finally:
            engine.stop()
        assert held == [True, True]


class TestSessionReset:

    def test_reset_instrument_reseeds_on_next_tick(self, engine):
        engine.submit(_tick(last_price="100", avg_trade_price="100", last_traded_quantity=5))
        engine.submit(_tick(last_price="120"))
        assert engine.reset_instrument("13") is True

        result = engine.submit(_tick(last_price="130"))
        assert result.short_ema == Decimal("130")
        assert result.vwap == 0

    def test_reset_session(self, engine):
        engine.submit(_tick("A", last_price="1"))
        engine.submit(_tick("B", last_price="1"))
        assert engine.reset_session() == 2
        assert engine.instrument_count == 0
