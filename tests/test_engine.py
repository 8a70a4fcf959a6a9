"""
Tests for the signal engine pipeline
"""

import asyncio
import logging

import pytest

from navigator.bars import Bar
from navigator.config import EngineConfig
from navigator.engine import MultiSymbolEngine, SignalEngine
from navigator.errors import BarError, OutOfOrderBarError
from navigator.orders import OrderAction, Side

from conftest import trend_rows


@pytest.fixture
def engine(config):
    return SignalEngine('TEST', config)


def run(engine, bars):
    return [engine.process_bar(b) for b in bars]


class TestPipeline:
    """Test end-to-end bar processing"""

    def test_flat_day_no_signals(self, engine, minute_bars):
        results = run(engine, minute_bars('09:00', [(100, 100, 100, 100, 1000)] * 180))
        for r in results:
            assert r.orders == []
            assert r.snapshot.delta.ratio == 0.0
            assert not r.snapshot.divergence.bearish.active
            assert not r.snapshot.divergence.bullish.active

    def test_cumulative_delta_resets_at_open(self, engine, minute_bars):
        bars = minute_bars('09:00', trend_rows(35))
        results = run(engine, bars)
        assert results[29].snapshot.delta.cumulative == pytest.approx(30 * 500.0)
        open_snap = results[30].snapshot
        assert open_snap.session.is_session_open
        assert open_snap.delta.cumulative == pytest.approx(open_snap.delta.weighted)

    def test_orb_retest_long(self, engine, breakout_day):
        results = run(engine, breakout_day)
        orders = [o for r in results for o in r.orders]
        assert len(orders) == 1
        order = orders[0]
        assert order.side is Side.LONG
        assert order.action is OrderAction.OPEN
        assert order.tag == 'orb_retest'
        assert order.bar_time == breakout_day[-1].time
        assert order.signal_price == 104.65
        assert order.stop_price == pytest.approx(104.65 - 1.5 * 0.2)

        snap = results[-1].snapshot
        assert snap.bias.bullish
        assert snap.session.opening_range.high == pytest.approx(104.55)
        assert snap.status['long'] == 'ENTERED'
        assert snap.to_dict()['long_stop'] == pytest.approx(104.35)

    def test_no_second_entry_same_session(self, engine, breakout_day):
        run(engine, breakout_day)
        last = breakout_day[-1]
        again = Bar(time=last.time + 60, open=104.6, high=104.8, low=104.5, close=104.75, volume=2500.0)
        result = engine.process_bar(again)
        assert not any(o.action is OrderAction.OPEN for o in result.orders)

    def test_stop_out_next_bar(self, engine, breakout_day):
        run(engine, breakout_day)
        last = breakout_day[-1]
        drop = Bar(time=last.time + 60, open=104.6, high=104.6, low=104.0, close=104.1, volume=1500.0)
        result = engine.process_bar(drop)
        assert [(o.action, o.tag) for o in result.orders] == [(OrderAction.CLOSE, 'stop_out')]

    def test_higher_timeframe_history_follows_max_history(self, minute_bars):
        config = EngineConfig.from_dict({'max_history': 30, 'indicators': {'atr_15m_period': 20}})
        engine = SignalEngine('TEST', config)
        results = run(engine, minute_bars('00:00', trend_rows(40 * 15, step=0.01)))
        assert len(engine.frames.m15.history()) == 30
        assert results[-1].snapshot.indicators.atr_15m is not None

    def test_snapshot_dict(self, engine, breakout_day):
        snap = run(engine, breakout_day)[-1].snapshot.to_dict()
        for key in ('time', 'close', 'orb_high', 'vwap', 'atr', 'bias', 'momentum',
                    'cum_delta', 'bearish_div', 'bullish_div_strength', 'long_status'):
            assert key in snap


class TestInputContract:
    """Test bar validation and ordering"""

    def test_dict_input(self, engine):
        result = engine.process_bar({'timestamp': 1_704_722_400, 'open': 1, 'high': 2,
                                     'low': 0.5, 'close': 1.5, 'volume': 10})
        assert result.snapshot.close == 1.5
        assert engine.bar_count == 1

    def test_malformed(self, engine):
        with pytest.raises(BarError):
            engine.process_bar({'time': 1, 'open': 1, 'high': 0, 'low': 2, 'close': 1, 'volume': 1})

    def test_out_of_order_rejected(self, engine, minute_bars):
        bars = minute_bars('09:30', trend_rows(3))
        run(engine, bars)
        with pytest.raises(OutOfOrderBarError):
            engine.process_bar(bars[1])
        with pytest.raises(OutOfOrderBarError):
            engine.process_bar(bars[2])
        assert engine.bar_count == 3

        nxt = Bar(time=bars[2].time + 60, open=1, high=1, low=1, close=1, volume=1)
        engine.process_bar(nxt)
        assert engine.bar_count == 4

    def test_reset_accepts_earlier_bars(self, engine, minute_bars):
        bars = minute_bars('09:30', trend_rows(3))
        run(engine, bars)
        engine.reset()
        engine.process_bar(bars[0])
        assert engine.bar_count == 1


class TestCallbacks:
    """Test execution sink callbacks"""

    def test_callback_receives_orders(self, engine, breakout_day):
        received = []
        engine.register_order_callback(received.append)
        run(engine, breakout_day)
        assert [o.tag for o in received] == ['orb_retest']

    def test_order_serializes(self, engine, breakout_day):
        received = []
        engine.register_order_callback(lambda order: received.append(order.to_dict()))
        run(engine, breakout_day)
        payload = received[0]
        assert payload['side'] == 'long'
        assert payload['action'] == 'open'
        assert payload['reference_price_rule'] == 'next_bar_open'
        assert payload['size'] == 100

    def test_failing_callback_logged(self, engine, breakout_day, caplog):
        def boom(order):
            raise RuntimeError("sink down")

        engine.register_order_callback(boom)
        with caplog.at_level(logging.ERROR, logger='navigator.engine'):
            results = run(engine, breakout_day)
        assert results[-1].orders
        assert any("sink down" in r.getMessage() for r in caplog.records)

    def test_async_callback_without_loop(self, engine, breakout_day):
        received = []

        async def sink(order):
            received.append(order.tag)

        engine.register_order_callback(sink)
        run(engine, breakout_day)
        assert received == ['orb_retest']

    def test_async_callback_on_running_loop(self, engine, breakout_day):
        received = []

        async def sink(order):
            received.append(order.tag)

        async def main():
            engine.register_order_callback(sink)
            run(engine, breakout_day)
            await asyncio.sleep(0.01)

        asyncio.run(main())
        assert received == ['orb_retest']

    def test_failing_async_callback_logged(self, engine, breakout_day, caplog):
        async def sink(order):
            raise RuntimeError("async sink down")

        async def main():
            engine.register_order_callback(sink)
            results = run(engine, breakout_day)
            await asyncio.sleep(0.01)
            return results

        with caplog.at_level(logging.ERROR, logger='navigator.engine'):
            results = asyncio.run(main())
        assert results[-1].orders
        assert any("async sink down" in r.getMessage() for r in caplog.records)


class TestMultiSymbol:
    """Test per-symbol isolation"""

    def test_independent_engines(self, config, minute_bars):
        multi = MultiSymbolEngine(config)
        bars = minute_bars('09:30', trend_rows(3))
        for bar in bars:
            multi.process_bar('ES', bar)
        # An earlier timestamp is fine on a different symbol
        multi.process_bar('NQ', bars[0])
        assert sorted(multi.symbols) == ['ES', 'NQ']
        assert multi.get_or_create('ES').bar_count == 3
        assert multi.get_or_create('NQ').bar_count == 1

        with pytest.raises(OutOfOrderBarError):
            multi.process_bar('ES', bars[0])

    def test_orders_stamped_with_symbol(self, config, breakout_day):
        multi = MultiSymbolEngine(config)
        orders = [o for b in breakout_day for o in multi.process_bar('MES', b).orders]
        assert orders[0].symbol == 'MES'
