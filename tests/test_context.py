"""
Tests for the streaming indicator context
"""

from datetime import date

import pytest

from navigator.bars import Bar, HigherTimeframes
from navigator.config import IndicatorConfig
from navigator.context import ExpAverage, IndicatorContext, average_true_range, sma, true_range


@pytest.fixture
def context(clock):
    return IndicatorContext(IndicatorConfig(), clock)


def _feed(context, clock, bars, in_session=True):
    frames = HigherTimeframes(clock)
    state = None
    for bar in bars:
        state = context.update(bar, frames.update(bar), in_session)
    return state


class TestHelpers:
    """Test moving average and true range helpers"""

    def test_exp_average(self):
        ema = ExpAverage(3)
        assert ema.update(10.0) == 10.0
        assert ema.update(20.0) == pytest.approx(15.0)

    def test_sma_needs_full_window(self):
        assert sma([1, 2], 3) is None
        assert sma([1, 2, 3, 4], 3) == pytest.approx(3.0)

    def test_true_range_gap(self):
        bar = Bar(time=0, open=105, high=106, low=104, close=105, volume=0)
        assert true_range(bar, 100.0) == pytest.approx(6.0)
        assert true_range(bar, None) == pytest.approx(2.0)

    def test_atr_needs_period_plus_one(self):
        bars = [Bar(time=i, open=100, high=101, low=99, close=100, volume=0) for i in range(3)]
        assert average_true_range(bars[:2], 2) is None
        assert average_true_range(bars, 2) == pytest.approx(2.0)


class TestIndicatorContext:
    """Test the per-bar indicator state"""

    def test_first_bar(self, context, clock, minute_bars):
        state = _feed(context, clock, minute_bars('09:30', [(100, 101, 99, 100, 1000)]))
        assert state.fast_ema == 100
        assert state.slow_ema == 100
        assert state.ema_trend == 0
        assert state.atr is None
        assert state.blended_atr is None
        assert state.ema_slope_norm == 0.0
        assert state.vwap == pytest.approx(100.0)

    def test_uptrend(self, context, clock, minute_bars):
        rows = [(100 + i, 101 + i, 99 + i, 100.5 + i, 1000) for i in range(30)]
        state = _feed(context, clock, minute_bars('09:30', rows))
        assert state.ema_trend == 1
        assert state.ema_slope > 0
        assert state.atr is not None
        assert state.blended_atr >= state.atr
        assert state.ema_slope_norm == pytest.approx(state.ema_slope / state.blended_atr)

    def test_volume_flags(self, context, clock, minute_bars):
        rows = [(100, 100.5, 99.5, 100, 1000)] * 19 + [(100, 100.5, 99.5, 100, 2000)]
        state = _feed(context, clock, minute_bars('09:30', rows))
        # MA includes current bar: 21000 / 20 = 1050
        assert state.volume_ma == pytest.approx(1050.0)
        assert state.volume_confirmation
        assert state.volume_spike

    def test_vwap_only_in_session(self, context, clock, minute_bars):
        state = _feed(context, clock, minute_bars('08:00', [(50, 51, 49, 50, 1000)]), in_session=False)
        assert state.vwap is None

    def test_vwap_weighted(self, context, clock, minute_bars):
        rows = [(100, 101, 99, 100, 1000), (103, 104, 102, 103, 3000)]
        state = _feed(context, clock, minute_bars('09:30', rows))
        assert state.vwap == pytest.approx((100 * 1000 + 103 * 3000) / 4000)

    def test_vwap_resets_each_day(self, context, clock, minute_bars):
        frames = HigherTimeframes(clock)
        for bar in minute_bars('09:30', [(100, 101, 99, 100, 1000)], day=date(2024, 1, 5)):
            context.update(bar, frames.update(bar), True)
        for bar in minute_bars('09:30', [(200, 201, 199, 200, 1000)]):
            state = context.update(bar, frames.update(bar), True)
        assert state.vwap == pytest.approx(200.0)
