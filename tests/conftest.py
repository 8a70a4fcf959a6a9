"""
Shared fixtures: exchange clock, default config, synthetic bar builders.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from navigator.bars import Bar, ExchangeClock, parse_time_of_day
from navigator.config import EngineConfig

TRADE_DAY = date(2024, 1, 8)


@pytest.fixture
def clock():
    return ExchangeClock('US/Eastern')


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def bar_at(clock):
    """Build a Bar stamped at an exchange-local 'HH:MM[:SS]' on TRADE_DAY."""
    def _make(hhmm, open_, high, low, close, volume=1000.0, day=TRADE_DAY):
        ts = clock.to_timestamp(day, parse_time_of_day(hhmm))
        return Bar(time=ts, open=open_, high=high, low=low, close=close, volume=volume)
    return _make


@pytest.fixture
def minute_bars(clock):
    """Consecutive 1-minute bars from (open, high, low, close, volume) tuples."""
    def _make(start, rows, day=TRADE_DAY):
        t0 = clock.to_timestamp(day, parse_time_of_day(start))
        return [
            Bar(time=t0 + 60 * i, open=o, high=h, low=l, close=c, volume=v)
            for i, (o, h, l, c, v) in enumerate(rows)
        ]
    return _make


@pytest.fixture
def sample_data(clock):
    """Random-walk 1-minute OHLCV frame covering 08:00-11:20 local time."""
    np.random.seed(42)
    n = 200

    close = np.cumsum(np.random.randn(n) * 0.2) + 100
    open_price = close + np.random.randn(n) * 0.1
    high = np.maximum(open_price, close) + np.abs(np.random.randn(n) * 0.2)
    low = np.minimum(open_price, close) - np.abs(np.random.randn(n) * 0.2)
    t0 = clock.to_timestamp(TRADE_DAY, parse_time_of_day('08:00'))

    return pd.DataFrame({
        'time': [t0 + 60 * i for i in range(n)],
        'open': open_price,
        'high': high,
        'low': low,
        'close': close,
        'volume': np.random.randint(1000, 10000, n).astype(float)
    })


def trend_rows(n, start=100.0, step=0.1, volume=1000.0):
    """Steady up-move: each bar opens where the last closed, half-range body."""
    rows = []
    for i in range(n):
        o = start + step * i
        c = o + step
        rows.append((o, c + 0.05, o - 0.05, c, volume))
    return rows


@pytest.fixture
def breakout_day(minute_bars):
    """
    09:00-09:44 steady uptrend (opening range 09:30-09:44, high ~104.55),
    then a 09:45 high-volume retest that holds above the opening-range high.
    """
    bars = minute_bars('09:00', trend_rows(45))
    retest = Bar(time=bars[-1].time + 60, open=104.5, high=104.7, low=104.5, close=104.65, volume=2000.0)
    return bars + [retest]
