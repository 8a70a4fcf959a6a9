"""
Volume Delta Proxy Indicators

Bar-structure order-flow approximations for whole bar files:
- DeltaProxy: per-bar delta ratio, volume-weighted delta, absorption
- CumulativeDeltaProxy: session cumulative delta and its EMA smoothing
- DeltaDivergence: price/delta divergence flags and strength

Column semantics match navigator.delta so a chart built from these lines
up with what the streaming engine acted on.
"""

import logging
from typing import Dict, Any
import pandas as pd
import numpy as np

from .base import Indicator, SessionIndicator
from ..bars import parse_time_of_day

logger = logging.getLogger(__name__)


def _bar_range(df: pd.DataFrame) -> pd.Series:
    return (df['high'] - df['low']).astype(float)


def delta_ratio_series(df: pd.DataFrame) -> pd.Series:
    """(close - open) / (high - low), 0 where the bar has no range."""
    rng = _bar_range(df)
    ratio = (df['close'] - df['open']) / rng.where(rng > 0)
    return ratio.fillna(0.0)


class DeltaProxy(Indicator):
    """
    Per-bar delta proxy histogram.

    delta_ratio is +1 for a full-range up bar and -1 for a full-range down
    bar; weighted_delta scales it by volume.
    """

    pane = 'separate'

    def __init__(self, **params):
        super().__init__(params=params)

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        self.validate_dataframe(df)

        rng = _bar_range(df)
        upper = df['high'] - df[['open', 'close']].max(axis=1)
        lower = df[['open', 'close']].min(axis=1) - df['low']
        ratio = delta_ratio_series(df)

        return pd.DataFrame({
            'time': df['time'],
            'delta_ratio': ratio,
            'weighted_delta': ratio * df['volume'].astype(float),
            'absorption': ((lower - upper) / rng.where(rng > 0)).fillna(0.0),
        })


class CumulativeDeltaProxy(SessionIndicator):
    """
    Session cumulative delta proxy.

    Restarts from the bar's own weighted delta on the bar stamped exactly
    at session_open and accumulates otherwise. The smoothed line is an EMA
    over the whole series (not restarted).
    """

    pane = 'separate'

    def __init__(self, smoothing: int = 5, session_open: str = '09:30',
                 timezone: str = 'US/Eastern'):
        super().__init__({
            'smoothing': smoothing,
            'session_open': session_open,
            'timezone': timezone,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        self.validate_dataframe(df)

        local = self.local_times(df)
        sod = local.dt.hour * 3600 + local.dt.minute * 60 + local.dt.second
        is_open = sod == parse_time_of_day(self.params['session_open'])

        weighted = delta_ratio_series(df) * df['volume'].astype(float)
        segment = is_open.cumsum()
        cumulative = weighted.groupby(segment).cumsum()
        smoothed = cumulative.ewm(span=self.params['smoothing'], adjust=False).mean()

        return pd.DataFrame({
            'time': df['time'],
            'value': cumulative,
            'smoothed': smoothed,
        })


class DeltaDivergence(SessionIndicator):
    """
    Delta Divergence Detector.

    - Bearish: high at its `lookback`-bar high while smoothed delta is below
      (1 - threshold) of its own `lookback`-bar high
    - Bullish: low at its `lookback`-bar low while smoothed delta is above
      (1 + threshold) of its own `lookback`-bar low

    Windows include the current bar. Flags are only raised inside
    [session_open, session_close) and only once a full window exists.
    """

    pane = 'separate'

    def __init__(self, lookback: int = 10, threshold: float = 0.15, smoothing: int = 5,
                 session_open: str = '09:30', session_close: str = '16:00',
                 timezone: str = 'US/Eastern'):
        super().__init__({
            'lookback': lookback,
            'threshold': threshold,
            'smoothing': smoothing,
            'session_open': session_open,
            'session_close': session_close,
            'timezone': timezone,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        self.validate_dataframe(df)
        p = self.params
        lookback = p['lookback']
        threshold = p['threshold']

        cvd = CumulativeDeltaProxy(
            smoothing=p['smoothing'],
            session_open=p['session_open'],
            timezone=p['timezone'],
        ).calculate(df)
        smoothed = cvd['smoothed']

        local = self.local_times(df)
        sod = local.dt.hour * 3600 + local.dt.minute * 60 + local.dt.second
        in_session = (
            (sod >= parse_time_of_day(p['session_open']))
            & (sod < parse_time_of_day(p['session_close']))
        )

        price_high = df['high'].rolling(lookback).max()
        price_low = df['low'].rolling(lookback).min()
        delta_high = smoothed.rolling(lookback).max()
        delta_low = smoothed.rolling(lookback).min()

        bearish = (df['high'] >= price_high) & (smoothed < delta_high * (1 - threshold)) & in_session
        bullish = (df['low'] <= price_low) & (smoothed > delta_low * (1 + threshold)) & in_session

        bear_strength = ((smoothed - delta_high).abs() / delta_high.abs().replace(0, np.nan)).fillna(0.0)
        bull_strength = ((smoothed - delta_low).abs() / delta_low.abs().replace(0, np.nan)).fillna(0.0)

        value = pd.Series(0.0, index=df.index)
        value[bearish] = -1.0
        value[bullish] = 1.0

        logger.debug(f"DeltaDivergence: {int(bearish.sum())} bearish, {int(bullish.sum())} bullish bars")

        return pd.DataFrame({
            'time': df['time'],
            'value': value,
            'bearish': bearish,
            'bearish_strength': bear_strength.where(bearish, 0.0),
            'bullish': bullish,
            'bullish_strength': bull_strength.where(bullish, 0.0),
        })

    def get_display_name(self) -> str:
        return f"DeltaDivergence({self.params['lookback']}, {self.params['threshold']:.0%})"

    def to_dict(self) -> Dict[str, Any]:
        info = super().to_dict()
        info['signals'] = ['bearish', 'bullish']
        return info
