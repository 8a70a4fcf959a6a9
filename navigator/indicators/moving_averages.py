"""
Moving Average & Volatility Indicators

EMA, session-anchored VWAP, volume moving average and ATR. Each matches
its streaming counterpart in navigator.context bar-for-bar.
"""

import pandas as pd
import numpy as np
from .base import Indicator, SessionIndicator, validate_period
from ..bars import parse_time_of_day


class EMA(Indicator):
    """
    Exponential Moving Average

    Seeded with the first value, alpha = 2 / (period + 1).
    """

    def __init__(self, period: int = 9, source: str = 'close'):
        super().__init__({
            'period': validate_period(period),
            'source': source,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        period = self.params['period']
        source = self.params['source']

        if source not in df.columns:
            raise ValueError(f"Source column '{source}' not found in DataFrame")

        ema = df[source].astype(float).ewm(span=period, adjust=False).mean()

        return pd.DataFrame({
            'time': df['time'],
            'value': ema
        })


class VolumeMA(Indicator):
    """Simple moving average of volume with a spike flag."""

    pane = 'separate'

    def __init__(self, period: int = 20, spike_multiplier: float = 1.5):
        super().__init__({
            'period': validate_period(period),
            'spike_multiplier': spike_multiplier,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        volume = df['volume'].astype(float)
        avg = volume.rolling(window=self.params['period']).mean()

        return pd.DataFrame({
            'time': df['time'],
            'value': avg,
            'confirmed': volume > avg,
            'spike': volume > avg * self.params['spike_multiplier'],
        })


class SessionVWAP(SessionIndicator):
    """
    Session-anchored Volume Weighted Average Price

    Typical price (H+L+C)/3 weighted by volume, accumulated only for bars
    inside [session_open, session_close) and restarted on each new local
    date. Outside the session the last value carries forward.
    """

    def __init__(self, session_open: str = '09:30', session_close: str = '16:00',
                 timezone: str = 'US/Eastern'):
        super().__init__({
            'session_open': session_open,
            'session_close': session_close,
            'timezone': timezone,
        })

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        local = self.local_times(df)
        sod = local.dt.hour * 3600 + local.dt.minute * 60 + local.dt.second
        in_session = (
            (sod >= parse_time_of_day(self.params['session_open']))
            & (sod < parse_time_of_day(self.params['session_close']))
        )

        typical = (df['high'] + df['low'] + df['close']) / 3
        volume = df['volume'].astype(float).where(in_session, 0.0)
        pv = (typical * volume).where(in_session, 0.0)

        day = local.dt.date
        cum_pv = pv.groupby(day).cumsum()
        cum_vol = volume.groupby(day).cumsum()

        vwap = (cum_pv / cum_vol.replace(0, np.nan)).where(in_session)
        vwap = vwap.ffill()

        return pd.DataFrame({
            'time': df['time'],
            'value': vwap
        })


class ATR(Indicator):
    """
    Average True Range

    Simple mean of the last `period` true ranges; the first value appears
    on bar period + 1 (each true range needs a previous close).
    """

    pane = 'separate'

    def __init__(self, period: int = 14):
        super().__init__({'period': validate_period(period)})

    def calculate(self, df: pd.DataFrame) -> pd.DataFrame:
        prev_close = df['close'].shift(1)
        tr = pd.concat([
            df['high'] - df['low'],
            (df['high'] - prev_close).abs(),
            (df['low'] - prev_close).abs(),
        ], axis=1).max(axis=1)
        tr = tr.where(prev_close.notna())

        return pd.DataFrame({
            'time': df['time'],
            'value': tr.rolling(window=self.params['period']).mean()
        })
