"""
Indicator Context

Per-bar indicator state shared by the bias, risk and trade components
(compute once, read everywhere). Everything is computed from raw bar
history so the engine has no external indicator dependency.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Deque, Optional, Sequence

from .bars import Bar, ExchangeClock, HigherTimeframeView
from .config import IndicatorConfig
from .risk import blended_atr

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# INDICATOR MATH HELPERS
# ═══════════════════════════════════════════════════════════════════════════

class ExpAverage:
    """Recursive EMA seeded with the first value, alpha = 2 / (period + 1)."""

    def __init__(self, period: int):
        self.period = period
        self.alpha = 2.0 / (period + 1)
        self.value: Optional[float] = None

    def update(self, x: float) -> float:
        if self.value is None:
            self.value = x
        else:
            self.value = self.value + self.alpha * (x - self.value)
        return self.value

    def reset(self):
        self.value = None


def sma(values: Sequence[float], period: int) -> Optional[float]:
    if len(values) < period:
        return None
    window = list(values)[-period:]
    return sum(window) / period


def true_range(bar, prev_close: Optional[float]) -> float:
    if prev_close is None:
        return bar.high - bar.low
    return max(bar.high - bar.low, abs(bar.high - prev_close), abs(bar.low - prev_close))


def average_true_range(bars: Sequence, period: int) -> Optional[float]:
    """Simple average of the last `period` true ranges. Needs period + 1 bars."""
    n = len(bars)
    if n < period + 1:
        return None
    bars = list(bars)
    trs = [true_range(bars[i], bars[i - 1].close) for i in range(n - period, n)]
    return sum(trs) / period


# ═══════════════════════════════════════════════════════════════════════════
# INDICATOR STATE
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IndicatorState:
    fast_ema: Optional[float] = None
    slow_ema: Optional[float] = None
    ema_trend: int = 0
    ema_slope: float = 0.0
    ema_slope_norm: float = 0.0
    vwap: Optional[float] = None
    volume_ma: Optional[float] = None
    volume_confirmation: bool = False
    volume_spike: bool = False
    atr: Optional[float] = None
    atr_15m: Optional[float] = None
    blended_atr: Optional[float] = None


class IndicatorContext:
    """Incremental EMA/VWAP/volume/ATR computation over the bar stream."""

    def __init__(self, config: IndicatorConfig, clock: ExchangeClock, max_history: int = 600):
        self.config = config
        self.clock = clock
        self._bars: Deque[Bar] = deque(maxlen=max_history)
        self._fast = ExpAverage(config.fast_ema_period)
        self._slow = ExpAverage(config.slow_ema_period)
        self._fast_history: Deque[float] = deque(maxlen=config.slope_bars + 1)

        # VWAP session accumulators (reset each trading day)
        self._vwap_cum_vol = 0.0
        self._vwap_cum_pv = 0.0
        self._vwap_date: Optional[date] = None
        self._vwap: Optional[float] = None

    def update(self, bar: Bar, frames: HigherTimeframeView, in_session: bool) -> IndicatorState:
        cfg = self.config
        self._bars.append(bar)

        fast = self._fast.update(bar.close)
        slow = self._slow.update(bar.close)
        self._fast_history.append(fast)
        ema_trend = 1 if fast > slow else -1 if fast < slow else 0

        if len(self._fast_history) > cfg.slope_bars:
            ema_slope = (fast - self._fast_history[0]) / cfg.slope_bars
        else:
            ema_slope = 0.0

        atr = average_true_range(self._bars, cfg.atr_period)
        atr_15m = average_true_range(frames.m15, cfg.atr_15m_period)
        dynamic_atr = blended_atr(atr, atr_15m)
        ema_slope_norm = ema_slope / dynamic_atr if dynamic_atr else 0.0

        volume_ma = sma([b.volume for b in self._bars], cfg.volume_ma_period)
        volume_confirmation = volume_ma is not None and bar.volume > volume_ma
        volume_spike = volume_ma is not None and bar.volume > volume_ma * cfg.volume_spike_multiplier

        self._update_vwap(bar, in_session)

        return IndicatorState(
            fast_ema=fast,
            slow_ema=slow,
            ema_trend=ema_trend,
            ema_slope=ema_slope,
            ema_slope_norm=ema_slope_norm,
            vwap=self._vwap,
            volume_ma=volume_ma,
            volume_confirmation=volume_confirmation,
            volume_spike=volume_spike,
            atr=atr,
            atr_15m=atr_15m,
            blended_atr=dynamic_atr,
        )

    def _update_vwap(self, bar: Bar, in_session: bool):
        """Session-anchored VWAP. Accumulates only inside the trading session."""
        if not in_session:
            return

        today = self.clock.session_date(bar.time)
        if today != self._vwap_date:
            self._vwap_date = today
            self._vwap_cum_vol = 0.0
            self._vwap_cum_pv = 0.0
            self._vwap = None

        typical = (bar.high + bar.low + bar.close) / 3.0
        self._vwap_cum_vol += bar.volume
        self._vwap_cum_pv += typical * bar.volume

        if self._vwap_cum_vol > 0:
            self._vwap = self._vwap_cum_pv / self._vwap_cum_vol

    def reset(self):
        self._bars.clear()
        self._fast.reset()
        self._slow.reset()
        self._fast_history.clear()
        self._vwap_cum_vol = 0.0
        self._vwap_cum_pv = 0.0
        self._vwap_date = None
        self._vwap = None
